"""HTTP surface."""

from interview_core.api.app import AppState, create_app

__all__ = ["AppState", "create_app"]
