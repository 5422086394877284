"""Answer analysis."""

from interview_core.analysis.voice import (
    VoiceAnalysis,
    VoiceTrendAnalysis,
    analyze_voice,
    analyze_voice_trends,
    generate_voice_feedback,
)

__all__ = [
    "VoiceAnalysis",
    "VoiceTrendAnalysis",
    "analyze_voice",
    "analyze_voice_trends",
    "generate_voice_feedback",
]
