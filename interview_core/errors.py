"""Exception taxonomy for the interview pipeline."""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from interview_core.models import ProviderAttempt


class ErrorCode:
    """Stable error codes surfaced on the event stream."""

    STT_FAILED = "STT_FAILED"
    LLM_FAILED = "LLM_FAILED"
    TTS_FAILED = "TTS_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_RATE_LIMIT = "PROVIDER_RATE_LIMIT"
    SCHEMA_VALIDATION = "SCHEMA_VALIDATION"
    STREAM_TIMEOUT = "STREAM_TIMEOUT"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    RUN_CANCELLED = "RUN_CANCELLED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_INACTIVE = "SESSION_INACTIVE"


# Stage name -> code reported when every provider of that stage failed.
STAGE_FAILURE_CODES = {
    "transcription": ErrorCode.STT_FAILED,
    "generation": ErrorCode.LLM_FAILED,
    "synthesis": ErrorCode.TTS_FAILED,
}


class PipelineError(Exception):
    """Base exception for pipeline operations."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stage: Optional[str] = None,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or ErrorCode.INTERNAL_ERROR
        self.stage = stage
        self.provider = provider
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "stage": self.stage,
            "provider": self.provider,
            "details": self.details,
        }


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(PipelineError):
    """A single provider call failed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCode.PROVIDER_ERROR)
        super().__init__(message, **kwargs)


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its timeout."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=ErrorCode.PROVIDER_TIMEOUT, **kwargs)


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, code=ErrorCode.PROVIDER_RATE_LIMIT, **kwargs)
        self.retry_after = retry_after


class ProviderResponseError(ProviderError):
    """Provider answered with an empty or unusable payload."""


# =============================================================================
# Pipeline Errors
# =============================================================================


class EmptyAudioError(PipelineError):
    """No audio bytes were supplied; no provider is called."""

    def __init__(self, message: str = "No audio data supplied", **kwargs):
        kwargs.setdefault("stage", "transcription")
        super().__init__(
            message,
            code=ErrorCode.STT_FAILED,
            details={"reason": "empty_audio"},
            **kwargs,
        )


class AllProvidersExhausted(PipelineError):
    """Primary and fallback provider both failed for a stage."""

    def __init__(
        self,
        stage: str,
        attempts: "List[ProviderAttempt]",
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"All {stage} providers failed",
            code=STAGE_FAILURE_CODES.get(stage, ErrorCode.INTERNAL_ERROR),
            stage=stage,
            details={"attempts": [a.to_dict() for a in attempts]},
        )
        self.attempts = list(attempts)


class SchemaValidationError(PipelineError):
    """Structured LLM output did not match the reply schema."""

    def __init__(self, message: str, raw: Optional[str] = None, **kwargs):
        super().__init__(message, code=ErrorCode.SCHEMA_VALIDATION, **kwargs)
        self.raw = raw


class StreamTimeoutExceeded(PipelineError):
    """The run's wall-clock budget ran out."""

    def __init__(self, elapsed_ms: float, budget_ms: float, **kwargs):
        super().__init__(
            f"Stream budget of {budget_ms:.0f}ms exceeded",
            code=ErrorCode.STREAM_TIMEOUT,
            details={"elapsed_ms": round(elapsed_ms), "budget_ms": budget_ms},
            **kwargs,
        )
        self.elapsed_ms = elapsed_ms


class CacheUnavailable(PipelineError):
    """Durable cache store could not be reached."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=ErrorCode.CACHE_UNAVAILABLE, **kwargs)


class RunCancelled(PipelineError):
    """The client went away; no further provider calls are made."""

    def __init__(self, message: str = "Run cancelled by client", **kwargs):
        super().__init__(message, code=ErrorCode.RUN_CANCELLED, **kwargs)


# =============================================================================
# Session Errors
# =============================================================================


class SessionNotFound(PipelineError):
    """Unknown interview session."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            details={"session_id": session_id},
        )


class SessionInactive(PipelineError):
    """Interview session is not accepting answers."""

    def __init__(self, session_id: str, status: str):
        super().__init__(
            f"Session {session_id} is not active",
            code=ErrorCode.SESSION_INACTIVE,
            details={"session_id": session_id, "status": status},
        )
