"""Request and response models for the HTTP surface."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from interview_core.models import Difficulty, SessionStatus


class CreateSessionRequest(BaseModel):
    """Request to open an interview session."""

    user_id: Optional[str] = None
    job_type: str = Field(default="", max_length=200)
    industry: str = Field(default="", max_length=200)
    difficulty: Difficulty = Difficulty.MEDIUM
    interviewer_id: str = "hiring_manager"
    resume_doc_id: Optional[str] = None
    language: str = Field(default="ko", min_length=2, max_length=10)


class SessionResponse(BaseModel):
    """Interview session as returned by the API."""

    id: str
    user_id: Optional[str] = None
    job_type: str
    industry: str
    difficulty: Difficulty
    status: SessionStatus
    current_interviewer_id: str
    resume_doc_id: Optional[str] = None
    language: str
    turn_count: int
    created_at: float


class WordTimingModel(BaseModel):
    """Word timing in seconds, as returned by speech-to-text."""

    word: str
    start: float = Field(..., ge=0)
    end: float = Field(..., ge=0)
    confidence: Optional[float] = None


class AnalyzeVoiceRequest(BaseModel):
    """Transcript to analyze."""

    text: str = Field(..., min_length=1)
    words: List[WordTimingModel] = Field(default_factory=list)
    duration: Optional[float] = Field(default=None, ge=0, description="Audio duration in seconds")


class AnalyzeVoiceResponse(BaseModel):
    analysis: Dict[str, Any]
    feedback: List[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    uptime_seconds: float
    test_mode: bool
    providers: Dict[str, Dict[str, str]]


class CacheCleanupResponse(BaseModel):
    deleted: int
