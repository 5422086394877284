"""
Data models for the Interview Streaming Core.

Defines the immutable request/response types that flow through the
STT -> LLM -> TTS pipeline and the events streamed back to the client.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================


class Stage(str, Enum):
    """Pipeline stages."""

    TRANSCRIPTION = "transcription"
    GENERATION = "generation"
    SYNTHESIS = "synthesis"


class PipelineState(str, Enum):
    """States of one pipeline run."""

    STARTED = "started"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):
    """Events emitted on the outgoing stream."""

    START = "start"
    STATE = "state"
    TRANSCRIPT = "transcript"
    ANALYSIS = "analysis"
    CHUNK = "chunk"
    WARNING = "warning"
    HEARTBEAT = "heartbeat"
    AUDIO = "audio"
    COMPLETE = "complete"
    ERROR = "error"
    DONE = "done"


class AttemptOutcome(str, Enum):
    """Outcome of a single provider call."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    INVALID = "invalid"


class Difficulty(str, Enum):
    """Interview difficulty tiers."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class MessageRole(str, Enum):
    """Conversation roles."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    """Interview session lifecycle."""

    WAITING = "waiting"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# Stage Results
# =============================================================================


@dataclass(frozen=True)
class WordTiming:
    """A single recognized word with its position in the clip."""

    word: str
    start_ms: float
    end_ms: float
    confidence: Optional[float] = None

    @property
    def start(self) -> float:
        """Start offset in seconds."""
        return self.start_ms / 1000

    @property
    def end(self) -> float:
        """End offset in seconds."""
        return self.end_ms / 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class TranscriptionResult:
    """Output of the transcription stage."""

    text: str
    words: Tuple[WordTiming, ...] = ()
    confidence: Optional[float] = None
    duration_ms: float = 0.0
    provider: str = ""
    language: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "words": [w.to_dict() for w in self.words],
            "confidence": self.confidence,
            "duration_ms": self.duration_ms,
            "provider": self.provider,
            "language": self.language,
        }


@dataclass(frozen=True)
class ChatMessage:
    """One prior conversation turn."""

    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Evaluation:
    """Per-answer scores, each 0-100."""

    relevance: float
    clarity: float
    depth: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "relevance": self.relevance,
            "clarity": self.clarity,
            "depth": self.depth,
        }


@dataclass
class GeneratedReply:
    """Output of the generation stage."""

    text: str
    provider: str
    model: str
    latency_ms: float = 0.0
    evaluation: Optional[Evaluation] = None
    inner_thought: Optional[str] = None
    follow_up_intent: Optional[bool] = None
    suggested_follow_up: Optional[str] = None
    truncated: bool = False

    @property
    def is_structured(self) -> bool:
        return self.evaluation is not None

    def structured_fields(self) -> Optional[Dict[str, Any]]:
        """Structured payload as stored alongside the message, if any."""
        if self.evaluation is None:
            return None
        return {
            "question": self.text,
            "evaluation": self.evaluation.to_dict(),
            "inner_thought": self.inner_thought,
            "follow_up_intent": self.follow_up_intent,
            "suggested_follow_up": self.suggested_follow_up,
        }


@dataclass
class SynthesizedAudio:
    """Output of the synthesis stage."""

    audio: bytes
    content_type: str = "audio/mpeg"
    provider: str = ""
    cache_hit: bool = False
    url: Optional[str] = None
    cache_key: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.audio)


@dataclass
class CacheEntry:
    """Cached synthesis result."""

    key: str
    audio: bytes
    content_type: str = "audio/mpeg"
    created_at: float = field(default_factory=time.time)
    url: Optional[str] = None

    def is_expired(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        return ((now or time.time()) - self.created_at) > ttl_seconds


@dataclass
class ProviderAttempt:
    """One invocation of one provider for one stage."""

    stage: str
    provider: str
    started_at: float
    outcome: AttemptOutcome
    duration_ms: float = 0.0
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "provider": self.provider,
            "started_at": self.started_at,
            "outcome": self.outcome.value,
            "duration_ms": round(self.duration_ms, 2),
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


# =============================================================================
# Pipeline Input
# =============================================================================


@dataclass(frozen=True)
class PipelineRequest:
    """Immutable input to one pipeline run."""

    audio: bytes
    session_id: str
    persona_id: str = "hiring_manager"
    language: str = "ko"
    position: str = ""
    industry: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    history: Tuple[ChatMessage, ...] = ()
    retrieval_context: Optional[str] = None
    user_id: Optional[str] = None
    resume_doc_id: Optional[str] = None
    turn_number: Optional[int] = None
    structured: bool = False
    voice: Optional[str] = None
    speed: float = 1.0
    run_id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:16]}")


# =============================================================================
# Stream Events
# =============================================================================


@dataclass
class StreamEvent:
    """A single event sent to the client."""

    event: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.event in (EventType.COMPLETE, EventType.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"event": self.event.value, "data": self.data}
        if self.id:
            result["id"] = self.id
        return result

    def to_sse(self) -> str:
        """Encode as a Server-Sent Events frame."""
        message = ""
        if self.id:
            message += f"id: {self.id}\n"
        message += f"event: {self.event.value}\n"
        message += f"data: {json.dumps(self.data, ensure_ascii=False)}\n\n"
        return message


# =============================================================================
# Collaborator Records
# =============================================================================


@dataclass
class InterviewSession:
    """Interview session as seen by the stream endpoint."""

    id: str
    user_id: Optional[str] = None
    job_type: str = ""
    industry: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    status: SessionStatus = SessionStatus.ACTIVE
    current_interviewer_id: str = "hiring_manager"
    resume_doc_id: Optional[str] = None
    language: str = "ko"
    turn_count: int = 0
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_type": self.job_type,
            "industry": self.industry,
            "difficulty": self.difficulty.value,
            "status": self.status.value,
            "current_interviewer_id": self.current_interviewer_id,
            "resume_doc_id": self.resume_doc_id,
            "language": self.language,
            "turn_count": self.turn_count,
            "created_at": self.created_at,
        }


@dataclass
class StoredMessage:
    """A persisted conversation message."""

    session_id: str
    role: MessageRole
    content: str
    interviewer_id: Optional[str] = None
    structured_response: Optional[Dict[str, Any]] = None
    latency_ms: Optional[float] = None
    id: str = field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:16]}")
    created_at: float = field(default_factory=time.time)

    def to_chat_message(self) -> ChatMessage:
        role = MessageRole.USER if self.role == MessageRole.USER else MessageRole.ASSISTANT
        return ChatMessage(role=role, content=self.content)


# =============================================================================
# Structured Reply Schema
# =============================================================================


class EvaluationSchema(BaseModel):
    """Scores attached to a structured reply."""

    relevance: float = Field(..., ge=0, le=100)
    clarity: float = Field(..., ge=0, le=100)
    depth: float = Field(..., ge=0, le=100)


class InterviewTurnSchema(BaseModel):
    """Schema the LLM must satisfy in structured mode."""

    question: str = Field(..., min_length=1)
    evaluation: EvaluationSchema
    follow_up_intent: bool
    inner_thought: Optional[str] = None
    suggested_follow_up: Optional[str] = None


def interview_turn_json_schema() -> Dict[str, Any]:
    """JSON schema sent to providers that support constrained output."""
    return {
        "type": "object",
        "properties": {
            "question": {"type": "string", "description": "The interviewer's next question or reply"},
            "evaluation": {
                "type": "object",
                "properties": {
                    "relevance": {"type": "number", "description": "Answer relevance (0-100)"},
                    "clarity": {"type": "number", "description": "Answer clarity (0-100)"},
                    "depth": {"type": "number", "description": "Answer depth (0-100)"},
                },
                "required": ["relevance", "clarity", "depth"],
                "additionalProperties": False,
            },
            "inner_thought": {"type": "string", "description": "Interviewer's private impression (1-2 sentences)"},
            "follow_up_intent": {"type": "boolean", "description": "Whether this is a follow-up question"},
            "suggested_follow_up": {"type": "string", "description": "Suggested next follow-up"},
        },
        "required": ["question", "evaluation", "follow_up_intent"],
        "additionalProperties": False,
    }


__all__: List[str] = [
    "Stage",
    "PipelineState",
    "EventType",
    "AttemptOutcome",
    "Difficulty",
    "MessageRole",
    "SessionStatus",
    "now_ms",
    "WordTiming",
    "TranscriptionResult",
    "ChatMessage",
    "Evaluation",
    "GeneratedReply",
    "SynthesizedAudio",
    "CacheEntry",
    "ProviderAttempt",
    "PipelineRequest",
    "StreamEvent",
    "InterviewSession",
    "StoredMessage",
    "EvaluationSchema",
    "InterviewTurnSchema",
    "interview_turn_json_schema",
]
