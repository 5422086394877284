"""
Collaborator interfaces consumed by the pipeline.

The pipeline reads conversation history and retrieval context but does not
own persistence. In-memory implementations back the HTTP surface and tests.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import structlog

from interview_core.errors import SessionInactive, SessionNotFound
from interview_core.models import (
    ChatMessage,
    Difficulty,
    InterviewSession,
    MessageRole,
    SessionStatus,
    StoredMessage,
)

logger = structlog.get_logger()


class MessageStore(ABC):
    """Session and message persistence."""

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[InterviewSession]:
        pass

    @abstractmethod
    async def get_recent_messages(self, session_id: str, limit: int = 10) -> List[StoredMessage]:
        """Return the last ``limit`` messages, oldest first."""
        pass

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        interviewer_id: Optional[str] = None,
        structured_response: Optional[Dict[str, Any]] = None,
        latency_ms: Optional[float] = None,
    ) -> StoredMessage:
        pass

    async def get_history(self, session_id: str, limit: int = 10) -> List[ChatMessage]:
        """Recent messages as prompt history."""
        messages = await self.get_recent_messages(session_id, limit)
        return [m.to_chat_message() for m in messages if m.role != MessageRole.SYSTEM]

    async def require_active_session(self, session_id: str) -> InterviewSession:
        """Fetch a session that is accepting answers."""
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status != SessionStatus.ACTIVE:
            raise SessionInactive(session_id, session.status.value)
        return session


class InMemoryMessageStore(MessageStore):
    """Process-local session and message store."""

    def __init__(self):
        self._sessions: Dict[str, InterviewSession] = {}
        self._messages: Dict[str, List[StoredMessage]] = {}
        self._lock = asyncio.Lock()

    async def create_session(
        self,
        user_id: Optional[str] = None,
        job_type: str = "",
        industry: str = "",
        difficulty: Difficulty = Difficulty.MEDIUM,
        interviewer_id: str = "hiring_manager",
        resume_doc_id: Optional[str] = None,
        language: str = "ko",
        status: SessionStatus = SessionStatus.ACTIVE,
        session_id: Optional[str] = None,
    ) -> InterviewSession:
        session = InterviewSession(
            id=session_id or f"sess_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            job_type=job_type,
            industry=industry,
            difficulty=difficulty,
            status=status,
            current_interviewer_id=interviewer_id,
            resume_doc_id=resume_doc_id,
            language=language,
        )
        async with self._lock:
            self._sessions[session.id] = session
            self._messages.setdefault(session.id, [])

        logger.info("session_created", session_id=session.id, interviewer_id=interviewer_id)
        return session

    async def update_status(self, session_id: str, status: SessionStatus) -> InterviewSession:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.status = status
            return session

    async def get_session(self, session_id: str) -> Optional[InterviewSession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def get_recent_messages(self, session_id: str, limit: int = 10) -> List[StoredMessage]:
        if limit <= 0:
            return []
        async with self._lock:
            return list(self._messages.get(session_id, [])[-limit:])

    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        interviewer_id: Optional[str] = None,
        structured_response: Optional[Dict[str, Any]] = None,
        latency_ms: Optional[float] = None,
    ) -> StoredMessage:
        message = StoredMessage(
            session_id=session_id,
            role=role,
            content=content,
            interviewer_id=interviewer_id,
            structured_response=structured_response,
            latency_ms=latency_ms,
        )
        async with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFound(session_id)
            self._messages.setdefault(session_id, []).append(message)
            if role == MessageRole.ASSISTANT:
                self._sessions[session_id].turn_count += 1
        return message


class ContextProvider(ABC):
    """Retrieval of document context for a query."""

    @abstractmethod
    async def get_context(self, user_id: Optional[str], query: str, doc_id: str) -> Optional[str]:
        """Return context text, or None when nothing relevant is found."""
        pass


class StaticContextProvider(ContextProvider):
    """Context provider serving fixed text per document id."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self.documents = dict(documents or {})

    async def get_context(self, user_id: Optional[str], query: str, doc_id: str) -> Optional[str]:
        return self.documents.get(doc_id)
