"""Tests for the session and message store."""

import pytest

from interview_core.errors import ErrorCode, SessionInactive, SessionNotFound
from interview_core.models import ChatMessage, Difficulty, MessageRole, SessionStatus
from interview_core.store import InMemoryMessageStore, StaticContextProvider


@pytest.fixture
def store():
    return InMemoryMessageStore()


class TestInMemoryMessageStore:
    """Tests for InMemoryMessageStore."""

    @pytest.mark.asyncio
    async def test_create_and_get_session(self, store):
        """Test sessions are created active with the chosen interviewer."""
        session = await store.create_session(
            user_id="user_1",
            job_type="백엔드 개발자",
            difficulty=Difficulty.HARD,
            interviewer_id="senior_peer",
        )

        fetched = await store.get_session(session.id)
        assert fetched is session
        assert session.id.startswith("sess_")
        assert session.status == SessionStatus.ACTIVE
        assert session.current_interviewer_id == "senior_peer"
        assert session.turn_count == 0

    @pytest.mark.asyncio
    async def test_assistant_messages_count_turns(self, store):
        """Test only interviewer messages advance the turn count."""
        session = await store.create_session()

        await store.append_message(session.id, MessageRole.USER, "답변")
        await store.append_message(session.id, MessageRole.ASSISTANT, "질문", interviewer_id="hiring_manager")

        assert (await store.get_session(session.id)).turn_count == 1

    @pytest.mark.asyncio
    async def test_recent_messages_limit(self, store):
        """Test the most recent messages are returned oldest first."""
        session = await store.create_session()
        for i in range(5):
            await store.append_message(session.id, MessageRole.USER, f"m{i}")

        recent = await store.get_recent_messages(session.id, limit=3)

        assert [m.content for m in recent] == ["m2", "m3", "m4"]
        assert await store.get_recent_messages(session.id, limit=0) == []

    @pytest.mark.asyncio
    async def test_history_excludes_system(self, store):
        """Test history is converted to chat messages without system entries."""
        session = await store.create_session()
        await store.append_message(session.id, MessageRole.SYSTEM, "세션 시작")
        await store.append_message(session.id, MessageRole.ASSISTANT, "자기소개 부탁드립니다")
        await store.append_message(session.id, MessageRole.USER, "안녕하세요")

        history = await store.get_history(session.id)

        assert history == [
            ChatMessage(role=MessageRole.ASSISTANT, content="자기소개 부탁드립니다"),
            ChatMessage(role=MessageRole.USER, content="안녕하세요"),
        ]

    @pytest.mark.asyncio
    async def test_append_to_unknown_session(self, store):
        """Test messages cannot be added to a missing session."""
        with pytest.raises(SessionNotFound) as exc_info:
            await store.append_message("sess_missing", MessageRole.USER, "답변")

        assert exc_info.value.code == ErrorCode.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_require_active_session(self, store):
        """Test missing and inactive sessions are rejected."""
        session = await store.create_session()
        assert await store.require_active_session(session.id) is session

        with pytest.raises(SessionNotFound):
            await store.require_active_session("sess_missing")

        await store.update_status(session.id, SessionStatus.COMPLETED)
        with pytest.raises(SessionInactive) as exc_info:
            await store.require_active_session(session.id)
        assert exc_info.value.details["status"] == "completed"


class TestStaticContextProvider:
    """Tests for StaticContextProvider."""

    @pytest.mark.asyncio
    async def test_lookup_by_document(self):
        provider = StaticContextProvider({"doc_1": "이력서 발췌"})

        assert await provider.get_context("user_1", "질문", "doc_1") == "이력서 발췌"
        assert await provider.get_context("user_1", "질문", "doc_2") is None
