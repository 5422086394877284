"""Tests for the response generation stage."""

import json

import pytest

from interview_core.errors import AllProvidersExhausted, ErrorCode, ProviderError, SchemaValidationError
from interview_core.models import AttemptOutcome, ChatMessage, Difficulty, MessageRole
from interview_core.pipeline.generation import extract_free_text, parse_structured_reply
from interview_core.pipeline.prompts import INTERVIEW_STARTED_MARKER


VALID_TURN = {
    "question": "팀 규모는 어땠나요?",
    "evaluation": {"relevance": 90, "clarity": 60, "depth": 40},
    "follow_up_intent": False,
}


def history_of(turns: int):
    messages = []
    for i in range(turns):
        messages.append(ChatMessage(role=MessageRole.ASSISTANT, content=f"질문 {i}"))
        messages.append(ChatMessage(role=MessageRole.USER, content=f"답변 {i}"))
    return messages


async def drain(stream):
    return [delta.content async for delta in stream.deltas()]


class TestStructuredParsing:
    """Tests for structured reply parsing and extraction."""

    def test_parse_valid(self):
        """Test a schema-valid reply parses."""
        turn = parse_structured_reply(json.dumps(VALID_TURN))

        assert turn.question == "팀 규모는 어땠나요?"
        assert turn.evaluation.depth == 40

    def test_parse_missing_field(self):
        """Test a reply without evaluation is rejected."""
        with pytest.raises(SchemaValidationError) as exc_info:
            parse_structured_reply(json.dumps({"question": "왜요?", "follow_up_intent": True}))

        assert exc_info.value.raw is not None

    def test_parse_out_of_range_score(self):
        """Test scores outside 0-100 are rejected."""
        bad = dict(VALID_TURN, evaluation={"relevance": 150, "clarity": 50, "depth": 50})
        with pytest.raises(SchemaValidationError):
            parse_structured_reply(json.dumps(bad))

    def test_extract_embedded_valid_json(self):
        """Test a valid object inside prose is used as-is."""
        text, turn = extract_free_text(f"다음 질문입니다.\n{json.dumps(VALID_TURN, ensure_ascii=False)}\n")

        assert text == "팀 규모는 어땠나요?"
        assert turn is not None

    def test_extract_question_field(self):
        """Test the question field of an incomplete object is used."""
        text, turn = extract_free_text('{"question": "어떤 역할을 맡으셨나요?", "evaluation": null}')

        assert text == "어떤 역할을 맡으셨나요?"
        assert turn is None

    def test_extract_text_around_object(self):
        """Test surrounding text is used when the object has no question."""
        text, turn = extract_free_text('좋습니다. 다음으로 넘어가죠. {"score": 3}')

        assert text == "좋습니다. 다음으로 넘어가죠."
        assert turn is None

    def test_extract_plain_text(self):
        """Test plain text passes through trimmed."""
        assert extract_free_text("  그 프로젝트에 대해 더 말씀해주세요.  ") == (
            "그 프로젝트에 대해 더 말씀해주세요.",
            None,
        )


class TestBuildPrompt:
    """Tests for prompt assembly."""

    def test_history_bounded(self, generation_stage):
        """Test only the last ten history messages are kept."""
        prompt = generation_stage.build_prompt("제 답변입니다", "hiring_manager", history=history_of(8))

        assert len(prompt.messages) == 11
        assert prompt.messages[0].content == "질문 3"
        assert prompt.messages[-1] == ChatMessage(role=MessageRole.USER, content="제 답변입니다")

    def test_system_messages_dropped(self, generation_stage):
        """Test system messages in history are not forwarded."""
        history = [ChatMessage(role=MessageRole.SYSTEM, content="ignored")] + history_of(1)

        prompt = generation_stage.build_prompt("답변", "hiring_manager", history=history)

        assert all(m.role != MessageRole.SYSTEM for m in prompt.messages)
        assert len(prompt.messages) == 3

    def test_first_turn_marker(self, generation_stage):
        """Test an empty transcript is replaced with the start marker."""
        prompt = generation_stage.build_prompt("", "hr_manager")

        assert prompt.messages == (ChatMessage(role=MessageRole.USER, content=INTERVIEW_STARTED_MARKER),)

    def test_system_prompt_context(self, generation_stage):
        """Test persona, position, difficulty, turn and retrieval context appear."""
        prompt = generation_stage.build_prompt(
            "답변",
            "senior_peer",
            position="백엔드 개발자",
            industry="핀테크",
            difficulty=Difficulty.HARD,
            retrieval_context="2021-2024 결제 시스템 개발",
            turn_number=3,
        )

        system = prompt.system_prompt
        assert "시니어 동료" in system
        assert "- 지원 포지션: 백엔드 개발자" in system
        assert "핀테크" in system
        assert "난이도: 어려움" in system
        assert "- 현재 질문 순서: 3번째" in system
        assert "참고 자료 (지원자 이력서에서 발췌):" in system
        assert "2021-2024 결제 시스템 개발" in system

    def test_structured_prompt_has_schema(self, generation_stage):
        """Test structured prompts carry JSON instructions."""
        prompt = generation_stage.build_prompt("답변", "hiring_manager", structured=True)

        assert prompt.structured is True
        assert '"follow_up_intent"' in prompt.system_prompt

    def test_unknown_persona_falls_back(self, generation_stage):
        """Test an unknown persona id uses the hiring manager."""
        prompt = generation_stage.build_prompt("답변", "ceo")

        assert prompt.persona.id == "hiring_manager"


class TestFullResponse:
    """Tests for full-response generation."""

    @pytest.mark.asyncio
    async def test_primary_free_text(self, generation_stage, llm_primary, llm_fallback):
        """Test a plain reply from the primary."""
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        reply, attempts = await generation_stage.generate(prompt)

        assert reply.text == llm_primary.completion_text
        assert reply.provider == "openai"
        assert reply.model == "gpt-4o"
        assert not reply.is_structured
        assert reply.latency_ms >= 0
        assert len(attempts) == 1
        assert llm_fallback.calls["generate"] == 0

    @pytest.mark.asyncio
    async def test_fallback_on_error(self, generation_stage, llm_primary):
        """Test the fallback answers when the primary errors."""
        llm_primary.error = ProviderError("rate limited")
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        reply, attempts = await generation_stage.generate(prompt)

        assert reply.provider == "anthropic"
        assert [a.outcome for a in attempts] == [AttemptOutcome.ERROR, AttemptOutcome.SUCCESS]

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back(self, generation_stage, llm_primary):
        """Test a blank completion counts as invalid."""
        llm_primary.completion_text = "  "
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        reply, attempts = await generation_stage.generate(prompt)

        assert reply.provider == "anthropic"
        assert attempts[0].outcome == AttemptOutcome.INVALID

    @pytest.mark.asyncio
    async def test_both_fail(self, generation_stage, llm_primary, llm_fallback):
        """Test LLM_FAILED when both providers fail."""
        llm_primary.error = ProviderError("down")
        llm_fallback.error = ProviderError("down")
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await generation_stage.generate(prompt)

        assert exc_info.value.code == ErrorCode.LLM_FAILED


class TestStructuredGeneration:
    """Tests for structured replies."""

    @pytest.mark.asyncio
    async def test_primary_structured(self, generation_stage, llm_primary):
        """Test a schema-valid primary reply carries evaluation fields."""
        prompt = generation_stage.build_prompt("답변", "hiring_manager", structured=True)

        reply, attempts = await generation_stage.generate(prompt)

        assert reply.is_structured
        assert reply.text == "그 성과를 수치로 말씀해주실 수 있나요?"
        assert reply.evaluation.relevance == 80
        assert reply.follow_up_intent is True
        assert reply.suggested_follow_up == "팀 규모는 어땠나요?"
        assert llm_primary.calls["structured"] == 1
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_missing_field_falls_back_to_extraction(self, generation_stage, llm_primary, llm_fallback):
        """Test a reply missing required fields is rejected and the fallback used."""
        llm_primary.structured_text = json.dumps({"question": "왜 그렇게 하셨죠?"}, ensure_ascii=False)
        llm_fallback.completion_text = "다른 방법도 고려해보셨나요?"
        prompt = generation_stage.build_prompt("답변", "hiring_manager", structured=True)

        reply, attempts = await generation_stage.generate(prompt)

        assert reply.provider == "anthropic"
        assert reply.text == "다른 방법도 고려해보셨나요?"
        assert not reply.is_structured
        assert [a.outcome for a in attempts] == [AttemptOutcome.INVALID, AttemptOutcome.SUCCESS]
        assert llm_fallback.calls["generate"] == 1

    @pytest.mark.asyncio
    async def test_fallback_embedded_json(self, generation_stage, llm_primary, llm_fallback):
        """Test a valid object in the fallback's prose yields a structured reply."""
        llm_primary.error = ProviderError("down")
        llm_fallback.completion_text = f"JSON입니다: {json.dumps(VALID_TURN, ensure_ascii=False)}"
        prompt = generation_stage.build_prompt("답변", "hiring_manager", structured=True)

        reply, _ = await generation_stage.generate(prompt)

        assert reply.is_structured
        assert reply.text == "팀 규모는 어땠나요?"
        assert reply.structured_fields()["evaluation"] == {"relevance": 90, "clarity": 60, "depth": 40}


class TestStreaming:
    """Tests for token streaming."""

    @pytest.mark.asyncio
    async def test_primary_stream(self, generation_stage, llm_primary):
        """Test a stream is committed to the primary."""
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        stream, attempts = await generation_stage.open_stream(prompt)
        tokens = await drain(stream)

        assert stream.provider == "openai"
        assert tokens == llm_primary.tokens
        assert not stream.interrupted
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_failure_before_first_token_fails_over(self, generation_stage, llm_primary, llm_fallback):
        """Test the fallback streams when the primary fails before any token."""
        llm_primary.error = ProviderError("connect failed")
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        stream, attempts = await generation_stage.open_stream(prompt)
        tokens = await drain(stream)

        assert stream.provider == "anthropic"
        assert "".join(tokens) == "".join(llm_fallback.tokens)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_empty_stream_fails_over(self, generation_stage, llm_primary):
        """Test a stream that ends without content counts as invalid."""
        llm_primary.tokens = []
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        stream, attempts = await generation_stage.open_stream(prompt)

        assert stream.provider == "anthropic"
        assert attempts[0].outcome == AttemptOutcome.INVALID

    @pytest.mark.asyncio
    async def test_slow_first_token_fails_over(self, generation_stage, llm_primary):
        """Test the timeout bounds time to first token."""
        llm_primary.delay = 1.0
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        stream, attempts = await generation_stage.open_stream(prompt)

        assert stream.provider == "anthropic"
        assert attempts[0].outcome == AttemptOutcome.TIMEOUT

    @pytest.mark.asyncio
    async def test_mid_stream_failure_truncates(self, generation_stage, llm_primary, llm_fallback):
        """Test an error after the first token ends the stream without failover."""
        llm_primary.fail_after_tokens = 2
        prompt = generation_stage.build_prompt("답변", "hiring_manager")

        stream, _ = await generation_stage.open_stream(prompt)
        tokens = await drain(stream)

        assert tokens == llm_primary.tokens[:2]
        assert stream.interrupted
        assert isinstance(stream.error, ConnectionError)
        assert llm_fallback.calls["stream"] == 0
