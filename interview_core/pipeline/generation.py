"""
Response generation stage.

Builds the persona-conditioned prompt and obtains the interviewer's reply,
either as one complete response or as a token stream.

Streaming commits to whichever provider produced the first token. A failure
before the first token fails over; a failure after it truncates the reply.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError

from interview_core.errors import ProviderResponseError, SchemaValidationError
from interview_core.models import (
    ChatMessage,
    Difficulty,
    Evaluation,
    GeneratedReply,
    InterviewTurnSchema,
    MessageRole,
    ProviderAttempt,
    Stage,
    interview_turn_json_schema,
)
from interview_core.pipeline.failover import FailoverInvoker, ProviderCall
from interview_core.pipeline.personas import Persona, PersonaRegistry
from interview_core.pipeline.prompts import INTERVIEW_STARTED_MARKER, build_system_prompt
from interview_core.providers.base import LLMDelta, LlmProvider

logger = structlog.get_logger()

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


# =============================================================================
# Structured output parsing
# =============================================================================


def parse_structured_reply(text: str) -> InterviewTurnSchema:
    """Validate a JSON reply against the interview turn schema."""
    try:
        return InterviewTurnSchema.model_validate_json(text)
    except ValidationError as e:
        raise SchemaValidationError(
            f"Structured reply failed validation ({e.error_count()} errors)",
            raw=text,
        )


def extract_free_text(text: str) -> Tuple[str, Optional[InterviewTurnSchema]]:
    """
    Recover a reply from free-form model output.

    A valid embedded JSON object is used as-is. Otherwise the ``question``
    field of any embedded object is used, then the text around the object,
    then the raw text.
    """
    text = text.strip()
    match = _JSON_OBJECT.search(text)
    if match is None:
        return text, None

    try:
        turn = parse_structured_reply(match.group(0))
        return turn.question.strip(), turn
    except SchemaValidationError:
        pass

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        question = payload.get("question")
        if isinstance(question, str) and question.strip():
            return question.strip(), None

    remainder = (text[:match.start()] + text[match.end():]).strip()
    return remainder or text, None


def _reply_from_turn(turn: InterviewTurnSchema, provider: str, model: str) -> GeneratedReply:
    return GeneratedReply(
        text=turn.question.strip(),
        provider=provider,
        model=model,
        evaluation=Evaluation(
            relevance=turn.evaluation.relevance,
            clarity=turn.evaluation.clarity,
            depth=turn.evaluation.depth,
        ),
        inner_thought=turn.inner_thought,
        follow_up_intent=turn.follow_up_intent,
        suggested_follow_up=turn.suggested_follow_up,
    )


def _has_text(reply: GeneratedReply) -> bool:
    return bool(reply.text and reply.text.strip())


# =============================================================================
# Prompt
# =============================================================================


@dataclass(frozen=True)
class GenerationPrompt:
    """Fully assembled input for one generation call."""

    persona: Persona
    system_prompt: str
    messages: Tuple[ChatMessage, ...]
    structured: bool = False


# =============================================================================
# Token stream
# =============================================================================


class ReplyStream:
    """
    Token stream committed to a single provider.

    Iterating yields the first delta followed by the rest. An error after
    the first delta ends iteration and sets ``interrupted``.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        first: LLMDelta,
        rest: AsyncIterator[LLMDelta],
    ):
        self.provider = provider
        self.model = model
        self._first = first
        self._rest = rest
        self.interrupted = False
        self.error: Optional[BaseException] = None

    async def deltas(self) -> AsyncIterator[LLMDelta]:
        yield self._first
        try:
            async for delta in self._rest:
                if delta.content or delta.finish_reason:
                    yield delta
        except Exception as e:
            self.interrupted = True
            self.error = e
            logger.warning(
                "stream_interrupted",
                provider=self.provider,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def aclose(self) -> None:
        aclose = getattr(self._rest, "aclose", None)
        if aclose is not None:
            await aclose()


async def _open_stream(provider: LlmProvider, prompt: GenerationPrompt, max_tokens: int, temperature: float) -> ReplyStream:
    """Start a provider stream and wait for its first non-empty token."""
    agen = provider.stream(prompt.system_prompt, prompt.messages, max_tokens, temperature)
    try:
        while True:
            first = await agen.__anext__()
            if first.content:
                return ReplyStream(provider.name, provider.model, first, agen)
    except StopAsyncIteration:
        raise ProviderResponseError(
            "Stream ended before the first token",
            provider=provider.name,
        )
    except BaseException:
        await agen.aclose()
        raise


# =============================================================================
# Stage
# =============================================================================


class ResponseGenerationStage:
    """
    Generates the interviewer's next turn.

    Full-response mode makes one failover call. In structured mode the
    primary is asked for schema-constrained JSON; a reply that fails the
    schema counts as a failure and the fallback's output goes through
    free-text extraction.
    """

    def __init__(
        self,
        primary: LlmProvider,
        fallback: LlmProvider,
        invoker: FailoverInvoker,
        personas: PersonaRegistry,
        timeout_ms: float,
        history_limit: int = 10,
        max_tokens: int = 300,
        structured_max_tokens: int = 500,
        temperature: float = 0.7,
    ):
        self.primary = primary
        self.fallback = fallback
        self.invoker = invoker
        self.personas = personas
        self.timeout_ms = timeout_ms
        self.history_limit = history_limit
        self.max_tokens = max_tokens
        self.structured_max_tokens = structured_max_tokens
        self.temperature = temperature

    def build_prompt(
        self,
        transcript: Optional[str],
        persona_id: str,
        position: str = "",
        industry: str = "",
        difficulty: Difficulty = Difficulty.MEDIUM,
        history: Sequence[ChatMessage] = (),
        retrieval_context: Optional[str] = None,
        turn_number: Optional[int] = None,
        structured: bool = False,
    ) -> GenerationPrompt:
        """Assemble system prompt and bounded message history."""
        persona = self.personas.get_persona(persona_id)
        system_prompt = build_system_prompt(
            persona,
            position=position,
            industry=industry,
            difficulty=difficulty,
            retrieval_context=retrieval_context,
            turn_number=turn_number,
            structured=structured,
        )

        recent: List[ChatMessage] = [
            m for m in history if m.role != MessageRole.SYSTEM
        ][-self.history_limit:] if self.history_limit > 0 else []
        user_text = transcript.strip() if transcript and transcript.strip() else INTERVIEW_STARTED_MARKER
        recent.append(ChatMessage(role=MessageRole.USER, content=user_text))

        return GenerationPrompt(
            persona=persona,
            system_prompt=system_prompt,
            messages=tuple(recent),
            structured=structured,
        )

    # -------------------------------------------------------------------------
    # Full-response mode
    # -------------------------------------------------------------------------

    async def generate(
        self,
        prompt: GenerationPrompt,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[GeneratedReply, List[ProviderAttempt]]:
        """Obtain a complete reply, failing over once."""
        start = time.monotonic()

        if prompt.structured:
            primary = ProviderCall(self.primary.name, lambda: self._structured(self.primary, prompt))
            fallback = ProviderCall(self.fallback.name, lambda: self._extracted(self.fallback, prompt))
        else:
            primary = ProviderCall(self.primary.name, lambda: self._free_text(self.primary, prompt))
            fallback = ProviderCall(self.fallback.name, lambda: self._free_text(self.fallback, prompt))

        reply, attempts = await self.invoker.invoke(
            Stage.GENERATION.value,
            primary,
            fallback,
            self.timeout_ms,
            is_valid=_has_text,
            cancel_event=cancel_event,
        )
        reply.latency_ms = (time.monotonic() - start) * 1000

        logger.info(
            "generation_completed",
            provider=reply.provider,
            model=reply.model,
            structured=reply.is_structured,
            latency_ms=round(reply.latency_ms),
        )
        return reply, attempts

    async def _free_text(self, provider: LlmProvider, prompt: GenerationPrompt) -> GeneratedReply:
        completion = await provider.generate(
            prompt.system_prompt,
            prompt.messages,
            self.max_tokens,
            self.temperature,
        )
        return GeneratedReply(
            text=completion.text.strip(),
            provider=provider.name,
            model=completion.model or provider.model,
        )

    async def _structured(self, provider: LlmProvider, prompt: GenerationPrompt) -> GeneratedReply:
        completion = await provider.generate_structured(
            prompt.system_prompt,
            prompt.messages,
            interview_turn_json_schema(),
            self.structured_max_tokens,
            self.temperature,
        )
        turn = parse_structured_reply(completion.text)
        return _reply_from_turn(turn, provider.name, completion.model or provider.model)

    async def _extracted(self, provider: LlmProvider, prompt: GenerationPrompt) -> GeneratedReply:
        completion = await provider.generate(
            prompt.system_prompt,
            prompt.messages,
            self.structured_max_tokens,
            self.temperature,
        )
        text, turn = extract_free_text(completion.text)
        model = completion.model or provider.model
        if turn is not None:
            return _reply_from_turn(turn, provider.name, model)

        logger.info("structured_reply_degraded", provider=provider.name)
        return GeneratedReply(text=text, provider=provider.name, model=model)

    # -------------------------------------------------------------------------
    # Streaming mode
    # -------------------------------------------------------------------------

    async def open_stream(
        self,
        prompt: GenerationPrompt,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[ReplyStream, List[ProviderAttempt]]:
        """
        Open a token stream.

        The per-call timeout bounds the time to first token. Once a first
        token arrives the returned stream is bound to that provider.
        """
        stream, attempts = await self.invoker.invoke(
            Stage.GENERATION.value,
            ProviderCall(
                self.primary.name,
                lambda: _open_stream(self.primary, prompt, self.max_tokens, self.temperature),
            ),
            ProviderCall(
                self.fallback.name,
                lambda: _open_stream(self.fallback, prompt, self.max_tokens, self.temperature),
            ),
            self.timeout_ms,
            cancel_event=cancel_event,
        )
        logger.info("stream_opened", provider=stream.provider, model=stream.model)
        return stream, attempts
