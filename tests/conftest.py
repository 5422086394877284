"""Shared pytest fixtures for testing."""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from interview_core.config import CacheConfig, Settings, StreamConfig, TimeoutConfig
from interview_core.models import (
    ChatMessage,
    PipelineRequest,
    StreamEvent,
    SynthesizedAudio,
    TranscriptionResult,
    WordTiming,
)
from interview_core.pipeline.cache import SynthesisCache
from interview_core.pipeline.failover import FailoverInvoker
from interview_core.pipeline.generation import ResponseGenerationStage
from interview_core.pipeline.latency import LatencyTracker
from interview_core.pipeline.orchestrator import StreamOrchestrator
from interview_core.pipeline.personas import PersonaRegistry
from interview_core.pipeline.synthesis import SpeechSynthesisStage
from interview_core.pipeline.transcription import AudioTranscriptionStage
from interview_core.providers.base import LLMCompletion, LLMDelta, LlmProvider, SttProvider, TtsProvider
from interview_core.storage import InMemoryBlobStore


TRANSCRIPT = "저는 음 3년간 백엔드 개발을 했습니다"
REPLY_TOKENS = ["좋은 ", "답변이네요. ", "가장 ", "어려웠던 ", "점은 ", "무엇이었나요?"]
REPLY = "".join(REPLY_TOKENS)
STRUCTURED_REPLY = {
    "question": "그 성과를 수치로 말씀해주실 수 있나요?",
    "evaluation": {"relevance": 80, "clarity": 70, "depth": 55},
    "inner_thought": "수치가 빠져 있다.",
    "follow_up_intent": True,
    "suggested_follow_up": "팀 규모는 어땠나요?",
}


def timed_words(text: str, word_s: float = 0.4, gap_s: float = 0.15) -> tuple:
    """Evenly spaced word timings for ``text``."""
    words = []
    cursor = 0.0
    for word in text.split():
        words.append(WordTiming(word=word, start_ms=cursor * 1000, end_ms=(cursor + word_s) * 1000, confidence=0.9))
        cursor += word_s + gap_s
    return tuple(words)


# =============================================================================
# Scripted Providers
# =============================================================================


class FakeSttProvider(SttProvider):
    """STT provider whose behaviour is set through attributes."""

    def __init__(self, name: str, text: str = TRANSCRIPT, with_words: bool = True):
        self._name = name
        self.text = text
        self.with_words = with_words
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.calls = 0
        self.finished = 0

    @property
    def name(self) -> str:
        return self._name

    async def transcribe(self, audio: bytes, language: str) -> TranscriptionResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        if self.error:
            raise self.error
        words = timed_words(self.text) if self.with_words else ()
        return TranscriptionResult(
            text=self.text,
            words=words,
            confidence=0.92,
            duration_ms=words[-1].end_ms + 300 if words else 0.0,
            provider=self._name,
            language=language,
        )


class FakeLlmProvider(LlmProvider):
    """LLM provider whose behaviour is set through attributes."""

    def __init__(self, name: str, model: str):
        self._name = name
        self._model = model
        self.tokens: List[str] = list(REPLY_TOKENS)
        self.completion_text = REPLY
        self.structured_text = json.dumps(STRUCTURED_REPLY, ensure_ascii=False)
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.token_delay = 0.0
        self.fail_after_tokens: Optional[int] = None
        self.separate_finish = False
        self.calls: Dict[str, int] = {"generate": 0, "structured": 0, "stream": 0}
        self.system_prompts: List[str] = []
        self.messages: List[Sequence[ChatMessage]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def model(self) -> str:
        return self._model

    async def _begin(self, kind: str, system_prompt: str, messages: Sequence[ChatMessage]) -> None:
        self.calls[kind] += 1
        self.system_prompts.append(system_prompt)
        self.messages.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error

    async def generate(self, system_prompt, messages, max_tokens, temperature) -> LLMCompletion:
        await self._begin("generate", system_prompt, messages)
        return LLMCompletion(text=self.completion_text, model=self._model)

    async def generate_structured(self, system_prompt, messages, schema, max_tokens, temperature) -> LLMCompletion:
        await self._begin("structured", system_prompt, messages)
        return LLMCompletion(text=self.structured_text, model=self._model)

    async def stream(self, system_prompt, messages, max_tokens, temperature) -> AsyncIterator[LLMDelta]:
        await self._begin("stream", system_prompt, messages)
        for index, token in enumerate(self.tokens):
            if self.fail_after_tokens is not None and index == self.fail_after_tokens:
                raise ConnectionError("stream reset by peer")
            last = index == len(self.tokens) - 1 and not self.separate_finish
            yield LLMDelta(content=token, finish_reason="stop" if last else None)
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
        if self.separate_finish:
            yield LLMDelta(content="", finish_reason="stop")


class FakeTtsProvider(TtsProvider):
    """TTS provider whose behaviour is set through attributes."""

    def __init__(self, name: str, model: str):
        self._name = name
        self._model = model
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.empty = False
        self.calls: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def model(self) -> str:
        return self._model

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthesizedAudio:
        self.calls.append({"text": text, "voice": voice, "speed": speed})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        audio = b"" if self.empty else f"{self._name}|{voice}|{speed}|{text}".encode("utf-8")
        return SynthesizedAudio(audio=audio, content_type="audio/mpeg", provider=self._name)


# =============================================================================
# Provider Fixtures
# =============================================================================


@pytest.fixture
def stt_primary() -> FakeSttProvider:
    return FakeSttProvider("openai_whisper")


@pytest.fixture
def stt_fallback() -> FakeSttProvider:
    return FakeSttProvider("deepgram", with_words=False)


@pytest.fixture
def llm_primary() -> FakeLlmProvider:
    return FakeLlmProvider("openai", "gpt-4o")


@pytest.fixture
def llm_fallback() -> FakeLlmProvider:
    return FakeLlmProvider("anthropic", "claude-3-5-sonnet-latest")


@pytest.fixture
def tts_primary() -> FakeTtsProvider:
    return FakeTtsProvider("openai", "tts-1-hd")


@pytest.fixture
def tts_fallback() -> FakeTtsProvider:
    return FakeTtsProvider("elevenlabs", "eleven_multilingual_v2")


# =============================================================================
# Pipeline Fixtures
# =============================================================================


@pytest.fixture
def tracker() -> LatencyTracker:
    return LatencyTracker()


@pytest.fixture
def invoker(tracker) -> FailoverInvoker:
    return FailoverInvoker(telemetry=tracker)


@pytest.fixture
def personas() -> PersonaRegistry:
    return PersonaRegistry()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore(bucket="tts-cache")


@pytest.fixture
def cache(blob_store) -> SynthesisCache:
    return SynthesisCache(store=blob_store, ttl_seconds=3600, max_memory_items=50)


@pytest.fixture
def transcription_stage(stt_primary, stt_fallback, invoker) -> AudioTranscriptionStage:
    return AudioTranscriptionStage(stt_primary, stt_fallback, invoker, timeout_ms=300)


@pytest.fixture
def generation_stage(llm_primary, llm_fallback, invoker, personas) -> ResponseGenerationStage:
    return ResponseGenerationStage(llm_primary, llm_fallback, invoker, personas, timeout_ms=300)


@pytest.fixture
def synthesis_stage(tts_primary, tts_fallback, invoker, cache, personas) -> SpeechSynthesisStage:
    return SpeechSynthesisStage(
        tts_primary,
        tts_fallback,
        invoker,
        timeout_ms=300,
        cache=cache,
        personas=personas,
    )


@pytest.fixture
def make_orchestrator(transcription_stage, generation_stage, synthesis_stage):
    """Factory for orchestrators over the scripted providers."""

    def _make(**options) -> StreamOrchestrator:
        options.setdefault("heartbeat_interval_ms", 10_000)
        options.setdefault("max_stream_duration_ms", 5_000)
        return StreamOrchestrator(
            transcription=transcription_stage,
            generation=generation_stage,
            synthesis=synthesis_stage,
            **options,
        )

    return _make


@pytest.fixture
def make_request():
    """Factory for pipeline requests."""

    def _make(**fields) -> PipelineRequest:
        fields.setdefault("audio", b"RIFF....WAVEfmt fake-audio")
        fields.setdefault("session_id", "sess_test")
        fields.setdefault("position", "백엔드 개발자")
        fields.setdefault("industry", "IT/테크")
        return PipelineRequest(**fields)

    return _make


async def _collect(events: AsyncIterator[StreamEvent]) -> List[StreamEvent]:
    return [event async for event in events]


@pytest.fixture
def collect():
    """Drain an event stream into a list."""
    return _collect


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings wired to mock providers with short budgets."""
    return Settings(
        test_mode=True,
        json_logs=False,
        timeouts=TimeoutConfig(stt_ms=1000, llm_ms=2000, tts_ms=1000),
        stream=StreamConfig(heartbeat_interval_ms=1000, max_stream_duration_ms=10_000),
        cache=CacheConfig(storage_backend="memory"),
    )


@pytest_asyncio.fixture
async def app_state(settings):
    """Application state built the way the server builds it."""
    from interview_core.api.app import AppState

    state = AppState.from_settings(settings)
    yield state
    await state.close()


@pytest_asyncio.fixture
async def app(settings, app_state) -> FastAPI:
    """Create test FastAPI application."""
    from interview_core.api.app import create_app

    return create_app(settings, state=app_state)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Create test HTTP client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
