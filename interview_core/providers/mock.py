"""Mock providers for test mode and local development."""

import asyncio
import hashlib
import json
from typing import Any, AsyncIterator, Sequence

import structlog

from interview_core.models import ChatMessage, MessageRole, SynthesizedAudio, TranscriptionResult, WordTiming
from interview_core.providers.base import LLMCompletion, LLMDelta, LlmProvider, SttProvider, TtsProvider

logger = structlog.get_logger()


class MockSttProvider(SttProvider):
    """Mock STT provider returning a fixed transcript with word timings."""

    TRANSCRIPT = "저는 3년간 백엔드 개발을 했습니다"

    def __init__(self, latency_ms: float = 50.0) -> None:
        self.latency_ms = latency_ms
        self._call_count = 0

    @property
    def name(self) -> str:
        return "mock"

    async def transcribe(self, audio: bytes, language: str) -> TranscriptionResult:
        """Return mock transcription."""
        await asyncio.sleep(self.latency_ms / 1000)
        self._call_count += 1

        words = []
        cursor = 200.0
        for word in self.TRANSCRIPT.split():
            words.append(WordTiming(word=word, start_ms=cursor, end_ms=cursor + 400, confidence=0.95))
            cursor += 550

        return TranscriptionResult(
            text=self.TRANSCRIPT,
            words=tuple(words),
            confidence=0.95,
            duration_ms=cursor + 200,
            provider=self.name,
            language=language,
        )


class MockLlmProvider(LlmProvider):
    """
    Mock LLM provider for testing without API costs.

    Streams the reply one character at a time, like a slow model.
    """

    REPLY = "좋은 답변이네요. 그 경험에서 가장 어려웠던 기술적 도전은 무엇이었나요?"

    def __init__(self, latency_ms: float = 100.0, token_delay_ms: float = 30.0) -> None:
        self.latency_ms = latency_ms
        self.token_delay_ms = token_delay_ms
        self.logger = logger.bind(provider="mock")

    @property
    def name(self) -> str:
        return "mock"

    @property
    def model(self) -> str:
        return "mock"

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a mock response."""
        await asyncio.sleep(self.latency_ms / 1000)

        last_message = next(
            (m.content for m in reversed(messages) if m.role == MessageRole.USER),
            "",
        )
        self.logger.info("llm_generated", input=last_message[:50], output=self.REPLY[:50])

        return LLMCompletion(text=self.REPLY, model=self.model)

    async def generate_structured(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a mock structured response."""
        await asyncio.sleep(self.latency_ms / 1000)
        payload = {
            "question": self.REPLY,
            "evaluation": {"relevance": 80, "clarity": 75, "depth": 60},
            "inner_thought": "경험은 있지만 구체적인 수치가 부족하다.",
            "follow_up_intent": True,
            "suggested_follow_up": "그 성과를 수치로 말씀해주실 수 있나요?",
        }
        return LLMCompletion(text=json.dumps(payload, ensure_ascii=False), model=self.model)

    async def stream(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[LLMDelta]:
        """Stream the mock reply character by character."""
        await asyncio.sleep(self.latency_ms / 1000)
        for index, char in enumerate(self.REPLY):
            last = index == len(self.REPLY) - 1
            yield LLMDelta(content=char, finish_reason="stop" if last else None)
            await asyncio.sleep(self.token_delay_ms / 1000)


class MockTtsProvider(TtsProvider):
    """Mock TTS provider returning deterministic fake audio."""

    def __init__(self, latency_ms: float = 50.0) -> None:
        self.latency_ms = latency_ms

    @property
    def name(self) -> str:
        return "mock"

    @property
    def model(self) -> str:
        return "mock"

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthesizedAudio:
        """Return mock audio derived from the input."""
        await asyncio.sleep(self.latency_ms / 1000)
        digest = hashlib.sha256(f"{text}:{voice}:{speed}".encode()).digest()
        # ID3 header so players accept the bytes as MP3
        audio = b"ID3" + digest * max(1, len(text) // 8)
        return SynthesizedAudio(audio=audio, content_type="audio/mpeg", provider=self.name)
