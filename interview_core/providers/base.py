"""Base provider interfaces for the three pipeline stages."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Sequence

from interview_core.models import ChatMessage, SynthesizedAudio, TranscriptionResult


@dataclass
class LLMCompletion:
    """A complete reply from an LLM provider."""
    text: str
    model: str
    finish_reason: Optional[str] = "stop"
    usage: Optional[dict] = None


@dataclass
class LLMDelta:
    """One streamed piece of an LLM reply."""
    content: str
    finish_reason: Optional[str] = None
    id: Optional[str] = None


class SttProvider(ABC):
    """Abstract base class for speech-to-text providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get provider name."""
        pass

    @abstractmethod
    async def transcribe(self, audio: bytes, language: str) -> TranscriptionResult:
        """
        Transcribe a complete audio clip.

        Args:
            audio: Raw audio bytes in any container the provider accepts
            language: ISO language code (e.g. "ko")

        Returns:
            TranscriptionResult; ``words`` is empty when the provider
            returns no timings
        """
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


class LlmProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get provider name."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        """Model used for requests."""
        pass

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a complete free-text reply."""
        pass

    async def generate_structured(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """
        Generate a reply constrained to ``schema``.

        Providers without native constrained output fall back to a plain
        generation; the caller validates the returned text either way.
        """
        return await self.generate(system_prompt, messages, max_tokens, temperature)

    @abstractmethod
    def stream(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[LLMDelta]:
        """Stream the reply as it is produced."""
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


class TtsProvider(ABC):
    """Abstract base class for text-to-speech providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get provider name."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        """Model used for synthesis."""
        pass

    @abstractmethod
    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthesizedAudio:
        """Synthesize ``text`` with ``voice`` and return the full audio."""
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass
