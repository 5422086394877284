"""
Text-to-Speech Provider Implementations

OpenAI speech (primary) and ElevenLabs (fallback) behind the common
TtsProvider interface.
"""

import logging
import time
from typing import Optional

import httpx

from interview_core.errors import (
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from interview_core.models import SynthesizedAudio
from interview_core.providers.base import TtsProvider

logger = logging.getLogger(__name__)


MIN_SPEED = 0.25
MAX_SPEED = 4.0


def clamp_speed(speed: float) -> float:
    """Clamp playback speed to the range the speech APIs accept."""
    return max(MIN_SPEED, min(MAX_SPEED, speed))


# =============================================================================
# OpenAI Provider
# =============================================================================

class OpenAITtsProvider(TtsProvider):
    """
    OpenAI text-to-speech provider.

    Returns MP3 audio; unknown voice names are replaced by ``alloy``.
    """

    VOICES = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}
    MAX_INPUT_CHARS = 4096

    def __init__(
        self,
        api_key: str,
        model: str = "tts-1-hd",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ValueError("OpenAI API key is required")

        self.api_key = api_key
        self._model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthesizedAudio:
        """Synthesize text to speech using OpenAI TTS."""
        if len(text) > self.MAX_INPUT_CHARS:
            logger.warning(f"Text truncated from {len(text)} to {self.MAX_INPUT_CHARS} characters")
            text = text[:self.MAX_INPUT_CHARS]

        start_time = time.monotonic()
        client = await self._get_client()

        body = {
            "model": self._model,
            "input": text,
            "voice": voice if voice in self.VOICES else "alloy",
            "response_format": "mp3",
            "speed": clamp_speed(speed),
        }

        try:
            response = await client.post("/audio/speech", json=body)
        except httpx.TimeoutException:
            raise ProviderTimeoutError(
                f"OpenAI TTS request timed out after {self.timeout}s",
                provider=self.name,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                "Failed to reach OpenAI speech API",
                provider=self.name,
                details={"error": str(e)},
            )

        if response.status_code == 429:
            raise ProviderRateLimitError("OpenAI rate limit exceeded", provider=self.name)
        if response.status_code != 200:
            raise ProviderError(
                f"OpenAI TTS error: {response.status_code}",
                provider=self.name,
                details={"status_code": response.status_code, "body": response.text[:500]},
            )
        if not response.content:
            raise ProviderResponseError("OpenAI TTS returned no audio", provider=self.name)

        logger.info(
            f"OpenAI synthesis completed in {(time.monotonic() - start_time) * 1000:.0f}ms "
            f"({len(text)} chars)"
        )

        return SynthesizedAudio(
            audio=response.content,
            content_type="audio/mpeg",
            provider=self.name,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# ElevenLabs Provider
# =============================================================================

class ElevenLabsTtsProvider(TtsProvider):
    """
    ElevenLabs text-to-speech provider.

    Uses the multilingual model; ``voice`` is an ElevenLabs voice id.
    """

    DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"

    def __init__(
        self,
        api_key: str,
        model: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout: float = 30.0,
        stability: float = 0.5,
        similarity_boost: float = 0.75,
    ):
        if not api_key:
            raise ValueError("ElevenLabs API key is required")

        self.api_key = api_key
        self._model = model
        self.base_url = base_url
        self.timeout = timeout
        self.stability = stability
        self.similarity_boost = similarity_boost
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "elevenlabs"

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "xi-api-key": self.api_key,
                    "Accept": "audio/mpeg",
                },
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> SynthesizedAudio:
        """Synthesize text to speech using ElevenLabs."""
        client = await self._get_client()
        voice_id = voice or self.DEFAULT_VOICE_ID

        body = {
            "text": text,
            "model_id": self._model,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
            },
        }

        try:
            response = await client.post(f"/text-to-speech/{voice_id}", json=body)
        except httpx.TimeoutException:
            raise ProviderTimeoutError(
                f"ElevenLabs request timed out after {self.timeout}s",
                provider=self.name,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                "Failed to connect to ElevenLabs API",
                provider=self.name,
                details={"error": str(e)},
            )

        if response.status_code == 429:
            raise ProviderRateLimitError(
                "ElevenLabs rate limit exceeded",
                provider=self.name,
                retry_after=int(response.headers.get("Retry-After", 60)),
            )
        if response.status_code != 200:
            raise ProviderError(
                f"ElevenLabs API error: {response.status_code}",
                provider=self.name,
                details={"status_code": response.status_code, "voice_id": voice_id},
            )
        if not response.content:
            raise ProviderResponseError("ElevenLabs returned no audio", provider=self.name)

        return SynthesizedAudio(
            audio=response.content,
            content_type="audio/mpeg",
            provider=self.name,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
