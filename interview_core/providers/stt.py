"""
Speech-to-Text Provider Implementations

OpenAI Whisper (primary) and Deepgram (fallback) behind the common
SttProvider interface. Both are plain REST calls over a shared
httpx.AsyncClient; vendor errors are translated into ProviderError.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from interview_core.errors import (
    EmptyAudioError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from interview_core.models import TranscriptionResult, WordTiming
from interview_core.providers.base import SttProvider

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    """Translate HTTP error statuses into provider errors."""
    if response.status_code == 429:
        raise ProviderRateLimitError(
            f"{provider} rate limit exceeded",
            provider=provider,
            retry_after=int(response.headers.get("Retry-After", 60)),
        )
    if response.status_code != 200:
        raise ProviderError(
            f"{provider} API error: {response.status_code}",
            provider=provider,
            details={"status_code": response.status_code, "body": response.text[:500]},
        )


# =============================================================================
# OpenAI Whisper Provider
# =============================================================================

class WhisperSttProvider(SttProvider):
    """
    OpenAI Whisper speech-to-text provider.

    Requests ``verbose_json`` with word-level timestamps so the voice
    analysis step has timings to work with.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ValueError("OpenAI API key is required")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "openai_whisper"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def transcribe(self, audio: bytes, language: str) -> TranscriptionResult:
        """Transcribe audio using OpenAI Whisper."""
        if not audio:
            raise EmptyAudioError(provider=self.name)

        start_time = time.monotonic()
        client = await self._get_client()

        files = {"file": ("audio.webm", audio, "application/octet-stream")}
        data: Dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": ["word"],
        }
        if language:
            data["language"] = language.split("-")[0]

        try:
            response = await client.post("/audio/transcriptions", files=files, data=data)
        except httpx.TimeoutException:
            raise ProviderTimeoutError(
                f"Whisper request timed out after {self.timeout}s",
                provider=self.name,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                "Failed to reach OpenAI transcription API",
                provider=self.name,
                details={"error": str(e)},
            )

        _raise_for_status(response, self.name)
        payload = response.json()

        words = tuple(
            WordTiming(
                word=w.get("word", "").strip(),
                start_ms=float(w.get("start", 0.0)) * 1000,
                end_ms=float(w.get("end", 0.0)) * 1000,
            )
            for w in payload.get("words") or []
        )

        latency_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Whisper transcription completed",
            extra={"latency_ms": round(latency_ms, 1), "words": len(words)},
        )

        return TranscriptionResult(
            text=(payload.get("text") or "").strip(),
            words=words,
            confidence=None,
            duration_ms=float(payload.get("duration", 0.0)) * 1000,
            provider=self.name,
            language=payload.get("language", language),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Deepgram Provider
# =============================================================================

class DeepgramSttProvider(SttProvider):
    """
    Deepgram speech-to-text provider.

    Pre-recorded transcription with Nova-2. Word timings are returned
    natively; a response without an alternative yields an empty result.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        base_url: str = "https://api.deepgram.com/v1",
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ValueError("Deepgram API key is required")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return "deepgram"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Token {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def transcribe(self, audio: bytes, language: str) -> TranscriptionResult:
        """Transcribe audio data using Deepgram."""
        if not audio:
            raise EmptyAudioError(provider=self.name)

        client = await self._get_client()
        params = {
            "model": self.model,
            "language": language,
            "punctuate": "true",
            "smart_format": "true",
        }

        try:
            response = await client.post(
                "/listen",
                content=audio,
                params=params,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TimeoutException:
            raise ProviderTimeoutError(
                f"Deepgram request timed out after {self.timeout}s",
                provider=self.name,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                "Failed to connect to Deepgram API",
                provider=self.name,
                details={"error": str(e)},
            )

        _raise_for_status(response, self.name)
        return self._parse_response(response.json(), language)

    def _parse_response(self, data: Dict[str, Any], language: str) -> TranscriptionResult:
        """Parse Deepgram API response."""
        duration_ms = float(data.get("metadata", {}).get("duration", 0.0)) * 1000

        channels = data.get("results", {}).get("channels", [])
        alternatives = channels[0].get("alternatives", []) if channels else []
        if not alternatives:
            return TranscriptionResult(
                text="",
                duration_ms=duration_ms,
                provider=self.name,
                language=language,
            )

        best = alternatives[0]
        words: List[WordTiming] = [
            WordTiming(
                word=w.get("punctuated_word") or w.get("word", ""),
                start_ms=float(w.get("start", 0.0)) * 1000,
                end_ms=float(w.get("end", 0.0)) * 1000,
                confidence=w.get("confidence"),
            )
            for w in best.get("words", [])
        ]

        return TranscriptionResult(
            text=(best.get("transcript") or "").strip(),
            words=tuple(words),
            confidence=best.get("confidence"),
            duration_ms=duration_ms,
            provider=self.name,
            language=language,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
