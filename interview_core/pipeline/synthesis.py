"""Text-to-speech stage with a content-addressed cache in front of the providers."""

import asyncio
from typing import List, Optional, Tuple

import structlog

from interview_core.models import CacheEntry, ProviderAttempt, Stage, SynthesizedAudio
from interview_core.pipeline.cache import SynthesisCache, cache_key
from interview_core.pipeline.failover import FailoverInvoker, ProviderCall
from interview_core.pipeline.personas import PersonaRegistry
from interview_core.providers.base import TtsProvider
from interview_core.providers.tts import clamp_speed

logger = structlog.get_logger()


def _has_audio(result: SynthesizedAudio) -> bool:
    return bool(result.audio)


class SpeechSynthesisStage:
    """
    Converts reply text to audio.

    The cache key covers the normalized text plus the voice, speed and
    model of the provider that produced the audio. Lookups try the primary
    key first, then the fallback key.
    """

    CACHE_PROVIDER = "cache"

    def __init__(
        self,
        primary: TtsProvider,
        fallback: TtsProvider,
        invoker: FailoverInvoker,
        timeout_ms: float,
        cache: Optional[SynthesisCache] = None,
        personas: Optional[PersonaRegistry] = None,
        default_voice: str = "alloy",
    ):
        self.primary = primary
        self.fallback = fallback
        self.invoker = invoker
        self.timeout_ms = timeout_ms
        self.cache = cache
        self.personas = personas or PersonaRegistry()
        self.default_voice = default_voice

    def resolve_voices(self, voice: Optional[str], persona_id: Optional[str]) -> Tuple[str, str]:
        """Voice for the primary and for the fallback provider."""
        persona = self.personas.get_persona(persona_id) if persona_id else None

        primary_voice = voice or (persona.voice_for(self.primary.name) if persona else None) or self.default_voice
        fallback_voice = (persona.voice_for(self.fallback.name) if persona else None) or primary_voice
        return primary_voice, fallback_voice

    async def run(
        self,
        text: str,
        voice: Optional[str] = None,
        speed: float = 1.0,
        persona_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[SynthesizedAudio, List[ProviderAttempt]]:
        """
        Synthesize ``text``, serving from cache when possible.

        Returns:
            The audio and the provider attempts made (empty on a cache hit)
        """
        if not text or not text.strip():
            raise ValueError("Cannot synthesize empty text")

        speed = clamp_speed(speed)
        primary_voice, fallback_voice = self.resolve_voices(voice, persona_id)
        key = cache_key(text, primary_voice, speed, self.primary.model)
        fallback_key = cache_key(text, fallback_voice, speed, self.fallback.model)

        if self.cache is not None:
            entry = await self._lookup(key, fallback_key)
            if entry is not None:
                key = entry.key
                logger.info("synthesis_cache_hit", cache_key=key, url=entry.url)
                return SynthesizedAudio(
                    audio=entry.audio,
                    content_type=entry.content_type,
                    provider=self.CACHE_PROVIDER,
                    cache_hit=True,
                    url=entry.url,
                    cache_key=key,
                ), []

        result, attempts = await self.invoker.invoke(
            Stage.SYNTHESIS.value,
            ProviderCall(self.primary.name, lambda: self.primary.synthesize(text, primary_voice, speed)),
            ProviderCall(self.fallback.name, lambda: self.fallback.synthesize(text, fallback_voice, speed)),
            self.timeout_ms,
            is_valid=_has_audio,
            cancel_event=cancel_event,
        )

        if len(attempts) > 1:
            key = fallback_key
        if self.cache is not None:
            await self.cache.set(key, result.audio, result.content_type)

        logger.info(
            "synthesis_completed",
            provider=result.provider,
            bytes=len(result.audio),
            cache_key=key,
        )
        return SynthesizedAudio(
            audio=result.audio,
            content_type=result.content_type,
            provider=result.provider,
            cache_hit=False,
            url=result.url,
            cache_key=key,
        ), attempts

    async def _lookup(self, key: str, fallback_key: str) -> Optional[CacheEntry]:
        entry = await self.cache.get(key)
        if entry is None and fallback_key != key:
            entry = await self.cache.get(fallback_key)
        return entry
