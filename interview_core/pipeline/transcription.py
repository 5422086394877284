"""Speech-to-text stage."""

import asyncio
from typing import List, Optional, Tuple

import structlog

from interview_core.errors import EmptyAudioError
from interview_core.models import ProviderAttempt, Stage, TranscriptionResult
from interview_core.pipeline.failover import FailoverInvoker, ProviderCall
from interview_core.providers.base import SttProvider

logger = structlog.get_logger()


def _has_text(result: TranscriptionResult) -> bool:
    return bool(result.text and result.text.strip())


class AudioTranscriptionStage:
    """
    Converts an audio clip to text and word timings.

    Empty buffers are rejected before any provider is called. A provider
    that returns no word timings yields an empty ``words`` tuple.
    """

    def __init__(
        self,
        primary: SttProvider,
        fallback: SttProvider,
        invoker: FailoverInvoker,
        timeout_ms: float,
    ):
        self.primary = primary
        self.fallback = fallback
        self.invoker = invoker
        self.timeout_ms = timeout_ms

    async def run(
        self,
        audio: bytes,
        language: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[TranscriptionResult, List[ProviderAttempt]]:
        """Transcribe ``audio``, failing over to the secondary provider."""
        if not audio:
            raise EmptyAudioError()

        result, attempts = await self.invoker.invoke(
            Stage.TRANSCRIPTION.value,
            ProviderCall(self.primary.name, lambda: self.primary.transcribe(audio, language)),
            ProviderCall(self.fallback.name, lambda: self.fallback.transcribe(audio, language)),
            self.timeout_ms,
            is_valid=_has_text,
            cancel_event=cancel_event,
        )

        if not isinstance(result.words, tuple):
            result = TranscriptionResult(
                text=result.text,
                words=tuple(result.words or ()),
                confidence=result.confidence,
                duration_ms=result.duration_ms,
                provider=result.provider,
                language=result.language,
            )

        logger.info(
            "transcription_completed",
            provider=result.provider,
            chars=len(result.text),
            words=len(result.words),
            attempts=len(attempts),
        )
        return result, attempts
