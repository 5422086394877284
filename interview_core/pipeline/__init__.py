"""
Interview pipeline.

STT -> LLM -> TTS stages with provider failover, the synthesis cache,
latency tracking and the stream orchestrator.
"""

from interview_core.pipeline.cache import LRUCache, SynthesisCache, cache_key
from interview_core.pipeline.failover import FailoverInvoker, ProviderCall
from interview_core.pipeline.generation import ResponseGenerationStage
from interview_core.pipeline.latency import LatencyTracker, TelemetrySink
from interview_core.pipeline.orchestrator import StreamOrchestrator
from interview_core.pipeline.personas import PersonaRegistry
from interview_core.pipeline.synthesis import SpeechSynthesisStage
from interview_core.pipeline.transcription import AudioTranscriptionStage

__all__ = [
    "AudioTranscriptionStage",
    "FailoverInvoker",
    "LatencyTracker",
    "LRUCache",
    "PersonaRegistry",
    "ProviderCall",
    "ResponseGenerationStage",
    "SpeechSynthesisStage",
    "StreamOrchestrator",
    "SynthesisCache",
    "TelemetrySink",
    "cache_key",
]
