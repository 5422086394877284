"""Provider adapters for the STT, LLM and TTS stages."""

from interview_core.providers.base import (
    LLMCompletion,
    LLMDelta,
    LlmProvider,
    SttProvider,
    TtsProvider,
)
from interview_core.providers.factory import (
    create_llm_provider,
    create_stt_provider,
    create_tts_provider,
)

__all__ = [
    "LLMCompletion",
    "LLMDelta",
    "LlmProvider",
    "SttProvider",
    "TtsProvider",
    "create_llm_provider",
    "create_stt_provider",
    "create_tts_provider",
]
