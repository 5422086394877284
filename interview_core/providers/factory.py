"""Factory functions wiring providers from settings."""

from interview_core.config import (
    LLMProviderName,
    Settings,
    STTProviderName,
    TTSProviderName,
)
from interview_core.providers.base import LlmProvider, SttProvider, TtsProvider
from interview_core.providers.llm import AnthropicLlmProvider, OpenAILlmProvider
from interview_core.providers.mock import MockLlmProvider, MockSttProvider, MockTtsProvider
from interview_core.providers.stt import DeepgramSttProvider, WhisperSttProvider
from interview_core.providers.tts import ElevenLabsTtsProvider, OpenAITtsProvider


def create_stt_provider(provider: STTProviderName, settings: Settings, fallback: bool = False) -> SttProvider:
    """
    Create an STT provider.

    Args:
        provider: The provider type to create
        settings: Application settings (credentials, models, timeouts)
        fallback: Whether this is the fallback slot (selects the model)

    Returns:
        Configured STT provider instance
    """
    if settings.test_mode or provider == STTProviderName.MOCK:
        return MockSttProvider()

    keys = settings.providers
    model = settings.models.stt_fallback if fallback else settings.models.stt_primary
    timeout = settings.timeouts.stt_ms / 1000

    if provider == STTProviderName.OPENAI_WHISPER:
        return WhisperSttProvider(
            api_key=keys.openai_api_key,
            model=model,
            base_url=keys.openai_base_url,
            timeout=timeout,
        )
    if provider == STTProviderName.DEEPGRAM:
        return DeepgramSttProvider(
            api_key=keys.deepgram_api_key,
            model=model,
            base_url=keys.deepgram_base_url,
            timeout=timeout,
        )

    raise ValueError(f"Unsupported STT provider: {provider}")


def create_llm_provider(provider: LLMProviderName, settings: Settings, fallback: bool = False) -> LlmProvider:
    """Create an LLM provider."""
    if settings.test_mode or provider == LLMProviderName.MOCK:
        return MockLlmProvider()

    model = settings.models.llm_fallback if fallback else settings.models.llm_primary

    if provider == LLMProviderName.OPENAI:
        return OpenAILlmProvider(api_key=settings.providers.openai_api_key, model=model)
    if provider == LLMProviderName.ANTHROPIC:
        return AnthropicLlmProvider(api_key=settings.providers.anthropic_api_key, model=model)

    raise ValueError(f"Unsupported LLM provider: {provider}")


def create_tts_provider(provider: TTSProviderName, settings: Settings, fallback: bool = False) -> TtsProvider:
    """Create a TTS provider."""
    if settings.test_mode or provider == TTSProviderName.MOCK:
        return MockTtsProvider()

    keys = settings.providers
    model = settings.models.tts_fallback if fallback else settings.models.tts_primary
    timeout = settings.timeouts.tts_ms / 1000

    if provider == TTSProviderName.OPENAI:
        return OpenAITtsProvider(
            api_key=keys.openai_api_key,
            model=model,
            base_url=keys.openai_base_url,
            timeout=timeout,
        )
    if provider == TTSProviderName.ELEVENLABS:
        return ElevenLabsTtsProvider(
            api_key=keys.elevenlabs_api_key,
            model=model,
            base_url=keys.elevenlabs_base_url,
            timeout=timeout,
        )

    raise ValueError(f"Unsupported TTS provider: {provider}")
