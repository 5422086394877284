"""
Configuration for the Interview Streaming Core.

This module defines all configuration options for the STT -> LLM -> TTS
pipeline, including provider credentials, model selection, per-call
timeouts, stream limits and synthesis cache settings.
"""

from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class STTProviderName(str, Enum):
    """Supported speech-to-text providers."""

    OPENAI_WHISPER = "openai_whisper"
    DEEPGRAM = "deepgram"
    MOCK = "mock"


class LLMProviderName(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MOCK = "mock"


class TTSProviderName(str, Enum):
    """Supported text-to-speech providers."""

    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"
    MOCK = "mock"


class ProviderConfig(BaseSettings):
    """Provider credentials."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    deepgram_api_key: str = Field(default="", description="Deepgram API key")
    elevenlabs_api_key: str = Field(default="", description="ElevenLabs API key")

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI REST base URL (speech endpoints)",
    )
    deepgram_base_url: str = Field(
        default="https://api.deepgram.com/v1",
        description="Deepgram REST base URL",
    )
    elevenlabs_base_url: str = Field(
        default="https://api.elevenlabs.io/v1",
        description="ElevenLabs REST base URL",
    )


class ModelConfig(BaseSettings):
    """Model selection and generation parameters."""

    model_config = SettingsConfigDict(env_prefix="MODEL_")

    stt_primary: str = Field(default="whisper-1", description="Whisper model")
    stt_fallback: str = Field(default="nova-2", description="Deepgram model")
    llm_primary: str = Field(default="gpt-4o", description="Primary chat model")
    llm_fallback: str = Field(
        default="claude-3-5-sonnet-latest",
        description="Fallback chat model",
    )
    tts_primary: str = Field(default="tts-1-hd", description="OpenAI speech model")
    tts_fallback: str = Field(
        default="eleven_multilingual_v2",
        description="ElevenLabs model",
    )

    max_tokens: int = Field(default=300, ge=16, le=4096)
    structured_max_tokens: int = Field(default=500, ge=16, le=4096)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class TimeoutConfig(BaseSettings):
    """Per-provider-call timeouts."""

    model_config = SettingsConfigDict(env_prefix="TIMEOUT_")

    stt_ms: int = Field(
        default=10_000,
        ge=100,
        description="Timeout for one speech-to-text call",
    )
    llm_ms: int = Field(
        default=20_000,
        ge=100,
        description="Timeout for one LLM call (time to first token when streaming)",
    )
    tts_ms: int = Field(
        default=10_000,
        ge=100,
        description="Timeout for one text-to-speech call",
    )

    @property
    def total_ms(self) -> int:
        return self.stt_ms + self.llm_ms + self.tts_ms


class StreamConfig(BaseSettings):
    """Event stream limits."""

    model_config = SettingsConfigDict(env_prefix="STREAM_")

    heartbeat_interval_ms: int = Field(
        default=15_000,
        ge=10,
        description="Emit a heartbeat when nothing was sent for this long",
    )
    max_stream_duration_ms: int = Field(
        default=55_000,
        ge=100,
        description="Hard wall-clock budget for one run",
    )
    history_limit: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Number of prior turns passed to the LLM",
    )
    default_language: str = Field(default="ko", description="Default STT language")
    default_voice: str = Field(default="alloy", description="Fallback OpenAI voice")
    streaming_replies: bool = Field(
        default=True,
        description="Stream LLM tokens instead of waiting for the full reply",
    )


class CacheConfig(BaseSettings):
    """Synthesis cache configuration."""

    model_config = SettingsConfigDict(env_prefix="TTS_CACHE_")

    bucket_name: str = Field(default="tts-cache")
    ttl_seconds: int = Field(
        default=60 * 60 * 24 * 7,
        ge=1,
        description="Age after which durable entries are considered expired",
    )
    max_memory_items: int = Field(default=50, ge=1, le=10_000)
    enable_memory_cache: bool = Field(default=True)
    enable_storage_cache: bool = Field(default=True)
    storage_backend: str = Field(
        default="local",
        description="Durable store backend: 'local' or 'memory'",
    )
    storage_path: str = Field(
        default="/tmp/interview-core/storage",
        description="Root directory of the local blob store",
    )
    public_base_url: Optional[str] = Field(
        default=None,
        description="Base URL under which the blob store is served",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(
        default="interview-core",
        description="Service name for identification",
    )
    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=8090, ge=1024, le=65535, description="Port to listen on")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="info", description="Logging level")
    json_logs: bool = Field(default=True, description="Render logs as JSON")
    cors_origins: List[str] = Field(default=["*"])

    test_mode: bool = Field(
        default=False,
        description="Use deterministic mock providers instead of vendor APIs",
    )

    # Provider selection
    primary_stt_provider: STTProviderName = Field(default=STTProviderName.OPENAI_WHISPER)
    fallback_stt_provider: STTProviderName = Field(default=STTProviderName.DEEPGRAM)
    primary_llm_provider: LLMProviderName = Field(default=LLMProviderName.OPENAI)
    fallback_llm_provider: LLMProviderName = Field(default=LLMProviderName.ANTHROPIC)
    primary_tts_provider: TTSProviderName = Field(default=TTSProviderName.OPENAI)
    fallback_tts_provider: TTSProviderName = Field(default=TTSProviderName.ELEVENLABS)

    # Sub-configurations
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.lower()

    @model_validator(mode="after")
    def validate_budget(self) -> "Settings":
        """The run budget must leave room for every per-stage call."""
        if self.stream.max_stream_duration_ms <= self.timeouts.total_ms:
            raise ValueError(
                "max_stream_duration_ms "
                f"({self.stream.max_stream_duration_ms}) must be greater than the "
                f"sum of per-call timeouts ({self.timeouts.total_ms})"
            )
        return self

    def get_provider_key(self, provider: str) -> Optional[str]:
        """Get API key for a provider."""
        key_map = {
            "openai": self.providers.openai_api_key,
            "openai_whisper": self.providers.openai_api_key,
            "anthropic": self.providers.anthropic_api_key,
            "deepgram": self.providers.deepgram_api_key,
            "elevenlabs": self.providers.elevenlabs_api_key,
        }
        return key_map.get(provider.lower()) or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
