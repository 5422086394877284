"""OpenAI and Anthropic LLM providers with streaming and structured output."""

from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator, Optional, Sequence

import anthropic
import openai
import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from interview_core.errors import ProviderError, ProviderRateLimitError, ProviderTimeoutError
from interview_core.models import ChatMessage, MessageRole
from interview_core.providers.base import LLMCompletion, LLMDelta, LlmProvider

logger = structlog.get_logger()


@contextmanager
def _translate_errors(provider: str, sdk: Any) -> Iterator[None]:
    """Map vendor SDK exceptions onto provider errors."""
    try:
        yield
    except sdk.APITimeoutError as e:
        raise ProviderTimeoutError(f"{provider} request timed out", provider=provider) from e
    except sdk.RateLimitError as e:
        raise ProviderRateLimitError(f"{provider} rate limit exceeded", provider=provider) from e
    except sdk.APIError as e:
        raise ProviderError(
            f"{provider} API error",
            provider=provider,
            details={"error": str(e)},
        ) from e


class OpenAILlmProvider(LlmProvider):
    """
    OpenAI chat-completions provider.

    Supports:
    - Free-text replies
    - JSON-schema constrained replies (structured mode)
    - Token streaming
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("OpenAI API key is required")

        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self._model = model
        self.logger = logger.bind(provider="openai")

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    def _convert_messages(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
    ) -> list[dict]:
        """Convert our message format to OpenAI format."""
        result = [{"role": "system", "content": system_prompt}]
        for msg in messages:
            role = "user" if msg.role == MessageRole.USER else "assistant"
            result.append({"role": role, "content": msg.content})
        return result

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a free-text reply."""
        with _translate_errors(self.name, openai):
            response = await self.client.chat.completions.create(
                model=self._model,
                messages=self._convert_messages(system_prompt, messages),
                max_tokens=max_tokens,
                temperature=temperature,
            )
        return self._to_completion(response)

    async def generate_structured(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a reply constrained to a JSON schema."""
        with _translate_errors(self.name, openai):
            response = await self.client.chat.completions.create(
                model=self._model,
                messages=self._convert_messages(system_prompt, messages),
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "interview_response",
                        "strict": False,
                        "schema": schema,
                    },
                },
                max_tokens=max_tokens,
                temperature=temperature,
            )
        return self._to_completion(response)

    def _to_completion(self, response: Any) -> LLMCompletion:
        choice = response.choices[0]
        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        self.logger.info(
            "llm_generated",
            model=self._model,
            tokens=usage["total_tokens"] if usage else 0,
        )

        return LLMCompletion(
            text=choice.message.content or "",
            model=self._model,
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    async def stream(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[LLMDelta]:
        """Stream reply tokens from OpenAI."""
        with _translate_errors(self.name, openai):
            stream = await self.client.chat.completions.create(
                model=self._model,
                messages=self._convert_messages(system_prompt, messages),
                max_tokens=max_tokens,
                temperature=temperature,
                stream=True,
            )

            async for chunk in stream:
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.delta.content or choice.finish_reason:
                    yield LLMDelta(
                        content=choice.delta.content or "",
                        finish_reason=choice.finish_reason,
                        id=chunk.id,
                    )

    async def close(self) -> None:
        """Close the OpenAI client."""
        await self.client.close()


class AnthropicLlmProvider(LlmProvider):
    """
    Anthropic Claude provider.

    Claude has no schema-constrained mode here; in structured mode the
    prompt asks for JSON and the caller extracts it from the text.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-latest",
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        if not api_key and client is None:
            raise ValueError("Anthropic API key is required")

        self.client = client or AsyncAnthropic(api_key=api_key, max_retries=0)
        self._model = model
        self.logger = logger.bind(provider="anthropic")

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model

    def _convert_messages(self, messages: Sequence[ChatMessage]) -> list[dict]:
        """Convert our message format to Anthropic format."""
        result: list[dict] = []
        for msg in messages:
            role = "assistant" if msg.role == MessageRole.ASSISTANT else "user"
            # Anthropic rejects consecutive turns with the same role
            if result and result[-1]["role"] == role:
                result[-1]["content"] += "\n\n" + msg.content
            else:
                result.append({"role": role, "content": msg.content})
        if result and result[0]["role"] != "user":
            result.insert(0, {"role": "user", "content": "(interview in progress)"})
        return result

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        """Generate a reply from Claude."""
        with _translate_errors(self.name, anthropic):
            response = await self.client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=self._convert_messages(messages),
            )

        text = "".join(block.text for block in response.content if block.type == "text")

        self.logger.info(
            "llm_generated",
            model=self._model,
            tokens=response.usage.input_tokens + response.usage.output_tokens,
        )

        return LLMCompletion(
            text=text,
            model=self._model,
            finish_reason=response.stop_reason,
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
        )

    async def stream(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[LLMDelta]:
        """Stream reply tokens from Claude."""
        with _translate_errors(self.name, anthropic):
            async with self.client.messages.stream(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=self._convert_messages(messages),
            ) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and hasattr(event.delta, "text"):
                        yield LLMDelta(content=event.delta.text)
                    elif event.type == "message_delta" and event.delta.stop_reason:
                        yield LLMDelta(content="", finish_reason=event.delta.stop_reason)

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self.client.close()
