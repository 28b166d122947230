"""
FlowStudio Text Providers

Provider adapters for prompt generation. The model configuration is passed
on every call; providers hold only credentials.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from flowstudio.core.config import LLMConfig
from flowstudio.core.env_loader import get_anthropic_api_key, get_openai_api_key
from flowstudio.core.exceptions import MissingConfigError, ProviderError
from flowstudio.core.logging_config import get_logger

logger = get_logger("llm.providers")


@dataclass
class TokenUsage:
    """Token accounting for one call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def split(self, parts: int) -> "TokenUsage":
        """Evenly divide usage across ``parts`` items."""
        if parts <= 0:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=round(self.prompt_tokens / parts),
            completion_tokens=round(self.completion_tokens / parts),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
        }


@dataclass
class TextResponse:
    """Text returned by a provider."""
    text: str
    provider: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class TextProvider(ABC):
    """Abstract base class for text generation providers."""

    name: str = "base"

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key
        if not self._api_key:
            logger.warning(f"API key not found for provider: {self.name}")

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        config: LLMConfig
    ) -> TextResponse:
        """Generate text. Raises ProviderError on any failure."""
        pass

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)


class OpenAIProvider(TextProvider):
    """OpenAI chat completions provider."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None):
        super().__init__(api_key or get_openai_api_key())

    async def generate(self, system_prompt, user_prompt, config):
        try:
            import openai

            client = openai.AsyncOpenAI(api_key=self._api_key, timeout=config.timeout)

            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": user_prompt})

            response = await client.chat.completions.create(
                model=config.model,
                messages=messages,
                max_tokens=config.max_tokens,
                temperature=config.temperature
            )

            usage = TokenUsage()
            if response.usage:
                usage = TokenUsage(
                    prompt_tokens=response.usage.prompt_tokens or 0,
                    completion_tokens=response.usage.completion_tokens or 0,
                )

            return TextResponse(
                text=response.choices[0].message.content or "",
                provider=self.name,
                model=response.model or config.model,
                usage=usage,
            )

        except Exception as e:
            raise ProviderError(self.name, str(e)) from e


class AnthropicProvider(TextProvider):
    """Anthropic Claude messages provider."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None):
        super().__init__(api_key or get_anthropic_api_key())

    async def generate(self, system_prompt, user_prompt, config):
        try:
            import anthropic

            client = anthropic.AsyncAnthropic(api_key=self._api_key, timeout=config.timeout)

            message = await client.messages.create(
                model=config.model,
                max_tokens=config.max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=config.temperature
            )

            text = "".join(
                block.text for block in message.content if getattr(block, "type", "") == "text"
            )
            return TextResponse(
                text=text,
                provider=self.name,
                model=message.model or config.model,
                usage=TokenUsage(
                    prompt_tokens=message.usage.input_tokens,
                    completion_tokens=message.usage.output_tokens,
                ),
            )

        except Exception as e:
            raise ProviderError(self.name, str(e)) from e


PROVIDER_CLASSES: Dict[str, Callable[..., TextProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def get_text_provider(name: str, api_key: Optional[str] = None) -> TextProvider:
    """Create a text provider by name."""
    provider_class = PROVIDER_CLASSES.get(name)
    if provider_class is None:
        raise MissingConfigError(
            f"Unknown text provider: {name}",
            {"available": sorted(PROVIDER_CLASSES)}
        )
    return provider_class(api_key)
