"""
LLM Provider - chat completions over an OpenAI-compatible API.

Provider failures are translated into the typed LLMProviderError family so the
fallback loop can tell a retired model from a failure that must abort.
"""

from typing import Protocol

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)
from openai import AuthenticationError as OpenAIAuthError
from openai import RateLimitError as OpenAIRateLimitError
from structlog import get_logger

from studycards.exceptions import (
    LLMProviderError,
    ModelUnavailableError,
    ProviderAuthenticationError,
    ProviderRateLimitError,
)

logger = get_logger(__name__)


def is_decommissioned(status_code: int | None, message: str) -> bool:
    """True when the provider rejected the request because the model was retired."""
    return status_code == 400 and "decommissioned" in message.lower()


class ChatCompletionProvider(Protocol):
    """Single-model completion call used by ModelFallbackClient."""

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """
        Run one chat completion.

        Raises:
            ModelUnavailableError: Model is decommissioned
            LLMProviderError: Any other provider failure
        """
        ...


class OpenAICompatibleProvider:
    """
    Chat completion provider using the official openai SDK.

    Works against any OpenAI-compatible endpoint; the default base URL is
    Groq's.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout_seconds: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ProviderAuthenticationError("LLM API key is not configured")
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate a complete response for one model."""
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
            )
        except OpenAIRateLimitError as e:
            raise ProviderRateLimitError(
                "AI service rate limit exceeded. Please try again later.",
                model=model,
                status_code=e.status_code,
            ) from e
        except OpenAIAuthError as e:
            raise ProviderAuthenticationError(
                "AI service rejected the API key",
                model=model,
                status_code=e.status_code,
            ) from e
        except APIStatusError as e:
            if is_decommissioned(e.status_code, e.message):
                raise ModelUnavailableError(
                    f"Model {model} has been decommissioned",
                    model=model,
                    status_code=e.status_code,
                ) from e
            raise LLMProviderError(
                f"AI service error: {e.message}",
                model=model,
                status_code=e.status_code,
            ) from e
        except APITimeoutError as e:
            raise LLMProviderError("AI service timed out", model=model) from e
        except APIConnectionError as e:
            raise LLMProviderError("AI service is unreachable", model=model) from e
        except APIError as e:
            raise LLMProviderError(f"AI service error: {e.message}", model=model) from e

        if not response.choices:
            raise LLMProviderError("AI service returned no choices", model=model)
        return response.choices[0].message.content or ""
