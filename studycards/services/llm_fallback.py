"""
Model Fallback Client - ordered candidate models with retire-aware fallback.

Only a decommissioned model moves the loop to the next candidate; any other
provider failure aborts immediately so rate limits and auth errors reach the
caller unchanged.
"""

import time
from dataclasses import dataclass, field

from structlog import get_logger

from studycards.exceptions import LLMProviderError, ModelUnavailableError
from studycards.observability.metrics import metrics
from studycards.services.llm_provider import ChatCompletionProvider

logger = get_logger(__name__)


@dataclass
class ModelCallAttempt:
    """One completion walked across the candidate list."""

    models: tuple[str, ...]
    index: int = 0
    failures: list[ModelUnavailableError] = field(default_factory=list)

    @property
    def current_model(self) -> str:
        return self.models[self.index]

    @property
    def exhausted(self) -> bool:
        return self.index >= len(self.models)

    def skip(self, error: ModelUnavailableError) -> None:
        self.failures.append(error)
        self.index += 1


class ModelFallbackClient:
    """Tries candidate models strictly in order until one answers."""

    def __init__(
        self,
        provider: ChatCompletionProvider,
        models: list[str],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        if not models:
            raise ValueError("At least one candidate model is required")
        self.provider = provider
        self.models = list(models)
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the first successful completion."""
        text, _ = await self.complete_with_attempt(system_prompt, user_prompt)
        return text

    async def complete_with_attempt(
        self, system_prompt: str, user_prompt: str
    ) -> tuple[str, ModelCallAttempt]:
        """
        Return the first successful completion and the walk that produced it.

        Raises:
            ModelUnavailableError: Every candidate is decommissioned (last error)
            LLMProviderError: First non-retirement failure, or no candidates
        """
        attempt = ModelCallAttempt(models=tuple(self.models))

        while not attempt.exhausted:
            model = attempt.current_model
            started = time.perf_counter()
            try:
                text = await self.provider.complete(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )
            except ModelUnavailableError as e:
                self._record(model, "unavailable", started)
                logger.warning("llm_model_unavailable", model=model, position=attempt.index)
                attempt.skip(e)
                continue
            except LLMProviderError as e:
                self._record(model, "error", started)
                logger.error(
                    "llm_request_failed",
                    model=model,
                    position=attempt.index,
                    error_type=type(e).__name__,
                    status_code=e.status_code,
                )
                raise

            self._record(model, "success", started)
            logger.info("llm_request_succeeded", model=model, skipped=len(attempt.failures))
            return text, attempt

        logger.error("llm_all_models_unavailable", models=list(attempt.models))
        if not attempt.failures:
            raise LLMProviderError("No candidate models")
        raise attempt.failures[-1]

    @staticmethod
    def _record(model: str, outcome: str, started: float) -> None:
        metrics.record_llm_attempt(model, outcome, time.perf_counter() - started)
