"""OpenAI-compatible chat completion provider."""

import logging
import time
from typing import Optional

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
)

from croupier.config import ProviderSettings
from croupier.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeout,
)
from croupier.interfaces.llm import BaseLLMProvider
from croupier.types import LLMResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You translate analytics questions into a single read-only T-SQL SELECT "
    "statement. Reply with SQL only."
)


class OpenAIProvider(BaseLLMProvider):
    """Chat completions against OpenAI or any OpenAI-compatible endpoint.

    SDK exceptions are mapped onto the provider error hierarchy so the
    orchestrator can tell retryable failures from permanent ones. The SDK's
    own retries are disabled; retrying is the orchestrator's job.

    Args:
        settings: Provider configuration (model, endpoint, key, timeout).
        client: Optional pre-built client, mainly for tests.
    """

    def __init__(self, settings: ProviderSettings, client: Optional[AsyncOpenAI] = None):
        self._settings = settings
        if client is not None:
            self._client = client
        else:
            try:
                self._client = AsyncOpenAI(
                    api_key=settings.api_key,
                    base_url=settings.endpoint,
                    timeout=settings.timeout_seconds,
                    max_retries=0,
                )
            except Exception as e:
                raise ProviderAuthError(
                    f"Failed to initialize OpenAI client for '{settings.provider_id}': {e}",
                    provider_id=settings.provider_id,
                ) from e
        logger.info(
            "OpenAI provider '%s' initialized for model '%s'",
            settings.provider_id,
            settings.model,
        )

    @property
    def provider_id(self) -> str:
        return self._settings.provider_id

    async def generate(self, prompt: str, config: ProviderSettings) -> LLMResponse:
        pid = self.provider_id
        started = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=config.max_tokens,
                temperature=config.temperature,
            )
        except APITimeoutError as e:
            raise ProviderTimeout(f"Provider '{pid}' timed out: {e}", provider_id=pid) from e
        except RateLimitError as e:
            raise ProviderRateLimited(f"Provider '{pid}' rate limited: {e}", provider_id=pid) from e
        except (AuthenticationError, PermissionDeniedError) as e:
            logger.error("Provider '%s' rejected credentials: %s", pid, e)
            raise ProviderAuthError(f"Provider '{pid}' authentication failed: {e}", provider_id=pid) from e
        except (InternalServerError, APIConnectionError) as e:
            raise ProviderServerError(f"Provider '{pid}' unavailable: {e}", provider_id=pid) from e
        except BadRequestError as e:
            raise ProviderResponseError(f"Provider '{pid}' rejected the request: {e}", provider_id=pid) from e
        except Exception as e:
            raise ProviderError(f"Provider '{pid}' call failed: {e}", provider_id=pid) from e

        latency_ms = (time.perf_counter() - started) * 1000.0
        if not response.choices or not (response.choices[0].message.content or "").strip():
            raise ProviderResponseError(f"Provider '{pid}' returned an empty response", provider_id=pid)

        usage = getattr(response, "usage", None)
        return LLMResponse(
            text=response.choices[0].message.content,
            tokens_used=usage.total_tokens if usage is not None else 0,
            latency_ms=latency_ms,
            provider_id=pid,
            model=config.model,
        )

    async def close(self) -> None:
        await self._client.close()
