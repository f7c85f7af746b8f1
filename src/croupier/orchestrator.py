"""ProviderOrchestrator: provider selection, retries, fallback and quality gating."""

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from croupier.config import ProviderSettings, Settings
from croupier.exceptions import ProviderError, ProvidersExhausted, ProviderTimeout
from croupier.interfaces.llm import BaseLLMProvider
from croupier.quality import QualityScorer, extract_sql
from croupier.types import (
    AttemptOutcome,
    EntityMention,
    LLMResponse,
    ProviderAttempt,
    QualityScore,
    QueryComplexity,
    QueryIntent,
    SchemaSelection,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.transient


class Orchestration(BaseModel):
    """Accepted response plus the full attempt history."""

    model_config = ConfigDict(frozen=True)

    response: LLMResponse
    sql: str
    quality: QualityScore
    provider_id: str
    attempts: List[ProviderAttempt] = Field(default_factory=list)
    best_rejected: Optional[ProviderAttempt] = None


class ProviderOrchestrator:
    """Send a prompt through an ordered chain of providers.

    Providers are ordered by priority (highest first). Within a priority
    tier the starting provider rotates across requests when load balancing
    is ``round_robin``. Each provider gets up to ``retry.max_retries``
    attempts; only transient errors (timeouts, rate limits, server errors)
    are retried, with exponential backoff. Permanent errors and quality
    rejections move straight on to the next provider.

    Args:
        providers: Provider instances, matched to settings by ``provider_id``.
        settings: Provider configs, retry policy and quality thresholds.
        scorer: Quality scorer for accepted responses.
        sleep: Awaitable used for backoff delays.
    """

    def __init__(
        self,
        providers: Iterable[BaseLLMProvider],
        settings: Optional[Settings] = None,
        scorer: Optional[QualityScorer] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings or Settings()
        self._providers: Dict[str, BaseLLMProvider] = {p.provider_id: p for p in providers}
        self._configs: Dict[str, ProviderSettings] = {
            c.provider_id: c for c in self._settings.providers
        }
        for pid in self._providers.keys() - self._configs.keys():
            logger.warning("Provider '%s' has no configuration and will not be used", pid)
        self._scorer = scorer or QualityScorer()
        self._sleep = sleep
        self._turns = itertools.count()

    @property
    def provider_ids(self) -> List[str]:
        return [pid for pid in self._configs if pid in self._providers]

    # --- Selection ---

    def select_chain(self, complexity: QueryComplexity) -> List[ProviderSettings]:
        """Eligible providers for *complexity*, in the order they will be tried."""
        eligible = sorted(
            (
                c
                for c in self._configs.values()
                if c.is_available and c.supports(complexity) and c.provider_id in self._providers
            ),
            key=lambda c: (-c.priority, c.provider_id),
        )
        turn = next(self._turns)
        if self._settings.load_balancing != "round_robin":
            return eligible

        chain: List[ProviderSettings] = []
        for _, tier in itertools.groupby(eligible, key=lambda c: c.priority):
            tier = list(tier)
            offset = turn % len(tier)
            chain.extend(tier[offset:] + tier[:offset])
        return chain

    # --- Generation ---

    async def generate(
        self,
        prompt: str,
        complexity: QueryComplexity,
        schema_selection: SchemaSelection,
        intent: Optional[QueryIntent] = None,
        entities: Sequence[EntityMention] = (),
    ) -> Orchestration:
        """Return the first response that passes the quality gate.

        Raises:
            ProvidersExhausted: Every eligible provider failed or was
                rejected, or none supports *complexity*. Carries the attempt
                history and the best rejected attempt, if any.
        """
        chain = self.select_chain(complexity)
        if not chain:
            raise ProvidersExhausted(
                f"No available provider supports complexity '{complexity.value}'"
            )

        attempts: List[ProviderAttempt] = []
        best_rejected: Optional[ProviderAttempt] = None
        for config in chain:
            provider = self._providers[config.provider_id]
            try:
                response, started, number = await self._call_with_retries(
                    provider, config, prompt, attempts
                )
            except ProviderError as e:
                logger.warning("Provider '%s' failed, falling back: %s", config.provider_id, e)
                continue

            sql = extract_sql(response.text)
            quality = self._scorer.score(response.text, schema_selection, intent, entities)
            passed = self._scorer.passes(quality, self._settings.quality)
            record = ProviderAttempt(
                provider_id=config.provider_id,
                attempt_number=number,
                started_at=started,
                finished_at=self._now(),
                outcome=AttemptOutcome.SUCCESS if passed else AttemptOutcome.REJECTED,
                response_text=response.text,
                sql=sql,
                quality=quality,
            )
            attempts.append(record)

            if passed:
                logger.info(
                    "Provider '%s' accepted (overall=%.2f, %d attempts total)",
                    config.provider_id,
                    quality.overall_score,
                    len(attempts),
                )
                return Orchestration(
                    response=response,
                    sql=sql,
                    quality=quality,
                    provider_id=config.provider_id,
                    attempts=attempts,
                    best_rejected=best_rejected,
                )

            logger.info(
                "Provider '%s' rejected by quality gate (overall=%.2f): %s",
                config.provider_id,
                quality.overall_score,
                "; ".join(quality.issues) or "below thresholds",
            )
            if best_rejected is None or quality.overall_score > best_rejected.quality.overall_score:
                best_rejected = record

        raise ProvidersExhausted(
            f"All {len(chain)} eligible providers failed or were rejected",
            attempts=attempts,
            best_rejected=best_rejected,
        )

    async def _call_with_retries(
        self,
        provider: BaseLLMProvider,
        config: ProviderSettings,
        prompt: str,
        attempts: List[ProviderAttempt],
    ) -> Tuple[LLMResponse, datetime, int]:
        policy = self._settings.retry
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries),
            wait=wait_exponential(
                multiplier=policy.initial_delay,
                exp_base=policy.backoff_multiplier,
                max=policy.max_delay,
            ),
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                started = self._now()
                response = await self._call_once(provider, config, prompt, number, started, attempts)
                return response, started, number
        raise AssertionError("unreachable")  # pragma: no cover

    async def _call_once(
        self,
        provider: BaseLLMProvider,
        config: ProviderSettings,
        prompt: str,
        number: int,
        started: datetime,
        attempts: List[ProviderAttempt],
    ) -> LLMResponse:
        pid = config.provider_id
        try:
            return await asyncio.wait_for(
                provider.generate(prompt, config), timeout=config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            error = ProviderTimeout(
                f"Provider '{pid}' exceeded {config.timeout_seconds:.1f}s", provider_id=pid
            )
            attempts.append(self._failed(pid, number, started, error))
            raise error from e
        except ProviderError as e:
            attempts.append(self._failed(pid, number, started, e))
            raise
        except Exception as e:
            error = ProviderError(f"Provider '{pid}' raised {type(e).__name__}: {e}", provider_id=pid)
            attempts.append(self._failed(pid, number, started, error))
            raise error from e

    def _failed(
        self, provider_id: str, number: int, started: datetime, error: ProviderError
    ) -> ProviderAttempt:
        logger.debug("Attempt %d on '%s' failed: %s", number, provider_id, error)
        return ProviderAttempt(
            provider_id=provider_id,
            attempt_number=number,
            started_at=started,
            finished_at=self._now(),
            outcome=AttemptOutcome(error.outcome),
            error=str(error),
        )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
