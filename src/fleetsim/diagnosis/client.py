"""Rate-limited, retrying diagnosis client and the alert merge policy."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from fleetsim.config import DiagnosisConfig
from fleetsim.diagnosis.cache import DiagnosisCache
from fleetsim.diagnosis.cost import estimate_cost
from fleetsim.diagnosis.provider import DiagnosisProvider, OpenAIChatProvider
from fleetsim.diagnosis.rate_limit import SlidingWindowRateLimiter
from fleetsim.exceptions import (
    DiagnosisResponseError,
    DiagnosisTransportError,
    EnrichmentDisabledError,
    EnrichmentFailed,
    RateLimitExceeded,
)
from fleetsim.models.alert import AlertCandidate, AlertRecord, EnrichmentInfo
from fleetsim.models.diagnosis import DiagnosisContext, DiagnosisResult, ProviderReply
from fleetsim.models.telemetry import TelemetrySample

_logger = logging.getLogger(__name__)

RECOMMENDATION_SEPARATOR = "; "


@dataclass(slots=True)
class DiagnosisUsage:
    """Cumulative counters for observability."""

    enabled: bool
    model: str
    requests: int = 0
    successes: int = 0
    failures: int = 0
    rate_limited: int = 0
    cache_hits: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0


def build_context(sample: TelemetrySample, alert_type: str, history: Sequence[TelemetrySample] = ()) -> DiagnosisContext:
    """Assemble the provider request for an alert raised on *sample*."""
    return DiagnosisContext(
        vehicle_id=sample.vehicle_id,
        timestamp=sample.timestamp,
        alert_type=str(alert_type),
        current_telemetry=sample,
        recent_history=tuple(history) or None,
    )


def merge_diagnosis(candidate: AlertCandidate, result: DiagnosisResult) -> AlertCandidate:
    """Overlay an enrichment result on a rule-based candidate.

    The diagnosis replaces the description, the joined recommendations
    replace the recommendation (kept as-is when the provider gave none) and
    the provider severity, with ``critical`` mapped to ``high``, replaces
    the rule severity.
    """
    recommendation = RECOMMENDATION_SEPARATOR.join(result.recommendations) or candidate.recommendation
    return candidate.model_copy(
        update={
            "severity": result.severity.to_severity(),
            "description": result.diagnosis,
            "recommendation": recommendation,
        }
    )


def enriched_record(record: AlertRecord, candidate: AlertCandidate, result: DiagnosisResult) -> AlertRecord:
    """Return *record* with the merged fields plus the enrichment sub-record."""
    merged = merge_diagnosis(candidate, result)
    return record.model_copy(
        update={
            "severity": merged.severity,
            "description": merged.description,
            "recommendation": merged.recommendation,
            "enrichment": EnrichmentInfo(
                diagnosis=result.diagnosis,
                recommendations=result.recommendations,
                llm_severity=str(result.severity),
                cost_usd=result.cost_usd,
                tokens=result.tokens_used,
                cached=result.cached,
            ),
            "rule_based": candidate,
        }
    )


class DiagnosisClient:
    """Enrich alerts through an external reasoning service.

    * a process-wide sliding window caps calls (fail fast, no queuing);
    * transient provider failures are retried with exponential backoff;
    * malformed answers are not retried;
    * every success is priced against the model's token rates.

    Usage::

        async with DiagnosisClient(DiagnosisConfig.from_env()) as client:
            result = await client.enrich(context)
    """

    def __init__(
        self,
        config: DiagnosisConfig,
        *,
        provider: DiagnosisProvider | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        cache: DiagnosisCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._owns_provider = False
        if provider is None and config.enabled and config.api_key:
            provider = OpenAIChatProvider(config)
            self._owns_provider = True
        self._provider = provider
        self._limiter = rate_limiter or SlidingWindowRateLimiter(
            config.rate_limit_calls,
            config.rate_limit_window,
            clock=clock,
        )
        if cache is None and config.cache_ttl > 0:
            cache = DiagnosisCache(config.cache_ttl, config.cache_max_entries, clock=clock)
        self._cache = cache
        self._usage = DiagnosisUsage(enabled=self.enabled, model=config.model)

    async def __aenter__(self) -> DiagnosisClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_provider and isinstance(self._provider, OpenAIChatProvider):
            await self._provider.close()

    @property
    def config(self) -> DiagnosisConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled and self._provider is not None

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    def usage_stats(self) -> DiagnosisUsage:
        """Snapshot of the cumulative usage counters."""
        usage = self._usage
        return DiagnosisUsage(
            enabled=self.enabled,
            model=usage.model,
            requests=usage.requests,
            successes=usage.successes,
            failures=usage.failures,
            rate_limited=usage.rate_limited,
            cache_hits=usage.cache_hits,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            total_cost_usd=usage.total_cost_usd,
        )

    async def enrich(self, context: DiagnosisContext) -> DiagnosisResult:
        """Diagnose *context*.

        Raises
        ------
        EnrichmentDisabledError
            Enrichment is switched off or no provider is configured.
        RateLimitExceeded
            The call budget for the current window is used up.
        DiagnosisResponseError
            The provider returned an unusable answer (not retried).
        EnrichmentFailed
            Every attempt failed with a request error.
        """
        if not self.enabled or self._provider is None:
            raise EnrichmentDisabledError("Diagnosis enrichment is disabled")

        if self._cache is not None:
            cached = self._cache.get(context)
            if cached is not None:
                self._usage.cache_hits += 1
                _logger.debug("Diagnosis cache hit for %s/%s", context.vehicle_id, context.alert_type)
                return cached.model_copy(update={"cached": True, "cost_usd": 0.0})

        try:
            await self._limiter.acquire()
        except RateLimitExceeded:
            self._usage.rate_limited += 1
            raise

        self._usage.requests += 1
        max_attempts = self._config.max_attempts
        last_exc: DiagnosisTransportError | None = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            try:
                reply = await self._provider.complete(context)
            except DiagnosisResponseError as exc:
                self._usage.failures += 1
                _logger.warning("Diagnosis attempt %d/%d returned an invalid response: %s", attempt, max_attempts, exc)
                raise DiagnosisResponseError(str(exc), attempts=attempt) from exc
            except DiagnosisTransportError as exc:
                last_exc = exc
                _logger.warning("Diagnosis attempt %d/%d failed: %s", attempt, max_attempts, exc)
                if not exc.transient:
                    break
                if attempt < max_attempts:
                    delay = self._config.retry_base_delay * 2 ** (attempt - 1)
                    _logger.info("Retrying diagnosis in %.1fs", delay)
                    await asyncio.sleep(delay)
                continue

            result = self._price(reply)
            if self._cache is not None:
                self._cache.put(context, result)
            _logger.info(
                "Diagnosis generated for %s - $%.4f (%d tokens)",
                context.vehicle_id,
                result.cost_usd,
                result.tokens_used,
            )
            return result

        self._usage.failures += 1
        raise EnrichmentFailed(
            f"Diagnosis failed after {attempt} attempts: {last_exc}",
            attempts=attempt,
        ) from last_exc

    def _price(self, reply: ProviderReply) -> DiagnosisResult:
        input_tokens = reply.input_tokens
        output_tokens = reply.output_tokens
        total_tokens = reply.tokens_used or input_tokens + output_tokens
        cost = estimate_cost(input_tokens, output_tokens, self._config.model)

        usage = self._usage
        usage.successes += 1
        usage.input_tokens += input_tokens
        usage.output_tokens += output_tokens
        usage.total_tokens += total_tokens
        usage.total_cost_usd += cost

        return DiagnosisResult(
            diagnosis=reply.diagnosis,
            recommendations=reply.recommendations,
            severity=reply.severity,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tokens_used=total_tokens,
            cost_usd=cost,
            model=self._config.model,
            cached=False,
        )
