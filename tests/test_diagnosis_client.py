from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from fleetsim.config import DiagnosisConfig
from fleetsim.diagnosis.cache import DiagnosisCache
from fleetsim.diagnosis.client import DiagnosisClient, build_context, enriched_record, merge_diagnosis
from fleetsim.diagnosis.cost import estimate_cost, rate_for
from fleetsim.exceptions import (
    DiagnosisResponseError,
    DiagnosisTransportError,
    EnrichmentDisabledError,
    EnrichmentFailed,
    RateLimitExceeded,
)
from fleetsim.models.alert import AlertCandidate, AlertRecord, AlertType, Severity
from fleetsim.models.diagnosis import DiagnosisContext, DiagnosisResult, DiagnosisSeverity, ProviderReply
from fleetsim.models.telemetry import GpsFix, TelemetrySample

_TS = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _sample(**overrides: Any) -> TelemetrySample:
    fields: dict[str, Any] = {
        "tenant_id": "tenant-a",
        "vehicle_id": "bus-7",
        "timestamp": _TS,
        "rpm": 2400,
        "speed": 70,
        "engine_temp_c": 108,
        "battery_voltage": 13.8,
        "fuel_level_percent": 40,
        "gps": GpsFix(lat=-12.0, lng=-77.0, accuracy_m=6.0),
    }
    fields.update(overrides)
    return TelemetrySample(**fields)


def _context(**overrides: Any) -> DiagnosisContext:
    return build_context(_sample(**overrides), AlertType.ENGINE_OVERHEATING)


def _reply(**overrides: Any) -> ProviderReply:
    fields: dict[str, Any] = {
        "diagnosis": "Thermostat stuck closed",
        "recommendations": ("Replace thermostat", "Flush coolant"),
        "severity": "critical",
        "input_tokens": 1000,
        "output_tokens": 500,
        "tokens_used": 1500,
    }
    fields.update(overrides)
    return ProviderReply(**fields)


class _ScriptedProvider:
    """Replays a script of replies/exceptions, one per call."""

    def __init__(self, *script: ProviderReply | Exception) -> None:
        self._script = list(script)
        self.calls = 0

    async def complete(self, context: DiagnosisContext) -> ProviderReply:
        self.calls += 1
        step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, Exception):
            raise step
        return step


class _FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        recorded.append(delay)

    monkeypatch.setattr("fleetsim.diagnosis.client.asyncio.sleep", _fake_sleep)
    return recorded


def _client(provider: _ScriptedProvider, **config: Any) -> DiagnosisClient:
    return DiagnosisClient(DiagnosisConfig(enabled=True, api_key="sk-test", **config), provider=provider)


@pytest.mark.asyncio
async def test_enrich_prices_and_returns_result(sleeps: list[float]) -> None:
    client = _client(_ScriptedProvider(_reply()))

    result = await client.enrich(_context())

    assert result.diagnosis == "Thermostat stuck closed"
    assert result.severity is DiagnosisSeverity.CRITICAL
    assert result.tokens_used == 1500
    # gpt-4o-mini: 1000 * 0.00015 / 1000 + 500 * 0.0006 / 1000
    assert result.cost_usd == pytest.approx(0.00045)
    assert result.model == "gpt-4o-mini"
    assert sleeps == []
    usage = client.usage_stats()
    assert (usage.requests, usage.successes, usage.total_tokens) == (1, 1, 1500)


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(
        DiagnosisTransportError("HTTP 503", status_code=503),
        DiagnosisTransportError("timeout"),
        _reply(),
    )
    client = _client(provider)

    result = await client.enrich(_context())

    assert provider.calls == 3
    assert sleeps == [1.0, 2.0]
    assert result.diagnosis == "Thermostat stuck closed"


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(DiagnosisTransportError("connection reset"))
    client = _client(provider, retry_base_delay=0.5)

    with pytest.raises(EnrichmentFailed) as exc_info:
        await client.enrich(_context())

    assert exc_info.value.attempts == 3
    assert provider.calls == 3
    assert sleeps == [0.5, 1.0]
    assert isinstance(exc_info.value.__cause__, DiagnosisTransportError)
    assert client.usage_stats().failures == 1


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(DiagnosisTransportError("HTTP 401", transient=False, status_code=401))
    client = _client(provider)

    with pytest.raises(EnrichmentFailed) as exc_info:
        await client.enrich(_context())

    assert exc_info.value.attempts == 1
    assert provider.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_malformed_responses_are_not_retried(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(
        DiagnosisTransportError("HTTP 502", status_code=502),
        DiagnosisResponseError("Completion content is not JSON", attempts=1),
        _reply(),
    )
    client = _client(provider)

    with pytest.raises(DiagnosisResponseError) as exc_info:
        await client.enrich(_context())

    assert provider.calls == 2
    assert exc_info.value.attempts == 2
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_disabled_client_refuses_to_enrich() -> None:
    provider = _ScriptedProvider(_reply())
    client = DiagnosisClient(DiagnosisConfig(enabled=False), provider=provider)

    assert client.enabled is False
    with pytest.raises(EnrichmentDisabledError):
        await client.enrich(_context())
    assert provider.calls == 0


def test_enabled_without_key_or_provider_stays_disabled() -> None:
    assert DiagnosisClient(DiagnosisConfig(enabled=True)).enabled is False


@pytest.mark.asyncio
async def test_rate_limit_fails_fast_without_calling_provider(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(_reply())
    clock = _FakeClock()
    client = DiagnosisClient(
        DiagnosisConfig(enabled=True, api_key="sk-test", rate_limit_calls=2),
        provider=provider,
        clock=clock,
    )

    await client.enrich(_context())
    await client.enrich(_context())
    with pytest.raises(RateLimitExceeded):
        await client.enrich(_context())

    assert provider.calls == 2
    assert client.usage_stats().rate_limited == 1

    clock.now += 60
    await client.enrich(_context())
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_retries_use_a_single_rate_limit_slot(sleeps: list[float]) -> None:
    provider = _ScriptedProvider(DiagnosisTransportError("HTTP 500", status_code=500), _reply())
    client = _client(provider)

    await client.enrich(_context())

    assert provider.calls == 2
    assert client.rate_limiter.in_window() == 1


@pytest.mark.asyncio
async def test_cache_reuses_diagnosis_for_similar_contexts() -> None:
    provider = _ScriptedProvider(_reply())
    clock = _FakeClock()
    client = DiagnosisClient(
        DiagnosisConfig(enabled=True, api_key="sk-test", cache_ttl=300),
        provider=provider,
        clock=clock,
    )

    first = await client.enrich(_context(engine_temp_c=106))
    second = await client.enrich(_context(engine_temp_c=107))

    assert provider.calls == 1
    assert first.cached is False
    assert second.cached is True
    assert second.cost_usd == 0.0
    assert client.rate_limiter.in_window() == 1
    assert client.usage_stats().cache_hits == 1

    clock.now += 301
    await client.enrich(_context(engine_temp_c=107))
    assert provider.calls == 2


def test_cache_evicts_least_recently_used() -> None:
    cache = DiagnosisCache(60, max_entries=2, clock=_FakeClock())
    result = DiagnosisResult(diagnosis="x", severity=DiagnosisSeverity.LOW)
    a, b, c = (_context(engine_temp_c=t) for t in (101, 111, 121))

    cache.put(a, result)
    cache.put(b, result)
    assert cache.get(a) is not None
    cache.put(c, result)

    assert len(cache) == 2
    assert cache.get(b) is None
    assert cache.get(a) is not None


def test_rate_lookup_handles_snapshots_and_unknown_models() -> None:
    assert rate_for("gpt-4o-mini-2024-07-18") == rate_for("gpt-4o-mini")
    assert rate_for("gpt-4o-2024-08-06") == rate_for("gpt-4o")
    assert rate_for("some-local-model") == rate_for("gpt-4o-mini")
    assert estimate_cost(0, 0) == 0.0


def _candidate() -> AlertCandidate:
    return AlertCandidate(
        severity=Severity.MEDIUM,
        alert_type=AlertType.ENGINE_OVERHEATING,
        description="Engine temperature elevated: 108°C",
        recommendation="Stop the vehicle safely and inspect the cooling system.",
    )


def _result(**overrides: Any) -> DiagnosisResult:
    fields: dict[str, Any] = {
        "diagnosis": "Thermostat stuck closed",
        "recommendations": ("Replace thermostat", "Flush coolant"),
        "severity": DiagnosisSeverity.CRITICAL,
        "tokens_used": 1500,
        "cost_usd": 0.00045,
    }
    fields.update(overrides)
    return DiagnosisResult(**fields)


def test_merge_overlays_diagnosis_and_maps_critical_to_high() -> None:
    merged = merge_diagnosis(_candidate(), _result())

    assert merged.severity is Severity.HIGH
    assert merged.description == "Thermostat stuck closed"
    assert merged.recommendation == "Replace thermostat; Flush coolant"
    assert merged.alert_type is AlertType.ENGINE_OVERHEATING


def test_merge_keeps_rule_recommendation_when_provider_gives_none() -> None:
    merged = merge_diagnosis(_candidate(), _result(recommendations=(), severity=DiagnosisSeverity.LOW))

    assert merged.recommendation == _candidate().recommendation
    assert merged.severity is Severity.LOW


def test_enriched_record_keeps_both_versions() -> None:
    candidate = _candidate()
    record = AlertRecord.from_candidate(candidate, tenant_id="tenant-a", vehicle_id="bus-7", timestamp=_TS)

    enriched = enriched_record(record, candidate, _result())

    assert enriched.enriched
    assert enriched.severity is Severity.HIGH
    assert enriched.rule_based == candidate
    assert enriched.enrichment is not None
    assert enriched.enrichment.llm_severity == "critical"
    assert enriched.enrichment.tokens == 1500
    wire = enriched.to_record()
    assert wire["enrichment"]["costUsd"] == pytest.approx(0.00045)
    assert wire["ruleBased"]["severity"] == "medium"


def test_build_context_omits_empty_history() -> None:
    context = build_context(_sample(), AlertType.ENGINE_OVERHEATING)
    assert context.alert_type == "engine_overheating"
    assert context.recent_history is None
    assert "recentHistory" not in context.to_record()
