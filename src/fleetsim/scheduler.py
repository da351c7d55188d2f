"""Multi-tenant simulation scheduler.

One asyncio task per active tenant drives the ticks; a second, optional
task performs the auto-stop when the session has a duration. Within a tick
vehicles are processed one after another (generate -> persist -> evaluate
-> enrich -> persist), so a tenant's records reach the sink in tick order.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from fleetsim.config import SimulationConfig
from fleetsim.diagnosis.client import DiagnosisClient, build_context, enriched_record
from fleetsim.exceptions import (
    EnrichmentError,
    EnrichmentFailed,
    GenerationError,
    RateLimitExceeded,
    SimulationConfigError,
)
from fleetsim.models.alert import AlertCandidate, AlertRecord
from fleetsim.models.session import SessionStats
from fleetsim.models.telemetry import TelemetrySample
from fleetsim.registry import SessionRegistry, SimulationSession
from fleetsim.simulator import VehicleSimulator
from fleetsim.sink import PersistenceSink

_logger = logging.getLogger(__name__)

SimulatorFactory = Callable[[SimulationConfig], VehicleSimulator]


def default_simulator_factory(config: SimulationConfig) -> VehicleSimulator:
    return VehicleSimulator(config.error_probability, rng=random.Random(config.seed))


@dataclass(frozen=True, slots=True)
class VehicleTickResult:
    """Outcome for one vehicle in one tick: a sample (and maybe an alert) or an error."""

    vehicle_id: str
    sample: TelemetrySample | None = None
    alert: AlertRecord | None = None
    error: GenerationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class TickReport:
    tenant_id: str
    tick: int
    results: tuple[VehicleTickResult, ...]

    @property
    def samples(self) -> list[TelemetrySample]:
        return [r.sample for r in self.results if r.sample is not None]

    @property
    def alerts(self) -> list[AlertRecord]:
        return [r.alert for r in self.results if r.alert is not None]

    @property
    def failures(self) -> list[VehicleTickResult]:
        return [r for r in self.results if not r.ok]


class SimulationScheduler:
    """Owns all tenant sessions and drives their ticks.

    Parameters
    ----------
    sink : PersistenceSink
        Receives every telemetry sample and alert record.
    diagnosis : DiagnosisClient or None
        Enriches alerts when present and enabled.
    registry : SessionRegistry or None
        Tenant -> session map; pass the process-wide instance.
    simulator_factory : callable or None
        Builds the simulator for a session from its config.
    clock : callable
        Monotonic clock used for uptime.
    """

    def __init__(
        self,
        sink: PersistenceSink,
        *,
        diagnosis: DiagnosisClient | None = None,
        registry: SessionRegistry | None = None,
        simulator_factory: SimulatorFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._diagnosis = diagnosis
        self._registry = registry if registry is not None else SessionRegistry()
        self._simulator_factory = simulator_factory or default_simulator_factory
        self._clock = clock

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start(
        self,
        tenant_id: str,
        config: SimulationConfig | Mapping[str, Any],
    ) -> SimulationSession:
        """Start (or replace) the simulation for *tenant_id*.

        Raises
        ------
        SimulationConfigError
            The config is invalid; no session is touched.
        """
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise SimulationConfigError("tenant_id must be a non-empty string")
        parsed = SimulationConfig.parse(config)

        async with self._registry.locked(tenant_id):
            if tenant_id in self._registry:
                _logger.info("Replacing running simulation for tenant %s", tenant_id)
                await self._stop_locked(tenant_id, reason="replaced")

            simulator = self._simulator_factory(parsed)
            for vehicle_id in parsed.vehicles:
                simulator.initialize(vehicle_id)

            session = SimulationSession(
                tenant_id=tenant_id,
                config=parsed,
                simulator=simulator,
                started_at=self._clock(),
            )
            self._registry.put(session)
            session.ticker = asyncio.create_task(
                self._run_ticker(session),
                name=f"fleetsim-ticker-{tenant_id}",
            )
            if parsed.duration_seconds > 0:
                session.auto_stop = asyncio.create_task(
                    self._auto_stop(session),
                    name=f"fleetsim-auto-stop-{tenant_id}",
                )

        _logger.info(
            "Started simulation for tenant %s with %d vehicles (interval=%gs, duration=%gs, p=%.2f)",
            tenant_id,
            session.vehicle_count,
            parsed.interval_seconds,
            parsed.duration_seconds,
            parsed.error_probability,
        )
        return session

    async def stop(self, tenant_id: str) -> bool:
        """Stop the tenant's session; ``False`` when there was none.

        When this returns, the session's tasks are finished and no further
        tick will run for the tenant.
        """
        async with self._registry.locked(tenant_id):
            return await self._stop_locked(tenant_id, reason="stopped")

    async def stop_all(self) -> None:
        for tenant_id in self._registry.tenant_ids():
            await self.stop(tenant_id)
        _logger.info("All simulations stopped")

    def is_active(self, tenant_id: str) -> bool:
        session = self._registry.get(tenant_id)
        return session is not None and session.active

    def get_stats(self, tenant_id: str) -> SessionStats | None:
        session = self._registry.get(tenant_id)
        if session is None:
            return None
        return SessionStats(
            active=session.active,
            samples_generated=session.samples_generated,
            alerts_generated=session.alerts_generated,
            alerts_enriched=session.alerts_enriched,
            generation_errors=session.generation_errors,
            ticks_completed=session.ticks_completed,
            vehicle_count=session.vehicle_count,
            uptime_seconds=max(0, round(self._clock() - session.started_at)),
        )

    def active_sessions(self) -> list[str]:
        return [
            tenant_id
            for tenant_id in self._registry.tenant_ids()
            if (session := self._registry.get(tenant_id)) is not None and session.active
        ]

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------

    async def _stop_locked(self, tenant_id: str, *, reason: str) -> bool:
        session = self._registry.pop(tenant_id)
        if session is None:
            _logger.info("No active simulation for tenant %s", tenant_id)
            return False

        session.active = False
        current = asyncio.current_task()
        tasks = [t for t in (session.ticker, session.auto_stop) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        # Cancellation must complete before returning.
        await asyncio.gather(*tasks, return_exceptions=True)
        session.ticker = None
        session.auto_stop = None
        session.history.clear()
        session.simulator.clear()

        _logger.info(
            "Simulation for tenant %s %s: %d samples, %d alerts (%d enriched), %d errors, %ds",
            tenant_id,
            reason,
            session.samples_generated,
            session.alerts_generated,
            session.alerts_enriched,
            session.generation_errors,
            round(self._clock() - session.started_at),
        )
        return True

    async def _auto_stop(self, session: SimulationSession) -> None:
        await asyncio.sleep(session.config.duration_seconds)
        async with self._registry.locked(session.tenant_id):
            if self._registry.get(session.tenant_id) is not session:
                return
            await self._stop_locked(session.tenant_id, reason="auto-stopped")

    async def _run_ticker(self, session: SimulationSession) -> None:
        loop = asyncio.get_running_loop()
        interval = session.config.interval_seconds
        deadline = loop.time() + interval
        while session.active:
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if not session.active:
                break
            try:
                await self.tick(session)
            except Exception:
                # A broken tick must not end the session's timer.
                _logger.exception("Tick failed for tenant %s", session.tenant_id)
            deadline += interval
            now = loop.time()
            if deadline < now:
                deadline = now

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, session: SimulationSession) -> TickReport:
        """Run one tick for every vehicle in *session*."""
        results: list[VehicleTickResult] = []
        for vehicle_id in session.config.vehicles:
            results.append(await self._process_vehicle(session, vehicle_id))

        session.ticks_completed += 1
        report = TickReport(
            tenant_id=session.tenant_id,
            tick=session.ticks_completed,
            results=tuple(results),
        )
        _logger.debug(
            "Tick %d for tenant %s: %d samples, %d alerts, %d failures",
            report.tick,
            session.tenant_id,
            len(report.samples),
            len(report.alerts),
            len(report.failures),
        )
        return report

    def _failure(self, session: SimulationSession, vehicle_id: str, exc: Exception) -> VehicleTickResult:
        error = GenerationError(
            f"Error generating data for vehicle {vehicle_id}: {exc}",
            vehicle_id=vehicle_id,
            tenant_id=session.tenant_id,
        )
        error.__cause__ = exc
        session.generation_errors += 1
        _logger.warning("%s (tenant %s)", error, session.tenant_id, exc_info=_logger.isEnabledFor(logging.DEBUG))
        return VehicleTickResult(vehicle_id=vehicle_id, error=error)

    async def _process_vehicle(self, session: SimulationSession, vehicle_id: str) -> VehicleTickResult:
        tenant_id = session.tenant_id
        try:
            sample = session.simulator.generate(vehicle_id, tenant_id)
            await self._sink.write_telemetry(sample)
        except Exception as exc:
            return self._failure(session, vehicle_id, exc)
        session.samples_generated += 1

        history = session.history_for(vehicle_id)
        candidate = session.simulator.evaluate_alert(sample)
        record: AlertRecord | None = None
        if candidate is not None:
            record = AlertRecord.from_candidate(
                candidate,
                tenant_id=tenant_id,
                vehicle_id=vehicle_id,
                timestamp=sample.timestamp,
            )
            record = await self._enrich(session, sample, candidate, record, tuple(history))
            try:
                await self._sink.write_alert(record)
            except Exception as exc:
                history.append(sample)
                failed = self._failure(session, vehicle_id, exc)
                return VehicleTickResult(vehicle_id=vehicle_id, sample=sample, error=failed.error)
            session.alerts_generated += 1

        history.append(sample)
        return VehicleTickResult(vehicle_id=vehicle_id, sample=sample, alert=record)

    async def _enrich(
        self,
        session: SimulationSession,
        sample: TelemetrySample,
        candidate: AlertCandidate,
        record: AlertRecord,
        history: tuple[TelemetrySample, ...],
    ) -> AlertRecord:
        """Return the enriched record, or *record* unchanged on any failure."""
        client = self._diagnosis
        if client is None or not client.enabled:
            return record

        context = build_context(sample, candidate.alert_type, history)
        try:
            result = await client.enrich(context)
        except RateLimitExceeded as exc:
            _logger.warning(
                "Diagnosis rate-limited for %s/%s (retry in %.0fs); storing rule-based alert",
                session.tenant_id,
                sample.vehicle_id,
                exc.retry_after,
            )
            return record
        except EnrichmentFailed as exc:
            _logger.warning(
                "Diagnosis failed for %s/%s after %d attempts; storing rule-based alert: %s",
                session.tenant_id,
                sample.vehicle_id,
                exc.attempts,
                exc,
            )
            return record
        except EnrichmentError as exc:
            _logger.warning("Diagnosis unavailable for %s/%s: %s", session.tenant_id, sample.vehicle_id, exc)
            return record
        except Exception:
            _logger.exception("Unexpected diagnosis error for %s/%s", session.tenant_id, sample.vehicle_id)
            return record

        session.alerts_enriched += 1
        return enriched_record(record, candidate, result)
