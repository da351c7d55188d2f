"""Tenant -> session registry.

The registry is constructed by the process entry point and injected into
the scheduler, so its lifetime is the service's lifetime. It also owns one
lock per tenant; every start/stop for a tenant runs under that lock.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fleetsim.config import SimulationConfig
from fleetsim.models.telemetry import TelemetrySample
from fleetsim.simulator import VehicleSimulator


@dataclass(eq=False)
class SimulationSession:
    """Everything the scheduler owns for one tenant.

    ``ticker`` and ``auto_stop`` are the session's cancellation handles;
    ``history`` keeps the last ``config.history_size`` samples per vehicle
    for diagnosis context.
    """

    tenant_id: str
    config: SimulationConfig
    simulator: VehicleSimulator
    started_at: float = field(default_factory=time.monotonic)
    history: dict[str, deque[TelemetrySample]] = field(default_factory=dict)
    ticker: asyncio.Task[None] | None = None
    auto_stop: asyncio.Task[None] | None = None
    samples_generated: int = 0
    alerts_generated: int = 0
    alerts_enriched: int = 0
    generation_errors: int = 0
    ticks_completed: int = 0
    active: bool = True

    def history_for(self, vehicle_id: str) -> deque[TelemetrySample]:
        buffer = self.history.get(vehicle_id)
        if buffer is None:
            buffer = deque(maxlen=self.config.history_size)
            self.history[vehicle_id] = buffer
        return buffer

    @property
    def vehicle_count(self) -> int:
        return len(self.config.vehicles)


class SessionRegistry:
    """Holds at most one session per tenant."""

    def __init__(self) -> None:
        self._sessions: dict[str, SimulationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    @asynccontextmanager
    async def locked(self, tenant_id: str) -> AsyncIterator[None]:
        """Hold the lock serialising lifecycle changes for *tenant_id*.

        Waiters are counted so the lock can be dropped once nobody holds or
        awaits it and the tenant has no session.
        """
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[tenant_id] - 1
            if remaining:
                self._lock_users[tenant_id] = remaining
            else:
                del self._lock_users[tenant_id]
                if tenant_id not in self._sessions:
                    del self._locks[tenant_id]

    @property
    def lock_count(self) -> int:
        """Number of tenant locks currently tracked."""
        return len(self._locks)

    def get(self, tenant_id: str) -> SimulationSession | None:
        return self._sessions.get(tenant_id)

    def put(self, session: SimulationSession) -> None:
        if session.tenant_id in self._sessions:
            raise RuntimeError(f"Session for tenant {session.tenant_id} already registered")
        self._sessions[session.tenant_id] = session

    def pop(self, tenant_id: str) -> SimulationSession | None:
        return self._sessions.pop(tenant_id, None)

    def tenant_ids(self) -> list[str]:
        return list(self._sessions)
