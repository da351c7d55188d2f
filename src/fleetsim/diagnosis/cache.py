"""In-memory cache of recent diagnoses.

A vehicle stuck at 104 °C raises the same overheating alert tick after
tick; equivalent contexts reuse the last diagnosis.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from fleetsim.models.diagnosis import DiagnosisContext, DiagnosisResult

CacheKey = tuple[object, ...]


def context_key(context: DiagnosisContext) -> CacheKey:
    """Fingerprint of the parts of a context that drive the diagnosis.

    Readings are bucketed so small sensor noise still hits the cache;
    timestamps and GPS are ignored.
    """
    sample = context.current_telemetry
    return (
        context.vehicle_id,
        str(context.alert_type),
        sample.engine_temp_c // 5,
        round(sample.battery_voltage * 2) / 2,
        sample.fuel_level_percent // 5,
        str(sample.brake_status),
        tuple(sorted(sample.dtc_codes)),
        sample.rpm // 500,
    )


@dataclass
class _CacheEntry:
    result: DiagnosisResult
    stored_at: float


class DiagnosisCache:
    """TTL + size bounded LRU keyed by :func:`context_key`."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 256,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, context: DiagnosisContext) -> DiagnosisResult | None:
        key = context_key(context)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.result

    def put(self, context: DiagnosisContext, result: DiagnosisResult) -> None:
        key = context_key(context)
        self._entries[key] = _CacheEntry(result=result, stored_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
