"""Persistence sinks for generated telemetry and alerts.

The scheduler only depends on the :class:`PersistenceSink` protocol; the
storage layer behind it is an external collaborator.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Protocol, TextIO

import aiohttp

from fleetsim.exceptions import SinkError
from fleetsim.models.alert import AlertRecord
from fleetsim.models.telemetry import TelemetrySample

_logger = logging.getLogger(__name__)

TELEMETRY_RECORD_TYPE = "vehicle_data"
ALERT_RECORD_TYPE = "alert"


class PersistenceSink(Protocol):
    """Structural interface of the durable store fed by the scheduler."""

    async def write_telemetry(self, sample: TelemetrySample) -> None:
        ...

    async def write_alert(self, record: AlertRecord) -> None:
        ...


def envelope(record_type: str, record: TelemetrySample | AlertRecord) -> dict[str, Any]:
    """Wrap a record as ``{"type": ..., **fields}``."""
    return {"type": record_type, **record.to_record()}


@dataclass
class MemorySink:
    """Keeps every record in memory, in write order."""

    telemetry: list[TelemetrySample] = field(default_factory=list)
    alerts: list[AlertRecord] = field(default_factory=list)

    async def write_telemetry(self, sample: TelemetrySample) -> None:
        self.telemetry.append(sample)

    async def write_alert(self, record: AlertRecord) -> None:
        self.alerts.append(record)

    def telemetry_for(self, tenant_id: str, vehicle_id: str | None = None) -> list[TelemetrySample]:
        return [
            s
            for s in self.telemetry
            if s.tenant_id == tenant_id and (vehicle_id is None or s.vehicle_id == vehicle_id)
        ]

    def alerts_for(self, tenant_id: str) -> list[AlertRecord]:
        return [a for a in self.alerts if a.tenant_id == tenant_id]

    def clear(self) -> None:
        self.telemetry.clear()
        self.alerts.clear()


class JsonLinesSink:
    """Writes one JSON object per record to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._lock = asyncio.Lock()

    async def _write(self, payload: dict[str, Any]) -> None:
        line = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        async with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()

    async def write_telemetry(self, sample: TelemetrySample) -> None:
        await self._write(envelope(TELEMETRY_RECORD_TYPE, sample))

    async def write_alert(self, record: AlertRecord) -> None:
        await self._write(envelope(ALERT_RECORD_TYPE, record))


class HttpIngestSink:
    """POSTs every record to an HTTP ingestion endpoint.

    Usage::

        async with HttpIngestSink("https://example.test/api/ingest-data") as sink:
            scheduler = SimulationScheduler(sink)
    """

    def __init__(
        self,
        url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers: dict[str, str] = {}
        if username and password:
            token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
            self._headers["Authorization"] = f"Basic {token}"
        self._external_session = session is not None
        self._http_session = session
        self._timeout = timeout

    async def __aenter__(self) -> HttpIngestSink:
        self._require_session()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
        return self._http_session

    async def _post(self, payload: dict[str, Any]) -> None:
        http = self._require_session()
        try:
            async with http.post(self._url, json=payload, headers=self._headers) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise SinkError(
                        f"HTTP {resp.status} from ingestion endpoint: {text[:200]}",
                        status_code=resp.status,
                    )
        except SinkError:
            raise
        except asyncio.TimeoutError as exc:
            raise SinkError("Ingestion request timed out") from exc
        except aiohttp.ClientError as exc:
            raise SinkError(f"Ingestion request failed: {exc}") from exc
        _logger.debug("Ingested %s record for %s", payload.get("type"), payload.get("vehicleId"))

    async def write_telemetry(self, sample: TelemetrySample) -> None:
        await self._post(envelope(TELEMETRY_RECORD_TYPE, sample))

    async def write_alert(self, record: AlertRecord) -> None:
        await self._post(envelope(ALERT_RECORD_TYPE, record))
