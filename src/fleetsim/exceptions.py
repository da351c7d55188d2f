"""Custom exception hierarchy for fleetsim."""

from __future__ import annotations


class FleetSimError(Exception):
    """Base exception for all fleetsim errors."""


class SimulationConfigError(FleetSimError, ValueError):
    """Invalid simulation configuration (rejected before a session starts)."""


class GenerationError(FleetSimError):
    """Producing or persisting telemetry for one vehicle failed during a tick."""

    def __init__(self, message: str, *, vehicle_id: str, tenant_id: str = "") -> None:
        self.vehicle_id = vehicle_id
        self.tenant_id = tenant_id
        super().__init__(message)


class SinkError(FleetSimError):
    """A persistence sink could not store a record."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class EnrichmentError(FleetSimError):
    """Base class for diagnosis enrichment failures.

    Enrichment failures are never fatal for a tick: the scheduler logs them
    and persists the rule-based alert unchanged.
    """


class EnrichmentDisabledError(EnrichmentError):
    """Enrichment was requested while the diagnosis client is disabled."""


class RateLimitExceeded(EnrichmentError):
    """The sliding-window call budget is exhausted.

    ``retry_after`` is the number of seconds until the oldest call in the
    window expires and a slot frees up.
    """

    def __init__(self, message: str, *, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class EnrichmentFailed(EnrichmentError):
    """Enrichment gave up; ``attempts`` is how many provider calls were made."""

    def __init__(self, message: str, *, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class DiagnosisResponseError(EnrichmentFailed):
    """The provider answered, but the payload was malformed or invalid.

    Never retried.
    """


class DiagnosisTransportError(FleetSimError):
    """Provider-level request failure (network, timeout, non-2xx).

    ``transient`` marks failures worth retrying (connection errors, timeouts,
    HTTP 408/429/5xx).
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = True,
        status_code: int | None = None,
    ) -> None:
        self.transient = transient
        self.status_code = status_code
        super().__init__(message)
