"""fleetsim - Multi-tenant vehicle fleet telemetry simulator with alert enrichment."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetsim")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetsim.config import DiagnosisConfig, SimulationConfig
from fleetsim.diagnosis import DiagnosisClient, OpenAIChatProvider, SlidingWindowRateLimiter
from fleetsim.exceptions import (
    DiagnosisResponseError,
    DiagnosisTransportError,
    EnrichmentDisabledError,
    EnrichmentError,
    EnrichmentFailed,
    FleetSimError,
    GenerationError,
    RateLimitExceeded,
    SimulationConfigError,
    SinkError,
)
from fleetsim.models import (
    AlertCandidate,
    AlertRecord,
    AlertType,
    BrakeStatus,
    DiagnosisContext,
    DiagnosisResult,
    DrivingPattern,
    EnrichmentInfo,
    GpsFix,
    SessionStats,
    Severity,
    TelemetrySample,
)
from fleetsim.registry import SessionRegistry, SimulationSession
from fleetsim.rules import evaluate_alert
from fleetsim.scheduler import SimulationScheduler, TickReport, VehicleTickResult
from fleetsim.simulator import VehicleSimulator, VehicleState
from fleetsim.sink import HttpIngestSink, JsonLinesSink, MemorySink, PersistenceSink

__all__ = [
    "__version__",
    "AlertCandidate",
    "AlertRecord",
    "AlertType",
    "BrakeStatus",
    "DiagnosisClient",
    "DiagnosisConfig",
    "DiagnosisContext",
    "DiagnosisResponseError",
    "DiagnosisResult",
    "DiagnosisTransportError",
    "DrivingPattern",
    "EnrichmentDisabledError",
    "EnrichmentError",
    "EnrichmentFailed",
    "EnrichmentInfo",
    "FleetSimError",
    "GenerationError",
    "GpsFix",
    "HttpIngestSink",
    "JsonLinesSink",
    "MemorySink",
    "OpenAIChatProvider",
    "PersistenceSink",
    "RateLimitExceeded",
    "SessionRegistry",
    "SessionStats",
    "Severity",
    "SimulationConfig",
    "SimulationConfigError",
    "SimulationScheduler",
    "SimulationSession",
    "SinkError",
    "SlidingWindowRateLimiter",
    "TelemetrySample",
    "TickReport",
    "VehicleSimulator",
    "VehicleState",
    "VehicleTickResult",
    "evaluate_alert",
]
