"""Data models for simulated telemetry, alerts and diagnoses."""

from fleetsim.models._base import FleetBaseModel, UtcDatetime, ensure_utc
from fleetsim.models.alert import AlertCandidate, AlertRecord, AlertType, EnrichmentInfo, Severity
from fleetsim.models.diagnosis import (
    DiagnosisContext,
    DiagnosisResult,
    DiagnosisSeverity,
    ProviderReply,
)
from fleetsim.models.session import SessionStats
from fleetsim.models.telemetry import BrakeStatus, DrivingPattern, GpsFix, TelemetrySample

__all__ = [
    "AlertCandidate",
    "AlertRecord",
    "AlertType",
    "BrakeStatus",
    "DiagnosisContext",
    "DiagnosisResult",
    "DiagnosisSeverity",
    "DrivingPattern",
    "EnrichmentInfo",
    "FleetBaseModel",
    "GpsFix",
    "ProviderReply",
    "SessionStats",
    "Severity",
    "TelemetrySample",
    "UtcDatetime",
    "ensure_utc",
]
