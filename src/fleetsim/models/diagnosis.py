"""Diagnosis request/response models for the enrichment provider boundary."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from fleetsim.models._base import FleetBaseModel, UtcDatetime, utcnow
from fleetsim.models.alert import Severity
from fleetsim.models.telemetry import TelemetrySample


class DiagnosisSeverity(StrEnum):
    """Severity scale used by the reasoning service.

    ``CRITICAL`` only exists on this side of the boundary; storage maps it
    to :attr:`Severity.HIGH` via :meth:`to_severity`.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def to_severity(self) -> Severity:
        if self is DiagnosisSeverity.CRITICAL:
            return Severity.HIGH
        return Severity(self.value)


class DiagnosisContext(FleetBaseModel):
    """Everything the reasoning service sees about an alert.

    ``recent_history`` holds earlier samples of the same vehicle, oldest
    first. It is omitted from the wire payload when empty.
    """

    vehicle_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    alert_type: str
    current_telemetry: TelemetrySample
    recent_history: tuple[TelemetrySample, ...] | None = None


class ProviderReply(FleetBaseModel):
    """Parsed provider answer before cost accounting.

    ``severity`` defaults to medium when the provider omits it.
    """

    diagnosis: str = Field(min_length=1)
    recommendations: tuple[str, ...] = ()
    severity: DiagnosisSeverity = DiagnosisSeverity.MEDIUM
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    tokens_used: int = Field(default=0, ge=0)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: object) -> object:
        if value is None or value == "":
            return DiagnosisSeverity.MEDIUM
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("recommendations", mode="before")
    @classmethod
    def _coerce_recommendations(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,) if value.strip() else ()
        return value


class DiagnosisResult(FleetBaseModel):
    """Enrichment outcome including token and cost accounting."""

    diagnosis: str
    recommendations: tuple[str, ...] = ()
    severity: DiagnosisSeverity
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    tokens_used: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0)
    model: str = ""
    cached: bool = False
