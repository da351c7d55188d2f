"""Alert models: rule-based candidates and persisted alert records."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from fleetsim.models._base import FleetBaseModel, UtcDatetime, utcnow


class Severity(StrEnum):
    """Severity levels accepted by storage."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(StrEnum):
    ENGINE_OVERHEATING = "engine_overheating"
    LOW_BATTERY = "low_battery"
    LOW_FUEL = "low_fuel"
    BRAKE_FAILURE = "brake_failure"
    BRAKE_WEAR = "brake_wear"
    DIAGNOSTIC_TROUBLE_CODES = "diagnostic_trouble_codes"
    HIGH_RPM = "high_rpm"


class AlertCandidate(FleetBaseModel):
    """Outcome of the rule chain for one sample (at most one per tick)."""

    severity: Severity
    alert_type: AlertType
    description: str
    recommendation: str


class EnrichmentInfo(FleetBaseModel):
    """Diagnosis details stored alongside an enriched alert."""

    diagnosis: str
    recommendations: tuple[str, ...] = ()
    llm_severity: str
    cost_usd: float = Field(ge=0)
    tokens: int = Field(ge=0)
    cached: bool = False


class AlertRecord(FleetBaseModel):
    """Alert as handed to the persistence sink.

    ``severity``/``description``/``recommendation`` carry the merged values.
    When the alert was enriched, ``enrichment`` holds the diagnosis and
    ``rule_based`` keeps the untouched rule-chain candidate so consumers can
    see both versions.
    """

    tenant_id: str
    vehicle_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    severity: Severity
    alert_type: AlertType
    description: str
    recommendation: str
    enrichment: EnrichmentInfo | None = None
    rule_based: AlertCandidate | None = None

    @classmethod
    def from_candidate(
        cls,
        candidate: AlertCandidate,
        *,
        tenant_id: str,
        vehicle_id: str,
        timestamp: datetime | None = None,
    ) -> AlertRecord:
        """Build an unenriched record straight from the rule-chain output."""
        return cls(
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            timestamp=timestamp or utcnow(),
            severity=candidate.severity,
            alert_type=candidate.alert_type,
            description=candidate.description,
            recommendation=candidate.recommendation,
        )

    @property
    def enriched(self) -> bool:
        return self.enrichment is not None
