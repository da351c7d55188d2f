"""Read-only session statistics exposed to the control surface."""

from __future__ import annotations

from pydantic import Field

from fleetsim.models._base import FleetBaseModel


class SessionStats(FleetBaseModel):
    active: bool
    samples_generated: int = Field(default=0, ge=0)
    alerts_generated: int = Field(default=0, ge=0)
    alerts_enriched: int = Field(default=0, ge=0)
    generation_errors: int = Field(default=0, ge=0)
    ticks_completed: int = Field(default=0, ge=0)
    vehicle_count: int = Field(default=0, ge=0)
    uptime_seconds: int = Field(default=0, ge=0)
