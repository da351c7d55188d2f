"""Telemetry sample model.

One :class:`TelemetrySample` is produced per vehicle per tick. Numeric
fields are rounded the way a telematics unit would report them: integer
rpm/speed/temperature/fuel, one decimal for battery voltage and six
decimals for coordinates.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from fleetsim.models._base import FleetBaseModel, UtcDatetime, utcnow


class DrivingPattern(StrEnum):
    """Behaviour profile a simulated vehicle's state is smoothed toward."""

    CITY = "city"
    HIGHWAY = "highway"
    IDLE = "idle"
    MIXED = "mixed"


class BrakeStatus(StrEnum):
    """Brake condition derived from cumulative pad wear."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"

    @classmethod
    def from_wear(cls, wear_percent: float) -> BrakeStatus:
        """ok below 50 %, warning from 50 % to 70 %, critical above 70 %."""
        if wear_percent > 70:
            return cls.CRITICAL
        if wear_percent >= 50:
            return cls.WARNING
        return cls.OK


class GpsFix(FleetBaseModel):
    """GPS position with horizontal accuracy in metres."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_m: float = Field(ge=0)


class TelemetrySample(FleetBaseModel):
    """A single simulated sensor reading for one vehicle.

    Parameters
    ----------
    tenant_id : str
        Owning tenant.
    vehicle_id : str
        Vehicle identifier within the tenant's fleet.
    timestamp : datetime
        Sample time (UTC).
    rpm : int
        Engine speed.
    speed : int
        Road speed in km/h.
    engine_temp_c : int
        Coolant temperature in degrees Celsius.
    battery_voltage : float
        12 V system voltage.
    fuel_level_percent : int
        Tank level, 0-100.
    brake_status : BrakeStatus
        Derived from brake wear.
    odometer_km : float
        Cumulative distance.
    dtc_codes : list[str]
        Diagnostic trouble codes raised this tick (usually empty).
    gps : GpsFix
        Position fix.
    """

    tenant_id: str
    vehicle_id: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    rpm: int = Field(ge=0)
    speed: int = Field(ge=0)
    engine_temp_c: int
    battery_voltage: float = Field(ge=0)
    fuel_level_percent: int = Field(ge=0, le=100)
    brake_status: BrakeStatus = BrakeStatus.OK
    odometer_km: float = Field(default=0.0, ge=0)
    dtc_codes: tuple[str, ...] = ()
    gps: GpsFix
