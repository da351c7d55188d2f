"""Failure-threshold rule chain.

Rules are evaluated in a fixed order and the first one that matches
decides the alert; a sample never produces more than one alert.
:func:`evaluate_alert` is pure: the same sample always yields the same
result.
"""

from __future__ import annotations

from collections.abc import Callable

from fleetsim.models.alert import AlertCandidate, AlertType, Severity
from fleetsim.models.telemetry import BrakeStatus, TelemetrySample

ENGINE_TEMP_ALERT_C = 100
ENGINE_TEMP_HIGH_C = 110
BATTERY_ALERT_V = 12.0
BATTERY_HIGH_V = 11.5
FUEL_ALERT_PERCENT = 15
FUEL_HIGH_PERCENT = 5
DTC_HIGH_COUNT = 2
RPM_ALERT = 4500
RPM_HIGH = 5500

Rule = Callable[[TelemetrySample], AlertCandidate | None]


def _engine_overheating(sample: TelemetrySample) -> AlertCandidate | None:
    temp = sample.engine_temp_c
    if temp <= ENGINE_TEMP_ALERT_C:
        return None
    return AlertCandidate(
        severity=Severity.HIGH if temp > ENGINE_TEMP_HIGH_C else Severity.MEDIUM,
        alert_type=AlertType.ENGINE_OVERHEATING,
        description=f"Engine temperature elevated: {temp}°C",
        recommendation="Stop the vehicle safely and inspect the cooling system. Check the coolant level.",
    )


def _low_battery(sample: TelemetrySample) -> AlertCandidate | None:
    voltage = sample.battery_voltage
    if voltage >= BATTERY_ALERT_V:
        return None
    return AlertCandidate(
        severity=Severity.HIGH if voltage < BATTERY_HIGH_V else Severity.MEDIUM,
        alert_type=AlertType.LOW_BATTERY,
        description=f"Battery voltage low: {voltage}V",
        recommendation="Inspect the charging system. Check the alternator and battery condition.",
    )


def _low_fuel(sample: TelemetrySample) -> AlertCandidate | None:
    fuel = sample.fuel_level_percent
    if fuel >= FUEL_ALERT_PERCENT:
        return None
    return AlertCandidate(
        severity=Severity.HIGH if fuel < FUEL_HIGH_PERCENT else Severity.LOW,
        alert_type=AlertType.LOW_FUEL,
        description=f"Fuel level low: {fuel}%",
        recommendation="Refuel at the next service station.",
    )


def _brakes(sample: TelemetrySample) -> AlertCandidate | None:
    if sample.brake_status is BrakeStatus.CRITICAL:
        return AlertCandidate(
            severity=Severity.HIGH,
            alert_type=AlertType.BRAKE_FAILURE,
            description="Brake system in critical condition",
            recommendation="URGENT: stop the vehicle and do not operate it until the brake system is inspected.",
        )
    if sample.brake_status is BrakeStatus.WARNING:
        return AlertCandidate(
            severity=Severity.MEDIUM,
            alert_type=AlertType.BRAKE_WEAR,
            description="High wear on the brake system",
            recommendation="Schedule an inspection and replacement of brake pads/discs.",
        )
    return None


def _trouble_codes(sample: TelemetrySample) -> AlertCandidate | None:
    codes = sample.dtc_codes
    if not codes:
        return None
    return AlertCandidate(
        severity=Severity.HIGH if len(codes) > DTC_HIGH_COUNT else Severity.MEDIUM,
        alert_type=AlertType.DIAGNOSTIC_TROUBLE_CODES,
        description=f"Diagnostic trouble codes detected: {', '.join(codes)}",
        recommendation="Run a full scan with a diagnostic tool. Inspect the engine control system.",
    )


def _high_rpm(sample: TelemetrySample) -> AlertCandidate | None:
    rpm = sample.rpm
    if rpm <= RPM_ALERT:
        return None
    return AlertCandidate(
        severity=Severity.HIGH if rpm > RPM_HIGH else Severity.MEDIUM,
        alert_type=AlertType.HIGH_RPM,
        description=f"Engine RPM elevated: {rpm}",
        recommendation="Reduce engine speed. Check that the vehicle is not overloaded.",
    )


# Priority order: first match wins.
RULE_CHAIN: tuple[Rule, ...] = (
    _engine_overheating,
    _low_battery,
    _low_fuel,
    _brakes,
    _trouble_codes,
    _high_rpm,
)


def evaluate_alert(sample: TelemetrySample) -> AlertCandidate | None:
    """Return the first matching alert for *sample*, or ``None``."""
    for rule in RULE_CHAIN:
        candidate = rule(sample)
        if candidate is not None:
            return candidate
    return None
