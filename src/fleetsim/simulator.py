"""Synthetic vehicle telemetry simulator.

Each vehicle carries a continuous physical state that is advanced once per
tick according to its driving pattern. Targets are approached by
exponential smoothing (``new = old + (target - old) * k``) rather than
jumps, so consecutive samples look like a real sensor stream.

The error-injection probability ``p`` biases the fleet toward the alert
thresholds in :mod:`fleetsim.rules`: lower starting battery and fuel, more
initial brake wear, hotter engine targets and more trouble codes.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from fleetsim.exceptions import SimulationConfigError
from fleetsim.models._base import utcnow
from fleetsim.models.alert import AlertCandidate
from fleetsim.models.telemetry import BrakeStatus, DrivingPattern, GpsFix, TelemetrySample
from fleetsim.rules import evaluate_alert

_logger = logging.getLogger(__name__)

DTC_CODES: tuple[str, ...] = (
    "P0300",
    "P0420",
    "P0171",
    "P0455",
    "P0128",
    "P0101",
    "P0134",
    "P0174",
    "P0401",
    "P0442",
)

# (lat, lng, city)
STARTING_LOCATIONS: tuple[tuple[float, float, str], ...] = (
    (-12.0464, -77.0428, "Lima"),
    (-16.4090, -71.5375, "Arequipa"),
    (-13.5319, -71.9675, "Cusco"),
    (-8.1116, -79.0288, "Trujillo"),
    (-6.7714, -79.8411, "Chiclayo"),
)

_PATTERNS: tuple[DrivingPattern, ...] = tuple(DrivingPattern)

LOCATION_JITTER_DEG = 0.1
KM_PER_DEGREE = 111_000.0
BRAKE_WEAR_PER_TICK = 0.0001
PATTERN_SWITCH_PROBABILITY = 0.1
REFUEL_BELOW_PERCENT = 10.0
REFUEL_PROBABILITY = 0.3
DTC_BASE_PROBABILITY = 0.005
DTC_PROBABILITY_SPAN = 0.045


def _approach(current: float, target: float, k: float) -> float:
    return current + (target - current) * k


@dataclass(slots=True)
class VehicleState:
    """Mutable physical state of one simulated vehicle.

    ``momentum_kmh`` is the speed target the current pattern is smoothing
    toward; it persists between ticks so the idle pattern can coast down
    from whatever the previous pattern was aiming for.
    """

    vehicle_id: str
    lat: float
    lng: float
    speed_kmh: float
    rpm: float
    engine_temp_c: float
    battery_voltage: float
    fuel_level_percent: float
    brake_wear_percent: float
    odometer_km: float
    last_maintenance_km: float
    pattern: DrivingPattern
    momentum_kmh: float = 0.0

    @property
    def brake_status(self) -> BrakeStatus:
        return BrakeStatus.from_wear(self.brake_wear_percent)


class VehicleSimulator:
    """Owns and advances the physical state of a set of vehicles.

    Parameters
    ----------
    error_probability : float
        Bias toward alert-triggering states, in ``[0, 1]``.
    rng : random.Random or None
        Random source; pass a seeded instance for reproducible runs.
    clock : callable or None
        Returns the timestamp stamped on generated samples.
    """

    def __init__(
        self,
        error_probability: float = 0.3,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock or utcnow
        self._states: dict[str, VehicleState] = {}
        self._error_probability = 0.0
        self.error_probability = error_probability

    @property
    def error_probability(self) -> float:
        return self._error_probability

    @error_probability.setter
    def error_probability(self, value: float) -> None:
        probability = float(value)
        if math.isnan(probability) or not 0.0 <= probability <= 1.0:
            raise SimulationConfigError(f"error_probability must be within [0, 1], got {value}")
        self._error_probability = probability

    @property
    def vehicle_ids(self) -> list[str]:
        return list(self._states)

    def get_vehicle_state(self, vehicle_id: str) -> VehicleState | None:
        return self._states.get(vehicle_id)

    def reset_vehicle(self, vehicle_id: str) -> None:
        self._states.pop(vehicle_id, None)

    def clear(self) -> None:
        """Forget every vehicle state."""
        self._states.clear()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, vehicle_id: str) -> VehicleState:
        """Seed a fresh state for *vehicle_id*, replacing any existing one."""
        rng = self._rng
        p = self._error_probability
        lat, lng, city = rng.choice(STARTING_LOCATIONS)

        battery_base = 12.6 - p * 0.4
        fuel_base = 65.0 - p * 30.0
        brake_wear_max = 15.0 + p * 35.0
        odometer = float(math.floor(50_000 + rng.random() * 150_000))

        state = VehicleState(
            vehicle_id=vehicle_id,
            lat=lat + (rng.random() - 0.5) * LOCATION_JITTER_DEG,
            lng=lng + (rng.random() - 0.5) * LOCATION_JITTER_DEG,
            speed_kmh=0.0,
            rpm=800 + rng.random() * 200,
            engine_temp_c=20 + rng.random() * 10,
            battery_voltage=battery_base + rng.random() * 0.4,
            fuel_level_percent=fuel_base + rng.random() * 35,
            brake_wear_percent=rng.random() * brake_wear_max,
            odometer_km=odometer,
            last_maintenance_km=max(0.0, odometer - math.floor(rng.random() * 5_000)),
            pattern=rng.choice(_PATTERNS),
        )
        self._states[vehicle_id] = state
        _logger.debug("Initialized vehicle %s near %s on %s pattern", vehicle_id, city, state.pattern)
        return state

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def generate(self, vehicle_id: str, tenant_id: str) -> TelemetrySample:
        """Advance *vehicle_id* by one tick and return its sample.

        Unknown vehicles are initialized on first use.
        """
        state = self._states.get(vehicle_id)
        if state is None:
            state = self.initialize(vehicle_id)

        self._advance(state)

        return TelemetrySample(
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            timestamp=self._clock(),
            rpm=round(state.rpm),
            speed=round(state.speed_kmh),
            engine_temp_c=round(state.engine_temp_c),
            battery_voltage=round(state.battery_voltage, 1),
            fuel_level_percent=round(state.fuel_level_percent),
            brake_status=state.brake_status,
            odometer_km=round(state.odometer_km, 3),
            dtc_codes=self._draw_trouble_codes(),
            gps=GpsFix(
                lat=round(state.lat, 6),
                lng=round(state.lng, 6),
                accuracy_m=round(5 + self._rng.random() * 10, 1),
            ),
        )

    def evaluate_alert(self, sample: TelemetrySample) -> AlertCandidate | None:
        return evaluate_alert(sample)

    def _draw_trouble_codes(self) -> tuple[str, ...]:
        probability = DTC_BASE_PROBABILITY + self._error_probability * DTC_PROBABILITY_SPAN
        if self._rng.random() >= probability:
            return ()
        count = self._rng.randint(1, 2)
        return tuple(self._rng.choice(DTC_CODES) for _ in range(count))

    def _advance(self, state: VehicleState) -> None:
        rng = self._rng

        if state.pattern is DrivingPattern.CITY:
            self._city(state)
        elif state.pattern is DrivingPattern.HIGHWAY:
            self._highway(state)
        elif state.pattern is DrivingPattern.IDLE:
            self._idle(state)
        else:
            self._mixed(state)

        state.speed_kmh = max(0.0, state.speed_kmh)

        if state.speed_kmh > 0:
            bearing = rng.random() * math.pi * 2
            step = state.speed_kmh / KM_PER_DEGREE
            state.lat = max(-90.0, min(90.0, state.lat + math.cos(bearing) * step))
            state.lng = max(-180.0, min(180.0, state.lng + math.sin(bearing) * step))

        consumption = (state.rpm / 1000 + state.speed_kmh / 100) * 0.001
        state.fuel_level_percent = max(0.0, state.fuel_level_percent - consumption)
        if state.fuel_level_percent < REFUEL_BELOW_PERCENT and rng.random() < REFUEL_PROBABILITY:
            state.fuel_level_percent = 90 + rng.random() * 10
            _logger.debug("Vehicle %s refueled to %.1f%%", state.vehicle_id, state.fuel_level_percent)

        # speed is km/h and a reading covers roughly one second of driving
        state.odometer_km += state.speed_kmh / 3600

        if state.speed_kmh > 20:
            state.brake_wear_percent = min(100.0, state.brake_wear_percent + BRAKE_WEAR_PER_TICK)

        if rng.random() < PATTERN_SWITCH_PROBABILITY:
            state.pattern = rng.choice(_PATTERNS)

    # ------------------------------------------------------------------
    # Driving patterns
    # ------------------------------------------------------------------

    def _city(self, state: VehicleState) -> None:
        rng = self._rng
        p = self._error_probability

        state.momentum_kmh = 0.0 if rng.random() < 0.3 else 20 + rng.random() * 40
        state.speed_kmh = _approach(state.speed_kmh, state.momentum_kmh, 0.1)

        if state.speed_kmh < 5:
            state.rpm = 800 + rng.random() * 200
        else:
            state.rpm = 1500 + state.speed_kmh * 30 + rng.random() * 500

        temp_target = 80 + p * 10 + rng.random() * (10 + p * 10)
        state.engine_temp_c = _approach(state.engine_temp_c, temp_target, 0.05)

        state.battery_voltage = 12.6 + rng.random() * 0.3

    def _highway(self, state: VehicleState) -> None:
        rng = self._rng
        p = self._error_probability

        state.momentum_kmh = 80 + rng.random() * 40
        state.speed_kmh = _approach(state.speed_kmh, state.momentum_kmh, 0.05)

        state.rpm = 2000 + state.speed_kmh * 20 + rng.random() * 300

        # Can exceed 100°C as p rises.
        temp_target = 85 + p * 12 + rng.random() * (7 + p * 8)
        state.engine_temp_c = _approach(state.engine_temp_c, temp_target, 0.05)

        state.battery_voltage = 13.5 + rng.random() * 0.5

    def _idle(self, state: VehicleState) -> None:
        rng = self._rng

        state.momentum_kmh = 0.0
        state.speed_kmh *= 0.8
        state.rpm = 800 + rng.random() * 200

        temp_target = 60 + rng.random() * 10
        state.engine_temp_c = _approach(state.engine_temp_c, temp_target, 0.02)

        state.battery_voltage = 12.4 + rng.random() * 0.2

    def _mixed(self, state: VehicleState) -> None:
        roll = self._rng.random()
        if roll < 0.4:
            self._city(state)
        elif roll < 0.7:
            self._highway(state)
        else:
            self._idle(state)
