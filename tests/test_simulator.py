from __future__ import annotations

import random
import statistics
from datetime import UTC, datetime

import pytest

from fleetsim.exceptions import SimulationConfigError
from fleetsim.models.telemetry import BrakeStatus, DrivingPattern
from fleetsim.simulator import DTC_CODES, VehicleSimulator

_FIXED_TS = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _simulator(p: float = 0.3, seed: int = 42) -> VehicleSimulator:
    return VehicleSimulator(p, rng=random.Random(seed), clock=lambda: _FIXED_TS)


def test_seeded_runs_are_reproducible() -> None:
    first = _simulator(seed=7)
    second = _simulator(seed=7)

    run_a = [first.generate("truck-1", "tenant-a") for _ in range(50)]
    run_b = [second.generate("truck-1", "tenant-a") for _ in range(50)]

    assert run_a == run_b


def test_different_seeds_diverge() -> None:
    a = [_simulator(seed=1).generate("truck-1", "t") for _ in range(3)]
    b = [_simulator(seed=2).generate("truck-1", "t") for _ in range(3)]
    assert a != b


def test_generate_initializes_unknown_vehicles() -> None:
    sim = _simulator()
    sample = sim.generate("new-vehicle", "tenant-a")

    assert sample.vehicle_id == "new-vehicle"
    assert sample.tenant_id == "tenant-a"
    assert sample.timestamp == _FIXED_TS
    assert sim.vehicle_ids == ["new-vehicle"]


def test_sample_fields_are_rounded_and_in_range() -> None:
    sim = _simulator(p=1.0)
    for _ in range(200):
        sample = sim.generate("truck-1", "tenant-a")
        assert isinstance(sample.rpm, int)
        assert isinstance(sample.speed, int)
        assert 0 <= sample.fuel_level_percent <= 100
        assert sample.battery_voltage == round(sample.battery_voltage, 1)
        assert -90 <= sample.gps.lat <= 90
        assert 5 <= sample.gps.accuracy_m <= 15


def test_initial_battery_and_fuel_decrease_with_error_probability() -> None:
    def means(p: float) -> tuple[float, float]:
        sim = VehicleSimulator(p, rng=random.Random(123))
        states = [sim.initialize(f"v{i}") for i in range(400)]
        return (
            statistics.fmean(s.battery_voltage for s in states),
            statistics.fmean(s.fuel_level_percent for s in states),
        )

    low_battery, low_fuel = means(0.0)
    high_battery, high_fuel = means(1.0)

    assert high_battery < low_battery
    assert high_fuel < low_fuel


def test_initial_state_bounds() -> None:
    sim = VehicleSimulator(0.0, rng=random.Random(5))
    for i in range(100):
        state = sim.initialize(f"v{i}")
        assert 12.6 <= state.battery_voltage <= 13.0
        assert 65 <= state.fuel_level_percent <= 100
        assert 0 <= state.brake_wear_percent <= 15
        assert state.speed_kmh == 0
        assert 50_000 <= state.odometer_km < 200_000


def test_highway_speed_is_smoothed_not_jumped() -> None:
    sim = _simulator(p=0.0)
    state = sim.initialize("truck-1")
    state.pattern = DrivingPattern.HIGHWAY
    state.speed_kmh = 0.0

    sim._highway(state)

    # k = 0.05 toward a target of at most 120 km/h
    assert 0 < state.speed_kmh <= 6.0


def test_idle_pattern_decays_speed() -> None:
    sim = _simulator()
    state = sim.initialize("truck-1")
    state.speed_kmh = 50.0

    sim._idle(state)

    assert state.speed_kmh == pytest.approx(40.0)
    assert 800 <= state.rpm <= 1000


def test_odometer_never_decreases() -> None:
    sim = _simulator()
    readings = [sim.generate("truck-1", "t").odometer_km for _ in range(100)]
    assert readings == sorted(readings)


def test_brake_status_tracks_wear() -> None:
    sim = _simulator()
    state = sim.initialize("truck-1")
    state.brake_wear_percent = 50.0
    assert state.brake_status is BrakeStatus.WARNING
    state.brake_wear_percent = 71.0
    assert sim.generate("truck-1", "t").brake_status is BrakeStatus.CRITICAL


def test_trouble_codes_come_from_known_set() -> None:
    sim = _simulator(p=1.0, seed=3)
    drawn = [code for _ in range(2000) for code in sim.generate("truck-1", "t").dtc_codes]

    assert drawn
    assert set(drawn) <= set(DTC_CODES)


def test_trouble_codes_are_rarer_without_errors() -> None:
    def count(p: float) -> int:
        sim = _simulator(p=p, seed=11)
        return sum(1 for _ in range(3000) if sim.generate("truck-1", "t").dtc_codes)

    assert count(0.0) < count(1.0)


@pytest.mark.parametrize("bad", [-0.1, 1.5, float("nan")])
def test_error_probability_is_validated(bad: float) -> None:
    with pytest.raises(SimulationConfigError):
        VehicleSimulator(bad)

    sim = VehicleSimulator(0.5)
    with pytest.raises(SimulationConfigError):
        sim.error_probability = bad
    assert sim.error_probability == 0.5


def test_reset_vehicle_forgets_state() -> None:
    sim = _simulator()
    sim.initialize("truck-1")
    sim.reset_vehicle("truck-1")
    assert sim.get_vehicle_state("truck-1") is None


def test_city_pattern_stops_about_thirty_percent_of_ticks() -> None:
    sim = _simulator(p=0.0, seed=21)
    state = sim.initialize("truck-1")

    stops = 0
    for _ in range(4000):
        sim._city(state)
        stops += state.momentum_kmh == 0.0
        assert state.momentum_kmh == 0.0 or 20 <= state.momentum_kmh <= 60

    assert 0.27 <= stops / 4000 <= 0.33


def test_city_pattern_idles_engine_below_five_kmh() -> None:
    sim = _simulator(p=0.0, seed=22)
    state = sim.initialize("truck-1")
    seen_idle = seen_moving = False

    for _ in range(500):
        state.speed_kmh = 0.0
        sim._city(state)
        if state.speed_kmh < 5:
            seen_idle = True
            assert 800 <= state.rpm <= 1000
        else:
            seen_moving = True
            assert state.rpm >= 1500 + state.speed_kmh * 30

    assert seen_idle and seen_moving


def test_city_temperature_rises_with_error_probability() -> None:
    def settled_temperature(p: float) -> float:
        sim = _simulator(p=p, seed=23)
        state = sim.initialize("truck-1")
        temps = []
        for tick in range(400):
            sim._city(state)
            if tick >= 200:
                temps.append(state.engine_temp_c)
        return statistics.fmean(temps)

    calm = settled_temperature(0.0)
    stressed = settled_temperature(1.0)

    # targets average 85 °C at p=0 and 100 °C at p=1
    assert 83 <= calm <= 87
    assert 97 <= stressed <= 103


def test_highway_temperature_settles_between_90_and_97() -> None:
    sim = _simulator(p=0.3, seed=24)
    sim.initialize("BUS-001")
    temps = []

    for tick in range(300):
        state = sim.get_vehicle_state("BUS-001")
        assert state is not None
        state.pattern = DrivingPattern.HIGHWAY
        sample = sim.generate("BUS-001", "tenant-a")
        if tick >= 200:
            temps.append(sample.engine_temp_c)

    assert 90 <= statistics.fmean(temps) <= 97


def test_mixed_pattern_delegates_forty_thirty_thirty(monkeypatch: pytest.MonkeyPatch) -> None:
    sim = _simulator(seed=25)
    state = sim.initialize("truck-1")
    counts = {"city": 0, "highway": 0, "idle": 0}

    for name in counts:
        monkeypatch.setattr(sim, f"_{name}", lambda _state, name=name: counts.__setitem__(name, counts[name] + 1))

    for _ in range(5000):
        sim._mixed(state)

    assert counts["city"] / 5000 == pytest.approx(0.4, abs=0.03)
    assert counts["highway"] / 5000 == pytest.approx(0.3, abs=0.03)
    assert counts["idle"] / 5000 == pytest.approx(0.3, abs=0.03)


def test_low_fuel_refuels_about_thirty_percent_of_the_time() -> None:
    sim = _simulator(seed=26)
    state = sim.initialize("truck-1")
    refuels = 0

    for _ in range(3000):
        state.pattern = DrivingPattern.IDLE
        state.speed_kmh = 0.0
        state.fuel_level_percent = 5.0
        sim._advance(state)
        if state.fuel_level_percent > 10:
            refuels += 1
            assert 90 <= state.fuel_level_percent <= 100
        else:
            assert state.fuel_level_percent < 5.0

    assert 0.26 <= refuels / 3000 <= 0.34


def test_fuel_above_threshold_only_decreases() -> None:
    sim = _simulator(seed=27)
    state = sim.initialize("truck-1")
    state.fuel_level_percent = 11.0

    for _ in range(200):
        before = state.fuel_level_percent
        sim._advance(state)
        assert state.fuel_level_percent <= before


def test_pattern_switches_on_about_ten_percent_of_ticks() -> None:
    sim = _simulator(seed=28)
    state = sim.initialize("truck-1")
    changed = 0

    for _ in range(8000):
        state.pattern = DrivingPattern.IDLE
        sim._advance(state)
        changed += state.pattern is not DrivingPattern.IDLE

    # a switch draws uniformly over four patterns, so 3/4 of switches change it
    assert 0.06 <= changed / 8000 <= 0.09
