"""Shared test fixtures for the network analysis engine and API tests."""

from __future__ import annotations

from typing import Any

import pytest

from netengine.network.network_model import (
    AnalysisSettings,
    Branch,
    Bus,
    BusType,
    ElectricalNetwork,
    Generator,
    GeneratorReactances,
    Load,
    network_from_dict,
)


# ======================================================================
# Network data (JSON-shaped, as the API receives it)
# ======================================================================

def _two_bus_data(p_mw: float = 50.0, q_mvar: float = 20.0, rating_mva: float = 100.0) -> dict[str, Any]:
    """Slack at 11 kV feeding one load through a single line (100 MVA base)."""
    return {
        "name": "Two bus",
        "base_values": {"base_mva": 100.0, "base_kv": 11.0},
        "buses": [
            {"id": "grid", "bus_type": "slack", "nominal_voltage_kv": 11.0},
            {"id": "load", "bus_type": "pq", "nominal_voltage_kv": 11.0},
        ],
        "branches": [
            {
                "id": "L1", "from_bus": "grid", "to_bus": "load",
                "resistance": 0.02, "reactance": 0.08, "rating_mva": rating_mva,
                "r0": 0.06, "x0": 0.24,
            },
        ],
        "loads": [
            {"id": "LD1", "bus_id": "load", "active_power_mw": p_mw, "reactive_power_mvar": q_mvar},
        ],
    }


def _radial_data() -> dict[str, Any]:
    """grid - B2 - B3 chain with a relay on each line."""
    return {
        "name": "Radial feeder",
        "base_values": {"base_mva": 100.0, "base_kv": 11.0},
        "buses": [
            {"id": "grid", "bus_type": "slack", "nominal_voltage_kv": 11.0},
            {"id": "B2", "nominal_voltage_kv": 11.0},
            {"id": "B3", "nominal_voltage_kv": 11.0},
        ],
        "branches": [
            {"id": "L1", "from_bus": "grid", "to_bus": "B2", "resistance": 0.01,
             "reactance": 0.05, "rating_mva": 100.0, "r0": 0.03, "x0": 0.15},
            {"id": "L2", "from_bus": "B2", "to_bus": "B3", "resistance": 0.01,
             "reactance": 0.05, "rating_mva": 100.0, "r0": 0.03, "x0": 0.15},
        ],
        "loads": [
            {"id": "LD2", "bus_id": "B2", "active_power_mw": 10.0, "reactive_power_mvar": 3.0},
            {"id": "LD3", "bus_id": "B3", "active_power_mw": 10.0, "reactive_power_mvar": 3.0},
        ],
        "protective_devices": [
            {"id": "R1", "element_id": "L1", "pickup_current_a": 400.0, "time_multiplier": 0.1},
            {"id": "R2", "element_id": "L2", "pickup_current_a": 400.0, "time_multiplier": 0.1},
        ],
    }


def _ring_data(rating_mva: float = 100.0) -> dict[str, Any]:
    """Three buses in a triangle; every line outage leaves a path to the slack."""
    line = {"resistance": 0.01, "reactance": 0.05, "rating_mva": rating_mva, "r0": 0.03, "x0": 0.15}
    return {
        "name": "Ring",
        "base_values": {"base_mva": 100.0, "base_kv": 11.0},
        "buses": [
            {"id": "grid", "bus_type": "slack", "nominal_voltage_kv": 11.0},
            {"id": "B2", "nominal_voltage_kv": 11.0},
            {"id": "B3", "nominal_voltage_kv": 11.0},
        ],
        "branches": [
            {"id": "L12", "from_bus": "grid", "to_bus": "B2", **line},
            {"id": "L23", "from_bus": "B2", "to_bus": "B3", **line},
            {"id": "L13", "from_bus": "grid", "to_bus": "B3", **line},
        ],
        "loads": [
            {"id": "LD2", "bus_id": "B2", "active_power_mw": 30.0, "reactive_power_mvar": 10.0},
            {"id": "LD3", "bus_id": "B3", "active_power_mw": 30.0, "reactive_power_mvar": 10.0},
        ],
    }


def _harmonic_data(spectrum: dict[int, float] | None = None) -> dict[str, Any]:
    """LV plant bus with a six-pulse drive and a linear load, 1 MVA base."""
    return {
        "name": "LV plant",
        "base_values": {"base_mva": 1.0, "base_kv": 0.4},
        "buses": [
            {"id": "pcc", "bus_type": "slack", "nominal_voltage_kv": 0.4},
            {"id": "plant", "nominal_voltage_kv": 0.4},
        ],
        "branches": [
            {"id": "F1", "from_bus": "pcc", "to_bus": "plant", "branch_type": "cable",
             "resistance": 0.01, "reactance": 0.05, "rating_mva": 2.0},
        ],
        "loads": [
            {
                "id": "drive", "bus_id": "plant",
                "active_power_mw": 0.5, "reactive_power_mvar": 0.15,
                "harmonic_spectrum": spectrum if spectrum is not None else {5: 0.3, 7: 0.2},
            },
            {"id": "lighting", "bus_id": "plant", "active_power_mw": 0.2, "reactive_power_mvar": 0.0},
        ],
    }


# ======================================================================
# Engine networks
# ======================================================================

@pytest.fixture
def two_bus_network() -> ElectricalNetwork:
    return network_from_dict(_two_bus_data())


@pytest.fixture
def radial_network() -> ElectricalNetwork:
    return network_from_dict(_radial_data())


@pytest.fixture
def ring_network() -> ElectricalNetwork:
    return network_from_dict(_ring_data())


@pytest.fixture
def harmonic_network() -> ElectricalNetwork:
    return network_from_dict(_harmonic_data())


@pytest.fixture
def generator_network() -> ElectricalNetwork:
    """Synchronous machine (X"d = 0.05 pu on 100 MVA) feeding one line.

    Pre-fault voltages are flat 1.0 pu so a bolted fault at the machine
    terminals draws exactly 1 / 0.05 = 20 pu.
    """
    return ElectricalNetwork(
        name="Machine",
        buses=[
            Bus(id="G", bus_type=BusType.SLACK, nominal_voltage_kv=11.0),
            Bus(id="B", nominal_voltage_kv=11.0),
        ],
        branches=[
            Branch(id="L1", from_bus="G", to_bus="B", resistance=0.01, reactance=0.10,
                   rating_mva=100.0, r0=0.03, x0=0.30),
        ],
        generators=[
            Generator(
                id="G1", bus_id="G", rated_mva=100.0,
                reactances=GeneratorReactances(xdpp=0.05, xqpp=0.05, xl=0.04, ra=0.0),
            ),
        ],
        loads=[Load(id="LD1", bus_id="B", active_power_mw=10.0, reactive_power_mvar=2.0)],
        analysis_settings=AnalysisSettings(use_load_flow_prefault=False),
    )


# ======================================================================
# Plain-data payloads (tests tweak them before building)
# ======================================================================

@pytest.fixture
def two_bus_payload() -> dict[str, Any]:
    return _two_bus_data()


@pytest.fixture
def radial_payload() -> dict[str, Any]:
    return _radial_data()


@pytest.fixture
def ring_payload() -> dict[str, Any]:
    return _ring_data()


@pytest.fixture
def harmonic_payload() -> dict[str, Any]:
    return _harmonic_data()
