"""Tests for netengine.fault.sequence_networks."""

from __future__ import annotations

import math

import pytest

from netengine.analysis import perform_short_circuit_analysis
from netengine.fault.sequence_networks import (
    DEFAULT_GRID_IMPEDANCE,
    Sequence,
    build_sequence_network,
    build_sequence_networks,
    missing_zero_sequence_data,
)
from netengine.network.network_model import (
    Bus,
    BusType,
    ElectricalNetwork,
    FaultType,
    GeneratorType,
    Transformer,
    network_from_dict,
)

Z_TR = complex(0.006, 0.06)


def _transformer_network(vector_group: str) -> ElectricalNetwork:
    """Utility infeed at 33 kV through one 100 MVA transformer to an 11 kV bus."""
    return ElectricalNetwork(
        buses=[
            Bus(id="HV", bus_type=BusType.SLACK, nominal_voltage_kv=33.0),
            Bus(id="LV", nominal_voltage_kv=11.0),
        ],
        transformers=[
            Transformer(
                id="T1", primary_bus="HV", secondary_bus="LV",
                rated_mva=100.0, impedance=Z_TR, vector_group=vector_group,
            ),
        ],
    )


class TestSourceModels:

    def test_default_grid_source_at_slack(self, two_bus_network):
        net = build_sequence_network(two_bus_network, Sequence.POSITIVE)
        assert net.thevenin("grid") == pytest.approx(DEFAULT_GRID_IMPEDANCE)
        assert net.thevenin("load") == pytest.approx(DEFAULT_GRID_IMPEDANCE + complex(0.02, 0.08))

    def test_synchronous_machine_impedances(self, generator_network):
        networks = build_sequence_networks(generator_network)
        assert networks[Sequence.POSITIVE].thevenin("G") == pytest.approx(0.05j)
        assert networks[Sequence.NEGATIVE].thevenin("G") == pytest.approx(0.05j)
        # Solidly grounded: X0 only
        assert networks[Sequence.ZERO].thevenin("G") == pytest.approx(0.04j)

    def test_machine_grounding_impedance(self, generator_network):
        generator_network.generators[0].grounding_impedance = complex(0.0, 0.1)
        net = build_sequence_network(generator_network, Sequence.ZERO)
        assert net.thevenin("G") == pytest.approx(0.04j + 3 * 0.1j)

    def test_ungrounded_machine_has_no_zero_sequence(self, generator_network):
        generator_network.generators[0].grounded = False
        net = build_sequence_network(generator_network, Sequence.ZERO)
        assert math.isinf(net.thevenin("G").real)

    def test_inverter_only_in_positive_sequence(self, generator_network):
        generator_network.generators[0].generator_type = GeneratorType.INVERTER
        networks = build_sequence_networks(generator_network)
        assert networks[Sequence.POSITIVE].thevenin("G") == pytest.approx(1j / 1.2)
        assert math.isinf(networks[Sequence.NEGATIVE].thevenin("G").real)
        assert math.isinf(networks[Sequence.ZERO].thevenin("G").real)

    def test_harmonic_order_scales_reactance(self, generator_network):
        net = build_sequence_network(generator_network, Sequence.POSITIVE, order=5)
        assert net.thevenin("G") == pytest.approx(0.25j)

    def test_loads_excluded_from_fault_networks(self, two_bus_network):
        without = build_sequence_network(two_bus_network, Sequence.POSITIVE)
        with_loads = build_sequence_network(two_bus_network, Sequence.POSITIVE, include_loads=True)
        assert with_loads.thevenin("load") != pytest.approx(without.thevenin("load"))


class TestTransformerZeroSequence:
    """Winding connections decide where zero-sequence current can flow."""

    def test_dyn_grounds_the_star_side(self):
        net = build_sequence_network(_transformer_network("Dyn11"), Sequence.ZERO)
        assert net.thevenin("LV") == pytest.approx(Z_TR)
        # The delta blocks the path back to the HV source
        assert net.thevenin("HV") == pytest.approx(DEFAULT_GRID_IMPEDANCE)

    def test_ungrounded_star_is_open(self):
        net = build_sequence_network(_transformer_network("Yy0"), Sequence.ZERO)
        assert math.isinf(net.thevenin("LV").real)
        assert not net.grounded[net.index("LV")]

    def test_grounded_star_on_the_load_side_only(self):
        # The LV star point is grounded but the HV star is not: nothing returns
        net = build_sequence_network(_transformer_network("Yyn0"), Sequence.ZERO)
        assert math.isinf(net.thevenin("LV").real)
        assert not net.grounded[net.index("LV")]
        assert net.thevenin("HV") == pytest.approx(DEFAULT_GRID_IMPEDANCE)

    def test_grounded_star_on_the_source_side_only(self):
        net = build_sequence_network(_transformer_network("YNy0"), Sequence.ZERO)
        assert math.isinf(net.thevenin("LV").real)
        assert net.thevenin("HV") == pytest.approx(DEFAULT_GRID_IMPEDANCE)

    def test_ground_fault_behind_ungrounded_winding_is_flagged(self):
        result = perform_short_circuit_analysis(
            _transformer_network("Yyn0"), "LV", FaultType.LINE_TO_GROUND,
        )
        assert result.fault_current_ka == 0.0
        assert any("No zero-sequence path at bus 'LV'" in w for w in result.warnings)

    def test_grounded_star_both_sides_passes_through(self):
        net = build_sequence_network(_transformer_network("YNyn0"), Sequence.ZERO)
        assert net.thevenin("LV") == pytest.approx(DEFAULT_GRID_IMPEDANCE + Z_TR)

    def test_positive_sequence_ignores_connections(self):
        net = build_sequence_network(_transformer_network("Yy0"), Sequence.POSITIVE)
        assert net.thevenin("LV") == pytest.approx(DEFAULT_GRID_IMPEDANCE + Z_TR)


class TestZeroSequenceData:

    def test_missing_data_reported(self, two_bus_payload):
        del two_bus_payload["branches"][0]["r0"]
        del two_bus_payload["branches"][0]["x0"]
        assert missing_zero_sequence_data(network_from_dict(two_bus_payload)) == ["L1"]

    def test_complete_data(self, radial_network):
        assert missing_zero_sequence_data(radial_network) == []
