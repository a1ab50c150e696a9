"""Tests for netengine.network.admittance: Y-bus assembly."""

from __future__ import annotations

import numpy as np
import pytest

from netengine.network.admittance import (
    at_harmonic,
    build_admittance_matrix,
    charging_at_harmonic,
    winding_impedances,
)
from netengine.network.network_model import (
    Branch,
    Bus,
    BusType,
    ElectricalNetwork,
    Transformer,
    TransformerType,
    network_from_dict,
)


def _three_winding_network(z: complex = complex(0.0, 0.1)) -> ElectricalNetwork:
    return ElectricalNetwork(
        buses=[
            Bus(id="P", bus_type=BusType.SLACK, nominal_voltage_kv=132.0),
            Bus(id="S", nominal_voltage_kv=33.0),
            Bus(id="T", nominal_voltage_kv=11.0),
        ],
        transformers=[
            Transformer(
                id="T3", primary_bus="P", secondary_bus="S", tertiary_bus="T",
                transformer_type=TransformerType.THREE_WINDING, rated_mva=100.0,
                impedance=z, impedance_pt=z, impedance_st=z, vector_group="YNyn0d1",
            ),
        ],
    )


class TestAdmittanceMatrix:

    def test_symmetric_without_phase_shift(self, ring_network):
        y_bus = build_admittance_matrix(ring_network)
        assert y_bus.is_symmetric()
        assert y_bus.matrix.shape == (3, 3)

    def test_off_diagonal_is_negative_series_admittance(self, ring_network):
        y_bus = build_admittance_matrix(ring_network)
        y = 1.0 / complex(0.01, 0.05)
        i, j = y_bus.index("grid"), y_bus.index("B2")
        assert y_bus.matrix[i, j] == pytest.approx(-y)
        assert y_bus.matrix[i, i] == pytest.approx(2 * y)

    def test_row_sums_equal_shunts(self, ring_payload):
        for branch in ring_payload["branches"]:
            branch["susceptance"] = 0.02
        ring_payload["buses"][1]["shunt_susceptance_pu"] = 0.1
        y_bus = build_admittance_matrix(network_from_dict(ring_payload))
        np.testing.assert_allclose(y_bus.matrix.sum(axis=1), y_bus.shunt_totals, atol=1e-12)
        # Two lines at B2, each half of 0.02, plus the fixed shunt
        assert y_bus.shunt_totals[1] == pytest.approx(complex(0.0, 0.12))

    def test_fixed_shunts_optional(self, ring_payload):
        ring_payload["buses"][1]["shunt_susceptance_pu"] = 0.1
        network = network_from_dict(ring_payload)
        with_shunts = build_admittance_matrix(network)
        without = build_admittance_matrix(network, include_shunts=False)
        assert with_shunts.matrix[1, 1] - without.matrix[1, 1] == pytest.approx(0.1j)

    def test_out_of_service_branch_excluded(self, ring_network):
        ring_network.get_branch("L13").in_service = False
        y_bus = build_admittance_matrix(ring_network)
        assert y_bus.matrix[0, 2] == 0
        assert all(s.element_id != "L13" for s in y_bus.stamps)

    def test_phase_shift_breaks_symmetry(self):
        network = ElectricalNetwork(
            buses=[Bus(id="A", bus_type=BusType.SLACK), Bus(id="B")],
            branches=[Branch(id="PST", from_bus="A", to_bus="B", reactance=0.1,
                             tap_ratio=1.05, phase_shift_deg=10.0)],
        )
        y_bus = build_admittance_matrix(network)
        y = 1.0 / complex(0.0, 0.1)
        t = network.get_branch("PST").tap
        assert not y_bus.is_symmetric()
        assert y_bus.matrix[0, 0] == pytest.approx(y / abs(t) ** 2)
        assert y_bus.matrix[0, 1] == pytest.approx(-y / np.conj(t))
        assert y_bus.matrix[1, 0] == pytest.approx(-y / t)

    def test_off_nominal_tap_keeps_symmetry(self):
        network = ElectricalNetwork(
            buses=[Bus(id="A", bus_type=BusType.SLACK), Bus(id="B")],
            branches=[Branch(id="T", from_bus="A", to_bus="B", reactance=0.1, tap_ratio=1.05)],
        )
        assert build_admittance_matrix(network).is_symmetric()

    def test_stamp_currents_balance(self, two_bus_network):
        y_bus = build_admittance_matrix(two_bus_network)
        v = np.array([1.0 + 0j, 0.97 - 0.05j])
        (stamp, i_from, i_to), = y_bus.stamp_currents(v)
        assert stamp.element_id == "L1"
        # Without charging the series current leaves one end and enters the other
        assert i_from == pytest.approx(-i_to)


class TestThreeWindingTransformer:
    """Star equivalent with the internal node Kron-reduced away."""

    def test_star_equivalent_impedances(self):
        tr = _three_winding_network().transformers[0]
        zp, zs, zt = winding_impedances(tr, 100.0)
        assert zp == pytest.approx(0.05j)
        assert zs == pytest.approx(0.05j)
        assert zt == pytest.approx(0.05j)

    def test_reduced_matrix_is_bus_by_bus(self):
        y_bus = build_admittance_matrix(_three_winding_network())
        assert y_bus.matrix.shape == (3, 3)
        assert y_bus.internal_nodes == [3]

    def test_kron_reduction_values(self):
        y_bus = build_admittance_matrix(_three_winding_network())
        y = 1.0 / 0.05j
        # Y_ps of a balanced star: −y·y / 3y
        assert y_bus.matrix[0, 1] == pytest.approx(-y / 3)
        np.testing.assert_allclose(y_bus.matrix.sum(axis=1), 0, atol=1e-9)

    def test_star_point_voltage_recovered(self):
        y_bus = build_admittance_matrix(_three_winding_network())
        v_nodes = y_bus.node_voltages(np.ones(3, dtype=complex))
        assert v_nodes[3] == pytest.approx(1.0)

    def test_winding_currents_labelled(self):
        y_bus = build_admittance_matrix(_three_winding_network())
        labels = {s.label for s in y_bus.stamps}
        assert labels == {"T3/primary", "T3/secondary", "T3/tertiary"}


class TestHarmonicScaling:

    def test_series_reactance_scales_with_order(self):
        assert at_harmonic(complex(0.01, 0.05), 5) == pytest.approx(complex(0.01, 0.25))
        assert at_harmonic(complex(0.01, 0.05), 1) == complex(0.01, 0.05)

    def test_capacitive_and_inductive_shunts(self):
        assert charging_at_harmonic(0.02, 5) == pytest.approx(0.1j)
        assert charging_at_harmonic(-0.5, 5) == pytest.approx(-0.1j)
