"""Tests for netengine.topology: single points of failure and costed recommendations."""

from __future__ import annotations

import pytest

from netengine.analysis import (
    optimize_network_topology,
    perform_load_flow,
    perform_short_circuit_analysis,
)
from netengine.errors import ParameterError
from netengine.network.network_model import AnalysisSettings, network_from_dict
from netengine.topology.optimizer import (
    DEFAULT_COSTS,
    Priority,
    RecommendationType,
    UPGRADE_LOSS_FRACTION,
    recommend_topology_changes,
    resolve_costs,
)
from netengine.topology.redundancy import find_single_points_of_failure


class TestRedundancy:
    """Elements whose outage cuts buses off from every slack bus."""

    def test_radial_feeder(self, radial_network):
        report = find_single_points_of_failure(radial_network)
        spofs = {s.element_id: s for s in report.single_points_of_failure}
        assert set(spofs) == {"L1", "L2", "B2"}
        assert spofs["L1"].isolated_buses == ["B2", "B3"]
        assert spofs["L1"].isolated_load_mw == pytest.approx(20.0)
        assert spofs["L2"].isolated_buses == ["B3"]
        assert spofs["B2"].element_type == "bus"
        assert spofs["B2"].isolated_buses == ["B3"]

    def test_redundancy_index(self, radial_network):
        report = find_single_points_of_failure(radial_network)
        # L1, L2, B2 and B3 are checked; only the end bus is harmless
        assert report.elements_checked == 4
        assert report.redundancy_index == pytest.approx(0.25)

    def test_ring_has_no_single_point_of_failure(self, ring_network):
        report = find_single_points_of_failure(ring_network)
        assert report.single_points_of_failure == []
        assert report.redundancy_index == 1.0

    def test_open_ring_becomes_radial(self, ring_network):
        ring_network.get_branch("L13").in_service = False
        report = find_single_points_of_failure(ring_network)
        assert {s.element_id for s in report.single_points_of_failure} == {"L12", "L23", "B2"}

    def test_to_dict(self, radial_network):
        data = find_single_points_of_failure(radial_network).to_dict()
        assert data["elements_checked"] == 4
        assert data["redundancy_index"] == 0.25

    def test_line_to_a_generator_bus(self, ring_payload):
        ring_payload["buses"].append({"id": "gen", "bus_type": "pv", "nominal_voltage_kv": 11.0})
        ring_payload["branches"].append({
            "id": "LG", "from_bus": "B3", "to_bus": "gen",
            "resistance": 0.01, "reactance": 0.05, "rating_mva": 100.0,
        })
        ring_payload["generators"] = [{"id": "G1", "bus_id": "gen", "power_output_mw": 15.0}]
        report = find_single_points_of_failure(network_from_dict(ring_payload))
        spofs = {s.element_id: s for s in report.single_points_of_failure}
        # The machine is not a slack source; losing its only connection strands it
        assert set(spofs) == {"LG", "B3"}
        assert spofs["LG"].isolated_buses == ["gen"]
        assert spofs["LG"].isolated_generation_mw == pytest.approx(15.0)
        assert spofs["LG"].isolated_load_mw == 0.0


class TestRecommendations:
    """Costed upgrades from redundancy, load-flow and fault results."""

    def test_radial_feeder_needs_redundancy(self, radial_network):
        result = optimize_network_topology(radial_network)
        assert [r.type for r in result.recommendations] == [RecommendationType.ADD_REDUNDANCY] * 3
        assert [r.element_id for r in result.recommendations] == ["B2", "L1", "L2"]
        assert all(r.priority == Priority.HIGH for r in result.recommendations)
        assert result.redundancy_improvement == pytest.approx(75.0)
        assert result.cost_estimate == pytest.approx(3 * DEFAULT_COSTS[RecommendationType.ADD_REDUNDANCY])

    def test_ring_needs_nothing(self, ring_network):
        result = optimize_network_topology(ring_network)
        assert result.recommendations == []
        assert result.redundancy_improvement == 0.0
        assert result.cost_estimate == 0.0

    def test_custom_costs(self, radial_network):
        result = optimize_network_topology(radial_network, costs={"add_redundancy": 250_000})
        assert result.cost_estimate == pytest.approx(750_000.0)

    def test_unknown_cost_key_rejected(self):
        with pytest.raises(ParameterError, match="Invalid cost entry"):
            resolve_costs({"gold_plating": 1.0})

    def test_overload_gives_capacity_upgrade(self, two_bus_payload):
        two_bus_payload["branches"][0]["rating_mva"] = 30.0
        network = network_from_dict(two_bus_payload)
        load_flow = perform_load_flow(network)
        result = optimize_network_topology(network, load_flow=load_flow)

        (overload,) = result.overloaded_branches
        assert overload.element_id == "L1"
        assert overload.loading_pct > 100.0
        upgrades = [r for r in result.recommendations if r.type == RecommendationType.CAPACITY_UPGRADE]
        assert [r.element_id for r in upgrades] == ["L1"]
        assert result.loss_reduction == pytest.approx(
            UPGRADE_LOSS_FRACTION * load_flow.get_branch("L1").losses_mva.real,
        )

    def test_priority_wins_over_cost(self, two_bus_payload):
        two_bus_payload["branches"][0]["rating_mva"] = 30.0
        network = network_from_dict(two_bus_payload)
        result = optimize_network_topology(network, costs={"capacity_upgrade": 1_000_000})
        types = [r.type for r in result.recommendations]
        # High-priority redundancy first even though the upgrade costs more
        assert types == [RecommendationType.ADD_REDUNDANCY, RecommendationType.CAPACITY_UPGRADE]

    def test_voltage_support_for_low_voltage(self, two_bus_payload):
        two_bus_payload["loads"][0].update(active_power_mw=120.0, reactive_power_mvar=60.0)
        result = optimize_network_topology(network_from_dict(two_bus_payload))
        support = [r for r in result.recommendations if r.type == RecommendationType.VOLTAGE_SUPPORT]
        assert [r.element_id for r in support] == ["load"]
        assert [v.bus_id for v in result.voltage_violations] == ["load"]

    def test_protection_upgrade_from_fault_duty(self, generator_network):
        generator_network.get_bus("G").withstand_rating_ka = 10.0
        fault = perform_short_circuit_analysis(generator_network, "G", "three_phase")
        result = optimize_network_topology(generator_network, short_circuit=fault)
        upgrades = [r for r in result.recommendations if r.type == RecommendationType.PROTECTION_UPGRADE]
        assert [r.element_id for r in upgrades] == ["G"]
        assert upgrades[0].priority == Priority.HIGH

    def test_regrading_from_coordination_problem(self, radial_network):
        fault = perform_short_circuit_analysis(radial_network, "B3", "three_phase")
        result = optimize_network_topology(radial_network, short_circuit=[fault])
        regrade = [
            r for r in result.recommendations
            if r.type == RecommendationType.PROTECTION_UPGRADE and "Re-grade" in r.description
        ]
        assert [r.element_id for r in regrade] == ["R1"]

    def test_reads_results_without_solving(self, radial_network):
        redundancy = find_single_points_of_failure(radial_network)
        result = recommend_topology_changes(AnalysisSettings(), redundancy)
        assert len(result.recommendations) == 3
        assert result.voltage_violations == []

    def test_to_dict(self, radial_network):
        data = optimize_network_topology(radial_network).to_dict()
        assert data["recommendations"][0]["type"] == "add_redundancy"
        assert data["recommendations"][0]["priority"] == "high"
        assert data["redundancy_index"] == 0.25
