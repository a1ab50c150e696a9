"""Tests for netengine.fault.protection: trip curves, grading and equipment duty."""

from __future__ import annotations

import pytest

from netengine.analysis import perform_short_circuit_analysis
from netengine.fault.protection import (
    INSTANTANEOUS_TIME_S,
    evaluate_coordination,
    evaluate_equipment_stress,
    operating_time,
    upstream_devices,
)
from netengine.network.network_model import (
    AnalysisSettings,
    ProtectiveDevice,
    TripCurve,
    network_from_dict,
)


class TestOperatingTime:
    """IEC 60255 inverse-time characteristics."""

    def test_standard_inverse_at_ten_times_pickup(self):
        relay = ProtectiveDevice(id="R", element_id="L", pickup_current_a=100.0, time_multiplier=0.1)
        expected = 0.1 * 0.14 / (10.0 ** 0.02 - 1.0)
        assert operating_time(relay, 1000.0) == pytest.approx(expected)
        # About 0.3 s, the textbook value
        assert 0.29 < expected < 0.31

    def test_very_inverse(self):
        relay = ProtectiveDevice(
            id="R", element_id="L", curve=TripCurve.VERY_INVERSE,
            pickup_current_a=100.0, time_multiplier=1.0,
        )
        assert operating_time(relay, 1000.0) == pytest.approx(13.5 / 9.0)

    def test_no_pickup_below_setting(self):
        relay = ProtectiveDevice(id="R", element_id="L", pickup_current_a=100.0)
        assert operating_time(relay, 100.0) is None
        assert operating_time(relay, 50.0) is None

    def test_instantaneous_element(self):
        relay = ProtectiveDevice(
            id="R", element_id="L", pickup_current_a=100.0, instantaneous_pickup_a=2000.0,
        )
        assert operating_time(relay, 2500.0) == INSTANTANEOUS_TIME_S
        assert operating_time(relay, 1500.0) > INSTANTANEOUS_TIME_S

    def test_definite_time(self):
        relay = ProtectiveDevice(
            id="R", element_id="L", curve=TripCurve.DEFINITE_TIME,
            pickup_current_a=100.0, definite_time_s=0.4,
        )
        assert operating_time(relay, 150.0) == 0.4
        assert operating_time(relay, 5000.0) == 0.4

    def test_higher_current_trips_faster(self):
        relay = ProtectiveDevice(id="R", element_id="L", pickup_current_a=100.0)
        assert operating_time(relay, 5000.0) < operating_time(relay, 500.0)


class TestCoordination:
    """Grading between series devices on the radial feeder."""

    def test_upstream_relation_follows_the_feeder(self, radial_network):
        assert upstream_devices(radial_network) == {"R2": "R1"}

    def test_equal_settings_have_no_margin(self, radial_network):
        result = evaluate_coordination(radial_network, AnalysisSettings(), {"L1": 5.0, "L2": 5.0})
        assert not result.coordinated
        problem = result.coordination_problems[0]
        assert (problem.upstream, problem.downstream) == ("R1", "R2")
        assert problem.coordination_time_s == pytest.approx(0.0)
        assert problem.severity == "major"
        assert "'R1'" in result.recommendations[0]

    def test_inverted_grading_is_critical(self, radial_payload):
        radial_payload["protective_devices"][1]["time_multiplier"] = 0.5
        network = network_from_dict(radial_payload)
        result = evaluate_coordination(network, AnalysisSettings(), {"L1": 5.0, "L2": 5.0})
        assert result.coordination_problems[0].severity == "critical"
        assert result.coordination_problems[0].coordination_time_s < 0

    def test_graded_settings_coordinate(self, radial_payload):
        radial_payload["protective_devices"][0]["time_multiplier"] = 0.5
        network = network_from_dict(radial_payload)
        result = evaluate_coordination(network, AnalysisSettings(), {"L1": 5.0, "L2": 5.0})
        assert result.coordinated
        assert all(op.operated for op in result.device_operations)

    def test_devices_that_do_not_pick_up_are_skipped(self, radial_network):
        result = evaluate_coordination(radial_network, AnalysisSettings(), {"L1": 0.1, "L2": 0.1})
        assert result.coordinated
        assert not any(op.operated for op in result.device_operations)

    def test_out_of_service_device_ignored(self, radial_network):
        radial_network.protective_devices[0].in_service = False
        assert upstream_devices(radial_network) == {}

    def test_fault_analysis_reports_grading(self, radial_network):
        result = perform_short_circuit_analysis(radial_network, "B3", "three_phase")
        coordination = result.protection_coordination
        assert [(p.upstream, p.downstream) for p in coordination.coordination_problems] == [("R1", "R2")]
        data = result.to_dict()["protection_coordination"]
        assert data["coordinated"] is False
        assert len(data["device_operations"]) == 2


class TestEquipmentStress:
    """Fault duty against interrupting and withstand ratings."""

    def test_device_and_bus_duty(self, radial_payload):
        radial_payload["protective_devices"][0]["interrupting_rating_ka"] = 25.0
        radial_payload["buses"][2]["withstand_rating_ka"] = 40.0
        network = network_from_dict(radial_payload)
        stresses = evaluate_equipment_stress(
            network, AnalysisSettings(), "B3", 30.0, {"L1": 30.0, "L2": 30.0},
        )
        by_id = {s.equipment_id: s for s in stresses}
        assert set(by_id) == {"R1", "B3"}
        assert not by_id["R1"].within_rating
        assert by_id["R1"].stress_ratio == pytest.approx(1.2)
        assert by_id["B3"].within_rating
        assert by_id["B3"].equipment_type == "bus"

    def test_bus_withstand_defaults_to_grid_code(self, radial_network):
        settings = AnalysisSettings()
        stresses = evaluate_equipment_stress(radial_network, settings, "B2", 1.0, {})
        assert stresses[-1].rating_ka == settings.grid_code.fault_level.max_fault_ka
