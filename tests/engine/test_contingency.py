"""Tests for netengine.topology.contingency: N-1 screening."""

from __future__ import annotations

import json

import pytest

from netengine.analysis import run_contingency_analysis
from netengine.cancellation import CancellationToken
from netengine.errors import AnalysisCancelled, ParameterError
from netengine.network.network_model import network_from_dict


class TestContingencyAnalysis:

    def test_ring_is_n1_secure(self, ring_network):
        result = run_contingency_analysis(ring_network)
        assert result.total_contingencies == 3
        assert result.n1_secure
        assert result.island_count == 0
        assert all(c.converged for c in result.contingencies)
        assert result.worst_voltage_pu < 1.0
        assert result.worst_loading_pct > 0.0

    def test_radial_outages_island_buses(self, radial_network):
        result = run_contingency_analysis(radial_network)
        by_id = {c.element_id: c for c in result.contingencies}
        assert by_id["L1"].causes_islanding
        assert by_id["L1"].islanded_buses == ["B2", "B3"]
        assert not by_id["L1"].passed
        assert by_id["L2"].islanded_buses == ["B3"]
        assert result.failed_count == 2
        assert result.island_count == 2
        assert not result.n1_secure

    def test_thermal_violation_after_outage(self, ring_payload):
        for branch in ring_payload["branches"]:
            branch["rating_mva"] = 40.0
        result = run_contingency_analysis(network_from_dict(ring_payload))
        by_id = {c.element_id: c for c in result.contingencies}
        outage = by_id["L12"]
        assert not outage.passed
        assert [t.branch_id for t in outage.thermal_violations] == ["L13"]
        assert outage.thermal_violations[0].rating_mva == 40.0
        assert result.worst_loading_pct > 100.0

    def test_contingency_voltage_limits(self, ring_payload):
        ring_payload["analysis_settings"] = {"grid_code": {"voltage_limits": {"contingency": [0.99, 1.10]}}}
        result = run_contingency_analysis(network_from_dict(ring_payload))
        outage = {c.element_id: c for c in result.contingencies}["L12"]
        assert outage.voltage_violations
        assert outage.voltage_violations[0].limit_type == "low"
        assert outage.voltage_violations[0].limit_value == 0.99

    def test_element_filter(self, ring_network):
        result = run_contingency_analysis(ring_network, element_ids=["L23"])
        assert [c.element_id for c in result.contingencies] == ["L23"]

    def test_unknown_element_rejected(self, ring_network):
        with pytest.raises(ParameterError, match="Unknown elements"):
            run_contingency_analysis(ring_network, element_ids=["L99"])

    def test_out_of_service_elements_skipped(self, ring_network):
        ring_network.get_branch("L23").in_service = False
        result = run_contingency_analysis(ring_network)
        assert [c.element_id for c in result.contingencies] == ["L12", "L13"]

    def test_network_not_mutated(self, ring_network):
        run_contingency_analysis(ring_network)
        assert all(br.in_service for br in ring_network.branches)

    def test_parallel_matches_serial(self, ring_network):
        serial = run_contingency_analysis(ring_network)
        parallel = run_contingency_analysis(ring_network, settings={"max_workers": 3})
        assert [c.element_id for c in parallel.contingencies] == ["L12", "L23", "L13"]
        assert parallel.worst_loading_pct == pytest.approx(serial.worst_loading_pct)

    def test_cancellation(self, ring_network):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(AnalysisCancelled):
            run_contingency_analysis(ring_network, cancel_token=token)

    def test_to_dict_summary(self, radial_network):
        data = run_contingency_analysis(radial_network).to_dict()
        json.dumps(data)
        assert data["grid_code"] == "IEC Default"
        assert data["summary"]["total_contingencies"] == 2
        assert data["summary"]["islanding_cases"] == 2
        assert data["summary"]["n1_secure"] is False
        assert data["contingencies"][0]["causes_islanding"] is True
