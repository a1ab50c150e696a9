"""Tests for the network data model, per-unit helpers and phasor utilities."""

from __future__ import annotations

import math

import pytest

from netengine.errors import ParameterError
from netengine.network.network_model import (
    AnalysisSettings,
    BranchType,
    FaultType,
    LoadType,
    WindingConnection,
    network_from_dict,
    parse_vector_group,
    settings_from_dict,
)
from netengine.network.per_unit import (
    cable_z_pu,
    i_base,
    impedance_from_pct,
    pf_to_q,
    rebase_impedance,
    source_impedance_pu,
    z_base,
)
from netengine.network.phasor import (
    INFINITE_IMPEDANCE,
    parallel,
    parse_complex,
    phase_to_sequence,
    sequence_to_phase,
)
from netengine.standards import IEEE_1547


class TestNetworkFromDict:

    def test_basic_structure(self, radial_payload):
        network = network_from_dict(radial_payload)
        assert network.bus_ids == ["grid", "B2", "B3"]
        assert [b.id for b in network.slack_buses] == ["grid"]
        assert network.get_bus("B2").connected_elements == ["L1", "L2", "LD2"]
        assert network.element_endpoints() == {"L1": ["grid", "B2"], "L2": ["B2", "B3"]}

    def test_lookup_errors(self, radial_network):
        with pytest.raises(ParameterError):
            radial_network.get_bus("nowhere")
        with pytest.raises(ParameterError):
            radial_network.get_branch("L9")

    def test_cable_data_in_ohm_per_km(self, two_bus_payload):
        branch = two_bus_payload["branches"][0]
        del branch["resistance"], branch["reactance"]
        branch.update(branch_type="cable", r_ohm_per_km=0.1, x_ohm_per_km=0.08, length_km=2.0)
        cable = network_from_dict(two_bus_payload).get_branch("L1")
        assert cable.branch_type == BranchType.CABLE
        assert cable.impedance == pytest.approx(complex(0.2, 0.16) / z_base(11.0, 100.0))

    def test_voltage_given_in_polar_form(self, two_bus_payload):
        two_bus_payload["buses"][1].update(voltage_pu=0.98, angle_deg=-5.0)
        bus = network_from_dict(two_bus_payload).get_bus("load")
        assert bus.voltage_magnitude == pytest.approx(0.98)
        assert bus.angle_deg == pytest.approx(-5.0)

    def test_power_factor_gives_reactive_power(self, two_bus_payload):
        load = two_bus_payload["loads"][0]
        del load["reactive_power_mvar"]
        load["power_factor"] = 0.8
        parsed = network_from_dict(two_bus_payload).loads[0]
        assert parsed.reactive_power_mvar == pytest.approx(37.5)

    def test_spectrum_as_list(self, two_bus_payload):
        two_bus_payload["loads"][0]["harmonic_spectrum"] = [
            {"order": 5, "magnitude_pct": 20.0, "angle_deg": 180.0},
            {"order": 7, "magnitude": 0.1},
        ]
        load = network_from_dict(two_bus_payload).loads[0]
        assert load.is_nonlinear
        assert load.harmonic_spectrum.orders == [5, 7]
        assert load.harmonic_spectrum.component(5).magnitude == pytest.approx(0.2)
        assert load.harmonic_spectrum.thd == pytest.approx(math.hypot(0.2, 0.1) * 100.0)

    def test_load_type_and_model(self, two_bus_payload):
        two_bus_payload["loads"][0]["load_type"] = "constant_current"
        load = network_from_dict(two_bus_payload).loads[0]
        assert load.load_type == LoadType.CONSTANT_CURRENT
        assert load.model.fractions == (0.0, 1.0, 0.0)

    def test_transformer_from_nameplate(self, two_bus_payload):
        two_bus_payload["transformers"] = [{
            "id": "T1", "primary_bus": "grid", "secondary_bus": "load",
            "rated_mva": 10.0, "impedance_pct": 8.0, "x_r_ratio": 10.0,
            "tap_range": {"min_position": -5, "max_position": 5, "step_pct": 2.5},
            "tap_position": 2,
        }]
        tr = network_from_dict(two_bus_payload).get_transformer("T1")
        assert abs(tr.impedance) == pytest.approx(0.08)
        assert tr.tap_factor == pytest.approx(1.05)
        assert tr.connections == [WindingConnection.DELTA, WindingConnection.WYE_GROUNDED]

    def test_missing_field(self, two_bus_payload):
        del two_bus_payload["branches"][0]["to_bus"]
        with pytest.raises(ParameterError, match="Missing required field 'to_bus'"):
            network_from_dict(two_bus_payload)

    def test_bad_enum_value(self, two_bus_payload):
        two_bus_payload["buses"][0]["bus_type"] = "swing"
        with pytest.raises(ParameterError):
            network_from_dict(two_bus_payload)

    def test_analysis_settings_from_data(self, two_bus_payload):
        two_bus_payload["analysis_settings"] = {"grid_code": "ieee_1547", "max_iterations": 50}
        settings = network_from_dict(two_bus_payload).analysis_settings
        assert settings.grid_code is IEEE_1547
        assert settings.max_iterations == 50


class TestVectorGroups:

    @pytest.mark.parametrize("group,connections,clocks", [
        ("Dyn11", ["d", "yn"], [0, 11]),
        ("YNd1", ["yn", "d"], [0, 1]),
        ("Yy0", ["y", "y"], [0, 0]),
        ("YNyn0d1", ["yn", "yn", "d"], [0, 0, 1]),
    ])
    def test_parse(self, group, connections, clocks):
        parsed, parsed_clocks = parse_vector_group(group)
        assert [c.value for c in parsed] == connections
        assert parsed_clocks == clocks

    @pytest.mark.parametrize("group", ["", "Zn0", "dyn11", "Dyn"])
    def test_unsupported(self, group):
        with pytest.raises(ParameterError, match="vector group"):
            parse_vector_group(group)


class TestAnalysisSettings:

    def test_defaults_are_valid(self):
        AnalysisSettings().validate()

    def test_overrides_return_new_settings(self):
        base = AnalysisSettings()
        merged = base.with_overrides({"max_iterations": 5, "short_circuit_types": ["line_to_ground"]})
        assert merged.max_iterations == 5
        assert merged.short_circuit_types == [FaultType.LINE_TO_GROUND]
        assert base.max_iterations == 30

    def test_unknown_override(self):
        with pytest.raises(ParameterError, match="Unknown analysis settings"):
            AnalysisSettings().with_overrides({"tolerance": 1e-3})

    @pytest.mark.parametrize("overrides", [
        {"acceleration_factor": 2.5},
        {"acceleration_factor": 0.0},
        {"harmonic_orders": [1, 5]},
        {"max_workers": 0},
        {"convergence_tolerance": 0.0},
    ])
    def test_out_of_range(self, overrides):
        with pytest.raises(ParameterError):
            settings_from_dict(overrides)

    def test_unknown_profile_key(self):
        with pytest.raises(ParameterError, match="grid code"):
            settings_from_dict({"grid_code": "nowhere"})

    def test_unknown_fault_type(self):
        with pytest.raises(ParameterError):
            settings_from_dict({"short_circuit_types": ["arc_flash"]})


class TestPerUnit:

    def test_bases(self):
        assert z_base(11.0, 100.0) == pytest.approx(1.21)
        assert i_base(11.0, 100.0) == pytest.approx(5.2486, rel=1e-4)

    def test_rebase(self):
        # 10 % on 10 MVA is 100 % on 100 MVA
        assert rebase_impedance(0.1j, 10.0, 100.0) == pytest.approx(1.0j)
        assert rebase_impedance(0.1j, 100.0, 100.0, 11.0, 22.0) == pytest.approx(0.025j)

    def test_impedance_from_pct(self):
        z = impedance_from_pct(10.0, x_r_ratio=10.0)
        assert abs(z) == pytest.approx(0.1)
        assert z.imag / z.real == pytest.approx(10.0)

    def test_source_impedance(self):
        z = source_impedance_pu(1000.0, 100.0, x_r_ratio=10.0)
        assert abs(z) == pytest.approx(0.1)

    def test_cable(self):
        assert cable_z_pu(0.1, 0.1, 1.0, 11.0, 100.0) == pytest.approx(complex(0.1, 0.1) / 1.21)

    def test_power_factor(self):
        assert pf_to_q(10.0, 1.0) == 0.0
        assert pf_to_q(8.0, 0.8) == pytest.approx(6.0)


class TestPhasors:

    @pytest.mark.parametrize("value,expected", [
        ({"real": 0.1, "imaginary": 0.2}, complex(0.1, 0.2)),
        ([0.1, 0.2], complex(0.1, 0.2)),
        ("0.1 + 0.2j", complex(0.1, 0.2)),
        (0.5, complex(0.5, 0.0)),
        (None, 0j),
    ])
    def test_parse_complex(self, value, expected):
        assert parse_complex(value) == pytest.approx(expected)

    def test_parse_complex_rejects_garbage(self):
        with pytest.raises(TypeError):
            parse_complex(object())

    def test_parallel_ignores_open_circuits(self):
        assert parallel(1j, 1j) == pytest.approx(0.5j)
        assert parallel(1j, INFINITE_IMPEDANCE) == pytest.approx(1j)
        assert math.isinf(parallel(INFINITE_IMPEDANCE).real)

    def test_sequence_round_trip(self):
        phases = sequence_to_phase(0.1, 1.0, 0.2j)
        assert phase_to_sequence(*phases) == pytest.approx((0.1, 1.0, 0.2j))

    def test_balanced_set_is_pure_positive_sequence(self):
        a, b, c = sequence_to_phase(0j, 1.0 + 0j, 0j)
        assert abs(a + b + c) == pytest.approx(0.0, abs=1e-12)
        assert abs(b) == pytest.approx(1.0)
