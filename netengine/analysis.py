"""Public entry points of the analysis engine.

Each entry point takes a network, merges optional per-call settings
overrides over ``network.analysis_settings``, validates the network and
runs one study. Structural and parameter problems raise before any solve;
non-convergence is reported in the result.

    perform_load_flow              → LoadFlowResult
    perform_short_circuit_analysis → ShortCircuitResult
    perform_fault_study            → list[ShortCircuitResult]
    perform_harmonic_analysis      → HarmonicAnalysisResult
    optimize_network_topology      → TopologyOptimizationResult
    run_contingency_analysis       → ContingencyAnalysisResult
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from netengine.cancellation import CancellationToken
from netengine.errors import ParameterError
from netengine.fault.short_circuit import (
    ShortCircuitResult,
    calculate_fault_study,
    calculate_short_circuit,
)
from netengine.harmonics.harmonic_flow import HarmonicAnalysisResult, calculate_harmonics
from netengine.loadflow.power_flow import solve_power_flow
from netengine.loadflow.results import LoadFlowResult
from netengine.network.network_model import AnalysisSettings, ElectricalNetwork, FaultType
from netengine.network.validation import validate_network
from netengine.topology import contingency
from netengine.topology.optimizer import TopologyOptimizationResult, recommend_topology_changes
from netengine.topology.redundancy import find_single_points_of_failure

logger = logging.getLogger(__name__)

SettingsOverride = AnalysisSettings | dict[str, Any] | None


def _prepare(network: ElectricalNetwork, settings: SettingsOverride) -> AnalysisSettings:
    effective = network.analysis_settings.with_overrides(settings)
    effective.validate()
    validate_network(network)
    if effective.pcc_bus_id is not None and effective.pcc_bus_id not in network.bus_index():
        raise ParameterError(f"PCC bus '{effective.pcc_bus_id}' does not exist")
    return effective


def perform_load_flow(
    network: ElectricalNetwork,
    *,
    settings: SettingsOverride = None,
    warm_start: Mapping[str, complex] | LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> LoadFlowResult:
    """Newton-Raphson load flow.

    The input network is not modified; call ``result.apply_to(network)`` to
    write the solved voltages back.
    """
    effective = _prepare(network, settings)
    result = solve_power_flow(network, effective, warm_start=warm_start, cancel_token=cancel_token)
    if effective.include_harmonics:
        result.harmonics = calculate_harmonics(
            network, effective, base_case=result, cancel_token=cancel_token,
        )
    return result


def perform_short_circuit_analysis(
    network: ElectricalNetwork,
    fault_bus_id: str,
    fault_type: FaultType | str,
    *,
    settings: SettingsOverride = None,
    base_case: LoadFlowResult | None = None,
    fault_impedance: complex = 0j,
    cancel_token: CancellationToken | None = None,
) -> ShortCircuitResult:
    """Fault currents, bus voltages, protection coordination and equipment stress."""
    effective = _prepare(network, settings)
    return calculate_short_circuit(
        network, fault_bus_id, fault_type, effective,
        base_case=base_case, fault_impedance=fault_impedance, cancel_token=cancel_token,
    )


def perform_fault_study(
    network: ElectricalNetwork,
    bus_ids: list[str] | None = None,
    fault_types: list[FaultType | str] | None = None,
    *,
    settings: SettingsOverride = None,
    base_case: LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[ShortCircuitResult]:
    """Every requested fault type at every requested bus (defaults: all of both)."""
    effective = _prepare(network, settings)
    return calculate_fault_study(
        network, effective, bus_ids, fault_types,
        base_case=base_case, cancel_token=cancel_token,
    )


def perform_harmonic_analysis(
    network: ElectricalNetwork,
    *,
    settings: SettingsOverride = None,
    base_case: LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> HarmonicAnalysisResult:
    effective = _prepare(network, settings)
    return calculate_harmonics(network, effective, base_case=base_case, cancel_token=cancel_token)


def optimize_network_topology(
    network: ElectricalNetwork,
    *,
    settings: SettingsOverride = None,
    load_flow: LoadFlowResult | None = None,
    short_circuit: Iterable[ShortCircuitResult] | ShortCircuitResult | None = None,
    costs: dict[str, float] | None = None,
    cancel_token: CancellationToken | None = None,
) -> TopologyOptimizationResult:
    """Single points of failure, voltage and loading problems, costed fixes.

    A load flow is run when none is supplied; short-circuit results are
    optional and only add protection upgrades.
    """
    effective = _prepare(network, settings)
    if load_flow is None:
        load_flow = solve_power_flow(network, effective, cancel_token=cancel_token)
    if isinstance(short_circuit, ShortCircuitResult):
        short_circuit = [short_circuit]
    redundancy = find_single_points_of_failure(network)
    return recommend_topology_changes(
        effective, redundancy,
        load_flow=load_flow,
        short_circuit=short_circuit or (),
        costs=costs,
    )


def run_contingency_analysis(
    network: ElectricalNetwork,
    *,
    settings: SettingsOverride = None,
    element_ids: list[str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> contingency.ContingencyAnalysisResult:
    """N-1 screening of every in-service branch and transformer."""
    effective = _prepare(network, settings)
    if element_ids is not None:
        known = set(network.element_endpoints())
        unknown = sorted(set(element_ids) - known)
        if unknown:
            raise ParameterError(f"Unknown elements: {', '.join(unknown)}")
    return contingency.run_contingency_analysis(
        network, effective, element_ids=element_ids, cancel_token=cancel_token,
    )
