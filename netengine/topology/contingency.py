"""N-1 Contingency Analysis.

For each in-service branch and transformer, takes it out of service, re-runs
power flow, and checks for voltage and thermal violations against the grid
code contingency limits.

Returns a list of contingency results indicating pass/fail per element,
along with details of any violations found.

IEEE 399 / NERC TPL methodology: the system must remain stable (no
voltage collapse, no overloads beyond contingency limits) when any
single element is out of service.
"""

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from netengine.cancellation import CancellationToken, check_cancelled
from netengine.loadflow.power_flow import solve_power_flow
from netengine.network.graph import reachable_buses
from netengine.network.network_model import AnalysisSettings, ElectricalNetwork

logger = logging.getLogger(__name__)


@dataclass
class VoltageViolationDetail:
    """A single bus voltage violation during a contingency."""
    bus_id: str
    voltage_pu: float
    limit_type: str   # "low" or "high"
    limit_value: float  # the limit that was exceeded


@dataclass
class ThermalViolationDetail:
    """A single branch thermal violation during a contingency."""
    branch_id: str
    loading_pct: float
    rating_mva: float
    limit_pct: float  # the thermal limit from the grid code


@dataclass
class ContingencyResult:
    """Result for a single N-1 contingency (one element out of service)."""
    element_id: str
    element_type: str
    passed: bool
    converged: bool
    iterations: int
    max_mismatch: float
    voltage_violations: list[VoltageViolationDetail] = field(default_factory=list)
    thermal_violations: list[ThermalViolationDetail] = field(default_factory=list)
    min_voltage_pu: float = 1.0
    min_voltage_bus: str = ""
    max_voltage_pu: float = 1.0
    max_loading_pct: float = 0.0
    max_loading_branch: str = ""
    # Buses cut off from every slack bus by the outage
    causes_islanding: bool = False
    islanded_buses: list[str] = field(default_factory=list)


@dataclass
class ContingencyAnalysisResult:
    """Complete N-1 contingency analysis result."""
    grid_code: str
    total_contingencies: int
    passed_count: int
    failed_count: int
    island_count: int
    worst_voltage_pu: float
    worst_voltage_bus: str
    worst_loading_pct: float
    worst_loading_branch: str
    contingencies: list[ContingencyResult] = field(default_factory=list)

    @property
    def n1_secure(self) -> bool:
        return self.failed_count == 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "grid_code": self.grid_code,
            "summary": {
                "total_contingencies": self.total_contingencies,
                "passed": self.passed_count,
                "failed": self.failed_count,
                "islanding_cases": self.island_count,
                "worst_voltage_pu": round(self.worst_voltage_pu, 4),
                "worst_voltage_bus": self.worst_voltage_bus,
                "worst_loading_pct": round(self.worst_loading_pct, 1),
                "worst_loading_branch": self.worst_loading_branch,
                "n1_secure": self.n1_secure,
            },
            "contingencies": [
                {
                    "element_id": c.element_id,
                    "element_type": c.element_type,
                    "passed": c.passed,
                    "converged": c.converged,
                    "iterations": c.iterations,
                    "causes_islanding": c.causes_islanding,
                    "islanded_buses": list(c.islanded_buses),
                    "min_voltage_pu": round(c.min_voltage_pu, 4),
                    "max_voltage_pu": round(c.max_voltage_pu, 4),
                    "max_loading_pct": round(c.max_loading_pct, 1),
                    "voltage_violations": [
                        {
                            "bus_id": v.bus_id,
                            "voltage_pu": round(v.voltage_pu, 4),
                            "limit_type": v.limit_type,
                            "limit_value": v.limit_value,
                        }
                        for v in c.voltage_violations
                    ],
                    "thermal_violations": [
                        {
                            "branch_id": t.branch_id,
                            "loading_pct": round(t.loading_pct, 1),
                            "rating_mva": t.rating_mva,
                            "limit_pct": t.limit_pct,
                        }
                        for t in c.thermal_violations
                    ],
                }
                for c in self.contingencies
            ],
        }


def _take_out_of_service(network: ElectricalNetwork, element_id: str) -> ElectricalNetwork:
    """Copy of the network with one branch or transformer switched out.

    The original network is not mutated.
    """
    reduced = copy.deepcopy(network)
    for element in reduced.branches + reduced.transformers:
        if element.id == element_id:
            element.in_service = False
    return reduced


def _element_ratings(network: ElectricalNetwork) -> dict[str, float]:
    ratings = {br.id: br.rating_mva for br in network.branches}
    ratings.update({tr.id: tr.rated_mva for tr in network.transformers})
    return ratings


def _run_contingency(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    element_id: str,
    element_type: str,
    baseline: set[str],
    cancel_token: CancellationToken | None,
) -> ContingencyResult:
    check_cancelled(cancel_token, f"contingency {element_id}")
    grid_code = settings.grid_code
    slack_ids = [b.id for b in network.slack_buses]

    remaining = reachable_buses(network, slack_ids, exclude_elements=[element_id])
    islanded = [b.id for b in network.buses if b.id in baseline and b.id not in remaining]
    if islanded:
        return ContingencyResult(
            element_id=element_id,
            element_type=element_type,
            passed=False,
            converged=False,
            iterations=0,
            max_mismatch=float("inf"),
            causes_islanding=True,
            islanded_buses=islanded,
            min_voltage_pu=0.0,
            max_voltage_pu=0.0,
            max_loading_pct=0.0,
        )

    reduced = _take_out_of_service(network, element_id)
    pf_result = solve_power_flow(reduced, settings, cancel_token=cancel_token)

    # Check voltage violations against contingency limits
    voltage_violations: list[VoltageViolationDetail] = []
    lowest = min(pf_result.bus_results, key=lambda b: b.voltage_magnitude, default=None)
    magnitudes = [b.voltage_magnitude for b in pf_result.bus_results]
    for bus in pf_result.bus_results:
        v = bus.voltage_magnitude
        violation = grid_code.voltage.check_contingency(v)
        if violation is not None:
            limit_val = (
                grid_code.voltage.contingency_min
                if violation == "low"
                else grid_code.voltage.contingency_max
            )
            voltage_violations.append(VoltageViolationDetail(
                bus_id=bus.bus_id,
                voltage_pu=v,
                limit_type=violation,
                limit_value=limit_val,
            ))

    # Check thermal violations
    thermal_limit = grid_code.thermal_limit_pct
    ratings = _element_ratings(reduced)
    thermal_violations: list[ThermalViolationDetail] = []
    max_loading = 0.0
    max_loading_branch = ""
    for bf in pf_result.branch_results:
        if bf.loading_pct > max_loading:
            max_loading = bf.loading_pct
            max_loading_branch = bf.branch_id
        if bf.loading_pct > thermal_limit:
            thermal_violations.append(ThermalViolationDetail(
                branch_id=bf.branch_id,
                loading_pct=bf.loading_pct,
                rating_mva=ratings.get(bf.element_id, 0.0),
                limit_pct=thermal_limit,
            ))

    passed = (
        pf_result.converged
        and len(voltage_violations) == 0
        and len(thermal_violations) == 0
    )
    return ContingencyResult(
        element_id=element_id,
        element_type=element_type,
        passed=passed,
        converged=pf_result.converged,
        iterations=pf_result.iterations,
        max_mismatch=pf_result.max_mismatch,
        voltage_violations=voltage_violations,
        thermal_violations=thermal_violations,
        min_voltage_pu=lowest.voltage_magnitude if lowest else 0.0,
        min_voltage_bus=lowest.bus_id if lowest else "",
        max_voltage_pu=max(magnitudes) if magnitudes else 0.0,
        max_loading_pct=max_loading,
        max_loading_branch=max_loading_branch,
    )


def run_contingency_analysis(
    network: ElectricalNetwork,
    settings: AnalysisSettings | None = None,
    *,
    element_ids: list[str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> ContingencyAnalysisResult:
    """Run N-1 contingency analysis on the network.

    For each in-service branch and transformer:
    1. Check whether its outage islands part of the network
    2. Run power flow with the element out of service
    3. Check voltage and thermal violations against contingency limits

    Args:
        network: The base network (not modified)
        settings: Effective analysis settings; the grid code supplies limits
        element_ids: Restrict the study to these elements
        cancel_token: Checked once per contingency

    Returns:
        ContingencyAnalysisResult with per-element pass/fail results
    """
    settings = settings or network.analysis_settings
    outages = [(br.id, br.branch_type.value) for br in network.active_branches]
    outages += [(tr.id, "transformer") for tr in network.active_transformers]
    if element_ids is not None:
        wanted = set(element_ids)
        outages = [o for o in outages if o[0] in wanted]

    baseline = reachable_buses(network, [b.id for b in network.slack_buses])

    def run(outage: tuple[str, str]) -> ContingencyResult:
        return _run_contingency(network, settings, outage[0], outage[1], baseline, cancel_token)

    if settings.max_workers > 1 and len(outages) > 1:
        with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
            contingencies = list(pool.map(run, outages))
    else:
        contingencies = [run(o) for o in outages]

    worst_voltage = 1.0
    worst_voltage_bus = ""
    worst_loading = 0.0
    worst_loading_branch = ""
    for c in contingencies:
        if c.causes_islanding:
            continue
        if c.min_voltage_pu < worst_voltage:
            worst_voltage = c.min_voltage_pu
            worst_voltage_bus = c.min_voltage_bus
        if c.max_loading_pct > worst_loading:
            worst_loading = c.max_loading_pct
            worst_loading_branch = c.max_loading_branch

    passed_count = sum(1 for c in contingencies if c.passed)
    failed_count = len(contingencies) - passed_count
    island_count = sum(1 for c in contingencies if c.causes_islanding)

    logger.info(
        "N-1 analysis: %d contingencies, %d failed, %d islanding",
        len(contingencies), failed_count, island_count,
    )
    return ContingencyAnalysisResult(
        grid_code=settings.grid_code.name,
        total_contingencies=len(contingencies),
        passed_count=passed_count,
        failed_count=failed_count,
        island_count=island_count,
        worst_voltage_pu=worst_voltage,
        worst_voltage_bus=worst_voltage_bus,
        worst_loading_pct=worst_loading,
        worst_loading_branch=worst_loading_branch,
        contingencies=contingencies,
    )
