"""Topology recommendations from prior analysis results.

Reads a redundancy check, a load-flow result and optionally short-circuit
results; emits prioritized, costed upgrade recommendations. No new solve is
performed here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from netengine.fault.short_circuit import ShortCircuitResult
from netengine.loadflow.results import LoadFlowResult, VoltageViolation
from netengine.errors import ParameterError
from netengine.network.network_model import AnalysisSettings
from netengine.topology.redundancy import RedundancyReport, SinglePointOfFailure

logger = logging.getLogger(__name__)


class RecommendationType(str, Enum):
    ADD_REDUNDANCY = "add_redundancy"
    VOLTAGE_SUPPORT = "voltage_support"
    CAPACITY_UPGRADE = "capacity_upgrade"
    PROTECTION_UPGRADE = "protection_upgrade"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}

DEFAULT_COSTS: dict[RecommendationType, float] = {
    RecommendationType.ADD_REDUNDANCY: 100_000.0,
    RecommendationType.VOLTAGE_SUPPORT: 50_000.0,
    RecommendationType.CAPACITY_UPGRADE: 75_000.0,
    RecommendationType.PROTECTION_UPGRADE: 40_000.0,
}

# Share of an overloaded element's I²R losses removed by a one-size-up
# conductor or transformer (series resistance roughly halves).
UPGRADE_LOSS_FRACTION = 0.5


@dataclass
class TopologyRecommendation:
    type: RecommendationType
    element_id: str
    description: str
    priority: Priority
    estimated_cost: float
    benefit_description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "element_id": self.element_id,
            "description": self.description,
            "priority": self.priority.value,
            "estimated_cost": self.estimated_cost,
            "benefit_description": self.benefit_description,
        }


@dataclass
class OverloadedBranch:
    branch_id: str
    element_id: str
    loading_pct: float
    limit_pct: float
    losses_mw: float


@dataclass
class TopologyOptimizationResult:
    recommendations: list[TopologyRecommendation]
    redundancy_improvement: float  # percentage points of redundancy index
    loss_reduction: float  # MW
    cost_estimate: float
    single_points_of_failure: list[SinglePointOfFailure] = field(default_factory=list)
    voltage_violations: list[VoltageViolation] = field(default_factory=list)
    overloaded_branches: list[OverloadedBranch] = field(default_factory=list)
    redundancy_index: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "redundancy_improvement": round(self.redundancy_improvement, 2),
            "loss_reduction": round(self.loss_reduction, 6),
            "cost_estimate": round(self.cost_estimate, 2),
            "redundancy_index": round(self.redundancy_index, 4),
            "single_points_of_failure": [s.to_dict() for s in self.single_points_of_failure],
            "voltage_violations": [v.to_dict() for v in self.voltage_violations],
            "overloaded_branches": [
                {
                    "branch_id": o.branch_id,
                    "element_id": o.element_id,
                    "loading_pct": round(o.loading_pct, 2),
                    "limit_pct": o.limit_pct,
                    "losses_mw": round(o.losses_mw, 6),
                }
                for o in self.overloaded_branches
            ],
        }


def resolve_costs(costs: dict[str, float] | None) -> dict[RecommendationType, float]:
    resolved = dict(DEFAULT_COSTS)
    for key, value in (costs or {}).items():
        try:
            resolved[RecommendationType(key)] = float(value)
        except ValueError as exc:
            raise ParameterError(f"Invalid cost entry '{key}': {value!r}") from exc
    return resolved


def overloaded_branches(load_flow: LoadFlowResult, settings: AnalysisSettings) -> list[OverloadedBranch]:
    limit = settings.grid_code.thermal_limit_pct
    return [
        OverloadedBranch(
            branch_id=br.branch_id,
            element_id=br.element_id,
            loading_pct=br.loading_pct,
            limit_pct=limit,
            losses_mw=br.losses_mva.real,
        )
        for br in load_flow.branch_results
        if br.loading_pct > limit
    ]


def _protection_recommendations(
    results: Iterable[ShortCircuitResult],
    cost: float,
) -> list[TopologyRecommendation]:
    recs: dict[str, TopologyRecommendation] = {}
    for sc in results:
        for stress in sc.equipment_stress:
            if stress.within_rating or stress.equipment_id in recs:
                continue
            recs[stress.equipment_id] = TopologyRecommendation(
                type=RecommendationType.PROTECTION_UPGRADE,
                element_id=stress.equipment_id,
                description=(
                    f"Replace {stress.equipment_type} '{stress.equipment_id}': fault duty "
                    f"{stress.current_ka:.2f} kA exceeds its {stress.rating_ka:.2f} kA rating"
                ),
                priority=Priority.HIGH,
                estimated_cost=cost,
                benefit_description="Equipment can safely interrupt or withstand the fault",
            )
        for problem in sc.protection_coordination.coordination_problems:
            key = f"{problem.upstream}/{problem.downstream}"
            if key in recs:
                continue
            recs[key] = TopologyRecommendation(
                type=RecommendationType.PROTECTION_UPGRADE,
                element_id=problem.upstream,
                description=(
                    f"Re-grade '{problem.upstream}' against '{problem.downstream}' "
                    f"(margin {problem.coordination_time_s:.3f} s)"
                ),
                priority=Priority.HIGH if problem.severity == "critical" else Priority.MEDIUM,
                estimated_cost=cost,
                benefit_description="Restores selective tripping",
            )
    return list(recs.values())


def recommend_topology_changes(
    settings: AnalysisSettings,
    redundancy: RedundancyReport,
    load_flow: LoadFlowResult | None = None,
    short_circuit: Iterable[ShortCircuitResult] = (),
    costs: dict[str, float] | None = None,
) -> TopologyOptimizationResult:
    """Costed recommendations; reads prior results only."""
    unit_costs = resolve_costs(costs)
    recommendations: list[TopologyRecommendation] = []

    spofs = redundancy.single_points_of_failure
    for spof in spofs:
        recommendations.append(TopologyRecommendation(
            type=RecommendationType.ADD_REDUNDANCY,
            element_id=spof.element_id,
            description=(
                f"Add redundant path for {spof.element_type} '{spof.element_id}' "
                f"(isolates {len(spof.isolated_buses)} bus(es), {spof.isolated_load_mw:.2f} MW load)"
            ),
            priority=Priority.HIGH,
            estimated_cost=unit_costs[RecommendationType.ADD_REDUNDANCY],
            benefit_description="Eliminates single point of failure",
        ))

    violations: list[VoltageViolation] = []
    overloads: list[OverloadedBranch] = []
    if load_flow is not None and load_flow.converged:
        if load_flow.voltage_profile is not None:
            violations = list(load_flow.voltage_profile.violations)
        for violation in violations:
            recommendations.append(TopologyRecommendation(
                type=RecommendationType.VOLTAGE_SUPPORT,
                element_id=violation.bus_id,
                description=(
                    f"Install voltage support at bus {violation.bus_id} "
                    f"({violation.voltage:.3f} pu, {violation.kind})"
                ),
                priority=Priority.HIGH if violation.severity == "critical" else Priority.MEDIUM,
                estimated_cost=unit_costs[RecommendationType.VOLTAGE_SUPPORT],
                benefit_description="Improves voltage profile",
            ))
        overloads = overloaded_branches(load_flow, settings)
        for overload in overloads:
            recommendations.append(TopologyRecommendation(
                type=RecommendationType.CAPACITY_UPGRADE,
                element_id=overload.element_id,
                description=f"Upgrade capacity of {overload.branch_id} ({overload.loading_pct:.1f}% loaded)",
                priority=Priority.MEDIUM,
                estimated_cost=unit_costs[RecommendationType.CAPACITY_UPGRADE],
                benefit_description="Reduces loading and losses",
            ))

    recommendations += _protection_recommendations(
        short_circuit, unit_costs[RecommendationType.PROTECTION_UPGRADE],
    )
    recommendations.sort(key=lambda r: (_PRIORITY_RANK[r.priority], -r.estimated_cost, r.element_id))

    redundancy_improvement = (1.0 - redundancy.redundancy_index) * 100.0
    loss_reduction = UPGRADE_LOSS_FRACTION * sum(max(o.losses_mw, 0.0) for o in overloads)
    cost_estimate = sum(r.estimated_cost for r in recommendations)

    logger.info(
        "Topology review: %d recommendation(s), estimated cost %.0f",
        len(recommendations), cost_estimate,
    )
    return TopologyOptimizationResult(
        recommendations=recommendations,
        redundancy_improvement=redundancy_improvement,
        loss_reduction=loss_reduction,
        cost_estimate=cost_estimate,
        single_points_of_failure=list(spofs),
        voltage_violations=violations,
        overloaded_branches=overloads,
        redundancy_index=redundancy.redundancy_index,
    )
