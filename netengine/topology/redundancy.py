"""Single points of failure.

Every in-service branch, transformer and non-slack bus is taken out in turn;
anything that was reachable from a slack bus before the outage and is not
afterwards is isolated by it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from netengine.network.graph import reachable_buses
from netengine.network.network_model import BusType, ElectricalNetwork

logger = logging.getLogger(__name__)


@dataclass
class SinglePointOfFailure:
    element_id: str
    element_type: str  # line | cable | transformer | bus
    isolated_buses: list[str] = field(default_factory=list)
    isolated_load_mw: float = 0.0
    isolated_generation_mw: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "element_id": self.element_id,
            "element_type": self.element_type,
            "isolated_buses": list(self.isolated_buses),
            "isolated_load_mw": round(self.isolated_load_mw, 4),
            "isolated_generation_mw": round(self.isolated_generation_mw, 4),
        }


@dataclass
class RedundancyReport:
    elements_checked: int
    single_points_of_failure: list[SinglePointOfFailure] = field(default_factory=list)

    @property
    def redundancy_index(self) -> float:
        """Share of checked elements whose loss isolates nothing (0..1)."""
        if self.elements_checked == 0:
            return 1.0
        return 1.0 - len(self.single_points_of_failure) / self.elements_checked

    def to_dict(self) -> dict[str, Any]:
        return {
            "elements_checked": self.elements_checked,
            "redundancy_index": round(self.redundancy_index, 4),
            "single_points_of_failure": [s.to_dict() for s in self.single_points_of_failure],
        }


def _isolated_totals(network: ElectricalNetwork, bus_ids: list[str]) -> tuple[float, float]:
    buses = set(bus_ids)
    load = sum(ld.active_power_mw for ld in network.active_loads if ld.bus_id in buses)
    gen = sum(g.power_output_mw for g in network.active_generators if g.bus_id in buses)
    return load, gen


def find_single_points_of_failure(network: ElectricalNetwork) -> RedundancyReport:
    slack_ids = [b.id for b in network.slack_buses]
    baseline = reachable_buses(network, slack_ids)

    outages: list[tuple[str, str, list[str], list[str]]] = []
    for br in network.active_branches:
        outages.append((br.id, br.branch_type.value, [br.id], []))
    for tr in network.active_transformers:
        outages.append((tr.id, "transformer", [tr.id], []))
    for bus in network.buses:
        if bus.bus_type != BusType.SLACK:
            outages.append((bus.id, "bus", [], [bus.id]))

    report = RedundancyReport(elements_checked=len(outages))
    for element_id, element_type, elements, buses in outages:
        remaining = reachable_buses(network, slack_ids, elements, buses)
        isolated = [
            b.id for b in network.buses
            if b.id in baseline and b.id not in remaining and b.id not in buses
        ]
        if not isolated:
            continue
        load, gen = _isolated_totals(network, isolated)
        report.single_points_of_failure.append(SinglePointOfFailure(
            element_id=element_id,
            element_type=element_type,
            isolated_buses=isolated,
            isolated_load_mw=load,
            isolated_generation_mw=gen,
        ))

    logger.info(
        "Redundancy check: %d element(s), %d single point(s) of failure",
        report.elements_checked, len(report.single_points_of_failure),
    )
    return report
