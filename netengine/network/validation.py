"""Structural and parameter validation, run before any solve.

Structural problems (ids, references, slack buses per island, zero
impedances) are collected and raised together as one ``TopologyError``;
out-of-range element parameters raise ``ParameterError``.
"""

from __future__ import annotations

import logging
from collections import Counter

from netengine.errors import ParameterError, TopologyError
from netengine.network.graph import find_islands
from netengine.network.network_model import BusType, ElectricalNetwork

logger = logging.getLogger(__name__)

_MIN_IMPEDANCE = 1e-12


def _duplicates(ids: list[str]) -> list[str]:
    return sorted(i for i, count in Counter(ids).items() if count > 1)


def structural_problems(network: ElectricalNetwork) -> list[str]:
    """Every structural problem found, in a stable order."""
    problems: list[str] = []
    if not network.buses:
        return ["network has no buses"]

    bus_ids = {b.id for b in network.buses}
    for dup in _duplicates([b.id for b in network.buses]):
        problems.append(f"duplicate bus id '{dup}'")

    element_ids = (
        [br.id for br in network.branches]
        + [tr.id for tr in network.transformers]
        + [ld.id for ld in network.loads]
        + [g.id for g in network.generators]
        + [d.id for d in network.protective_devices]
    )
    for dup in _duplicates(element_ids):
        problems.append(f"duplicate element id '{dup}'")

    for br in network.branches:
        for end in (br.from_bus, br.to_bus):
            if end not in bus_ids:
                problems.append(f"branch '{br.id}' references unknown bus '{end}'")
        if br.from_bus == br.to_bus:
            problems.append(f"branch '{br.id}' connects bus '{br.from_bus}' to itself")
        if br.in_service and abs(br.impedance) < _MIN_IMPEDANCE:
            problems.append(f"branch '{br.id}' has zero impedance")

    for tr in network.transformers:
        ends = [tr.primary_bus, tr.secondary_bus]
        if tr.is_three_winding:
            if not tr.tertiary_bus:
                problems.append(f"three-winding transformer '{tr.id}' has no tertiary bus")
            else:
                ends.append(tr.tertiary_bus)
        for end in ends:
            if end not in bus_ids:
                problems.append(f"transformer '{tr.id}' references unknown bus '{end}'")
        if len(set(ends)) != len(ends):
            problems.append(f"transformer '{tr.id}' connects a bus to itself")
        if tr.in_service and abs(tr.impedance) < _MIN_IMPEDANCE:
            problems.append(f"transformer '{tr.id}' has zero impedance")

    for ld in network.loads:
        if ld.bus_id not in bus_ids:
            problems.append(f"load '{ld.id}' references unknown bus '{ld.bus_id}'")
    for g in network.generators:
        if g.bus_id not in bus_ids:
            problems.append(f"generator '{g.id}' references unknown bus '{g.bus_id}'")

    protected = {br.id for br in network.branches} | {tr.id for tr in network.transformers}
    for dev in network.protective_devices:
        if dev.element_id not in protected:
            problems.append(
                f"protective device '{dev.id}' references unknown element '{dev.element_id}'"
            )
        if dev.bus_id is not None and dev.bus_id not in bus_ids:
            problems.append(f"protective device '{dev.id}' references unknown bus '{dev.bus_id}'")

    if problems:
        # Island analysis needs consistent references
        return problems

    slack_ids = {b.id for b in network.buses if b.bus_type == BusType.SLACK}
    if not slack_ids:
        problems.append("network has no slack bus")
        return problems

    for island in find_islands(network):
        slacks = [b for b in island if b in slack_ids]
        if not slacks:
            problems.append(f"island {sorted(island)} has no slack bus")
        elif len(slacks) > 1:
            problems.append(f"island {sorted(island)} has {len(slacks)} slack buses")
    return problems


def validate_parameters(network: ElectricalNetwork) -> None:
    for ld in network.loads:
        try:
            ld.model.validate()
        except ParameterError as exc:
            raise ParameterError(f"load '{ld.id}': {exc}") from exc

    for tr in network.transformers:
        connections = tr.connections
        expected = 3 if tr.is_three_winding else 2
        if len(connections) != expected:
            raise ParameterError(
                f"transformer '{tr.id}': vector group '{tr.vector_group}' "
                f"describes {len(connections)} windings, expected {expected}"
            )
        if tr.is_three_winding and (tr.impedance_pt is None or tr.impedance_st is None):
            raise ParameterError(
                f"three-winding transformer '{tr.id}' needs impedance_pt and impedance_st"
            )
        if not tr.tap_range.contains(tr.tap_position):
            raise ParameterError(
                f"transformer '{tr.id}': tap position {tr.tap_position} outside "
                f"[{tr.tap_range.min_position}, {tr.tap_range.max_position}]"
            )
        if tr.rated_mva <= 0:
            raise ParameterError(f"transformer '{tr.id}': rated_mva must be positive")

    for g in network.generators:
        if g.rated_mva <= 0:
            raise ParameterError(f"generator '{g.id}': rated_mva must be positive")
        if g.q_min_mvar is not None and g.q_max_mvar is not None and g.q_min_mvar > g.q_max_mvar:
            raise ParameterError(f"generator '{g.id}': q_min_mvar exceeds q_max_mvar")

    for bus in network.buses:
        if bus.nominal_voltage_kv <= 0:
            raise ParameterError(f"bus '{bus.id}': nominal voltage must be positive")

    if network.base_values.base_mva <= 0:
        raise ParameterError("base_mva must be positive")


def validate_network(network: ElectricalNetwork) -> None:
    """Fail fast on an unusable network.

    Raises:
        TopologyError: listing every structural problem found.
        ParameterError: on the first out-of-range element parameter.
    """
    problems = structural_problems(network)
    if problems:
        logger.warning("Network validation failed: %d problem(s)", len(problems))
        raise TopologyError(problems)
    validate_parameters(network)
