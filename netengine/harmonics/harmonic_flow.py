"""Harmonic load flow, distortion indices and IEEE-519 compliance.

For every harmonic order h the network is rebuilt at h·f₁ (series X·h,
capacitive B·h) in the sequence network the order travels in (h ≡ 1 mod 3
positive, h ≡ 2 negative, triplens zero). Linear loads are parallel R–L
shunts; nonlinear loads inject

    I_h = m_h · |I₁| · ∠(φ_h + h·∠I₁)

where I₁ is the load's fundamental current from the base-case load flow.
The harmonic network is linear, so V_h = Z_h · I_h per order, no iteration.

    THD_V = √(Σ|V_h|²) / |V₁| · 100
    TDD   = √(Σ|I_h|²) / I_L · 100      (I_L: maximum demand current)

System THD/TDD are taken at the point of common coupling (``pcc_bus_id``,
default the slack bus). The PCC current is the current leaving the PCC
towards the supply: through the sources at the PCC bus and through the
elements that join it to the rest of the supply side. Orders are solved
independently and aggregated in sorted order.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from netengine.cancellation import CancellationToken, check_cancelled
from netengine.fault.sequence_networks import (
    Sequence,
    build_sequence_network,
    sequence_for_order,
)
from netengine.loadflow.power_flow import solve_power_flow
from netengine.loadflow.results import LoadFlowResult
from netengine.network.admittance import AdmittanceMatrix, build_admittance_matrix
from netengine.network.graph import reachable_buses
from netengine.network.network_model import (
    AnalysisSettings,
    ElectricalNetwork,
    HarmonicComponent,
)
from netengine.network.phasor import angle_deg, from_polar, is_finite

logger = logging.getLogger(__name__)

SEVERITY_MAJOR_FACTOR = 1.5


@dataclass
class BusHarmonicResult:
    bus_id: str
    fundamental_voltage: float
    harmonics: list[HarmonicComponent] = field(default_factory=list)  # pu of fundamental
    thd: float = 0.0  # %
    tdd: float = 0.0  # %

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "fundamental_voltage": round(self.fundamental_voltage, 6),
            "harmonics": [_component_dict(c) for c in self.harmonics],
            "thd": round(self.thd, 4),
            "tdd": round(self.tdd, 4),
        }


@dataclass
class BranchHarmonicResult:
    branch_id: str
    element_id: str
    fundamental_current: float
    harmonics: list[HarmonicComponent] = field(default_factory=list)
    thd_current: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "element_id": self.element_id,
            "fundamental_current": round(self.fundamental_current, 6),
            "harmonics": [_component_dict(c) for c in self.harmonics],
            "thd_current": round(self.thd_current, 4),
        }


@dataclass
class IEEE519Violation:
    bus_id: str
    parameter: str  # voltage_thd | current_tdd | individual_voltage | individual_current
    value: float
    limit: float
    severity: str  # minor | major
    order: int | None = None


@dataclass
class IEEEComplianceCheck:
    ieee519_compliant: bool
    profile: str
    pcc_bus_id: str
    isc_il_ratio: float | None
    violations: list[IEEE519Violation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ieee519_compliant": self.ieee519_compliant,
            "profile": self.profile,
            "pcc_bus_id": self.pcc_bus_id,
            "isc_il_ratio": None if self.isc_il_ratio is None else round(self.isc_il_ratio, 3),
            "violations": [
                {
                    "bus_id": v.bus_id,
                    "parameter": v.parameter,
                    "order": v.order,
                    "value": round(v.value, 4),
                    "limit": v.limit,
                    "severity": v.severity,
                }
                for v in self.violations
            ],
        }


@dataclass
class HarmonicAnalysisResult:
    orders: list[int]
    bus_harmonics: list[BusHarmonicResult]
    branch_harmonics: list[BranchHarmonicResult]
    system_thd: float
    system_tdd: float
    compliance_check: IEEEComplianceCheck
    recommendations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failed_orders: list[int] = field(default_factory=list)

    def get_bus(self, bus_id: str) -> BusHarmonicResult:
        for b in self.bus_harmonics:
            if b.bus_id == bus_id:
                return b
        raise KeyError(bus_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders": list(self.orders),
            "bus_harmonics": [b.to_dict() for b in self.bus_harmonics],
            "branch_harmonics": [b.to_dict() for b in self.branch_harmonics],
            "system_thd": round(self.system_thd, 4),
            "system_tdd": round(self.system_tdd, 4),
            "compliance_check": self.compliance_check.to_dict(),
            "recommendations": list(self.recommendations),
            "warnings": list(self.warnings),
            "failed_orders": list(self.failed_orders),
        }


def _component_dict(c: HarmonicComponent) -> dict[str, Any]:
    return {"order": c.order, "magnitude": round(c.magnitude, 8), "angle_deg": round(c.angle_deg, 4)}


@dataclass
class _OrderSolution:
    order: int
    sequence: Sequence
    bus_voltages: np.ndarray
    bus_injections: np.ndarray
    branch_currents: dict[str, complex]
    pcc_current: complex
    failed: bool = False
    blocked_buses: list[str] = field(default_factory=list)


def _load_fundamental_currents(
    network: ElectricalNetwork, v1: np.ndarray,
) -> dict[str, complex]:
    """Fundamental current drawn by each load, I = conj(S / V)."""
    base_mva = network.base_values.base_mva
    idx = network.bus_index()
    currents = {}
    for ld in network.active_loads:
        v = v1[idx[ld.bus_id]]
        s = complex(ld.active_power_mw, ld.reactive_power_mvar) / base_mva
        currents[ld.id] = np.conj(s / v) if v != 0 else 0j
    return currents


def _supply_side(network: ElectricalNetwork, pcc_bus_id: str) -> tuple[frozenset[str], set[str]]:
    """Elements joining the PCC to the supply, and the buses behind the PCC.

    The supply side is what the slack buses reach with the PCC bus removed.
    A PCC that is itself the only source bus has no supply elements.
    """
    sources = [b.id for b in network.slack_buses]
    supply = reachable_buses(network, sources, exclude_buses=[pcc_bus_id])
    elements = frozenset(
        element_id
        for element_id, bus_ids in network.element_endpoints().items()
        if pcc_bus_id in bus_ids and any(b in supply for b in bus_ids if b != pcc_bus_id)
    )
    behind = {b.id for b in network.buses if b.id not in supply}
    return elements, behind


def _current_towards_supply(
    admittance: AdmittanceMatrix,
    v_bus: np.ndarray,
    pcc_row: int,
    supply_elements: frozenset[str],
) -> complex:
    """Current leaving the PCC bus into its sources and supply-side elements."""
    total = 0j
    for stamp, i_from, i_to in admittance.stamp_currents(v_bus):
        if stamp.to_node is None:
            if stamp.from_node == pcc_row:
                total += i_from
        elif stamp.element_id in supply_elements:
            if stamp.from_node == pcc_row:
                total += i_from
            elif stamp.to_node == pcc_row:
                total += i_to
    return total


def _solve_order(
    network: ElectricalNetwork,
    order: int,
    load_currents: dict[str, complex],
    pcc_bus_id: str,
    supply_elements: frozenset[str],
    cancel_token: CancellationToken | None,
) -> _OrderSolution:
    check_cancelled(cancel_token, f"harmonic order {order}")
    idx = network.bus_index()
    sequence = sequence_for_order(order)

    injections = np.zeros(network.n_bus, dtype=complex)
    for ld in network.active_loads:
        if not ld.is_nonlinear:
            continue
        comp = ld.harmonic_spectrum.component(order)
        if comp is None or comp.magnitude == 0:
            continue
        i1 = load_currents[ld.id]
        phase = comp.angle_deg + order * angle_deg(complex(i1))
        injections[idx[ld.bus_id]] += from_polar(comp.magnitude * abs(i1), phase)

    if not np.any(injections):
        return _OrderSolution(
            order, sequence, np.zeros(network.n_bus, dtype=complex), injections, {}, 0j,
        )

    try:
        net = build_sequence_network(
            network, sequence, order=order, include_loads=True, include_shunts=True,
        )
        v_h = net.solve(injections)
    except (np.linalg.LinAlgError, ZeroDivisionError) as exc:
        logger.warning("Harmonic order %d could not be solved: %s", order, exc)
        return _OrderSolution(
            order, sequence, np.zeros(network.n_bus, dtype=complex), injections, {}, 0j, failed=True,
        )
    if not np.all(np.isfinite(v_h)):
        logger.warning("Harmonic order %d produced non-finite voltages", order)
        return _OrderSolution(
            order, sequence, np.zeros(network.n_bus, dtype=complex), injections, {}, 0j, failed=True,
        )

    branch_currents = {
        stamp.label: i_from
        for stamp, i_from, _ in net.admittance.stamp_currents(v_h)
        if stamp.to_node is not None
    }
    pcc_current = _current_towards_supply(net.admittance, v_h, idx[pcc_bus_id], supply_elements)
    # Current injected where this sequence has no return path cannot flow
    blocked = [
        bus.id for i, bus in enumerate(network.buses) if injections[i] != 0 and not net.grounded[i]
    ]
    if blocked:
        logger.warning(
            "Harmonic order %d: no %s-sequence path at bus(es) %s", order, sequence.value, blocked,
        )

    logger.debug(
        "Harmonic order %d (%s sequence): max |V_h| %.3e pu",
        order, sequence.value, float(np.max(np.abs(v_h))),
    )
    return _OrderSolution(
        order, sequence, v_h, injections, branch_currents, pcc_current, blocked_buses=blocked,
    )


def _severity(value: float, limit: float) -> str:
    return "major" if value > SEVERITY_MAJOR_FACTOR * limit else "minor"


def _rss(values) -> float:
    return math.sqrt(sum(abs(v) ** 2 for v in values))


def calculate_harmonics(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    *,
    base_case: LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> HarmonicAnalysisResult:
    """Harmonic voltages/currents for every configured order and IEEE-519 checks."""
    orders = sorted(set(settings.harmonic_orders))
    limits = settings.harmonic_limits
    base_mva = network.base_values.base_mva
    warnings: list[str] = []

    if base_case is None:
        base_case = solve_power_flow(network, settings, cancel_token=cancel_token)
    if base_case.converged:
        v1 = base_case.voltage_vector(network)
    else:
        v1 = np.ones(network.n_bus, dtype=complex)
        message = f"Base-case load flow {base_case.status.value}; harmonic currents use 1.0 pu voltages"
        logger.warning(message)
        warnings.append(message)

    pcc_bus_id = settings.pcc_bus_id or network.slack_buses[0].id
    pcc_row = network.bus_index()[pcc_bus_id]
    load_currents = _load_fundamental_currents(network, v1)
    supply_elements, behind_pcc = _supply_side(network, pcc_bus_id)

    def run(order: int) -> _OrderSolution:
        return _solve_order(network, order, load_currents, pcc_bus_id, supply_elements, cancel_token)

    if settings.max_workers > 1 and len(orders) > 1:
        with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
            solutions = {s.order: s for s in pool.map(run, orders)}
    else:
        solutions = {h: run(h) for h in orders}

    ordered = [solutions[h] for h in orders]
    failed_orders = [s.order for s in ordered if s.failed]
    if failed_orders:
        warnings.append(f"Harmonic orders {failed_orders} could not be solved and were skipped")
    solved = [s for s in ordered if not s.failed]
    for s in solved:
        if s.blocked_buses:
            warnings.append(
                f"Harmonic order {s.order} has no {s.sequence.value}-sequence path at "
                f"bus(es) {s.blocked_buses}; its current cannot flow there"
            )

    # Demand currents per bus (TDD denominators)
    demand = np.zeros(network.n_bus)
    idx = network.bus_index()
    for ld in network.active_loads:
        i_l = ld.demand_current_pu if ld.demand_current_pu is not None else abs(load_currents[ld.id])
        demand[idx[ld.bus_id]] += i_l

    bus_results = []
    for i, bus in enumerate(network.buses):
        v_fund = abs(v1[i])
        components = [
            HarmonicComponent(
                order=s.order,
                magnitude=abs(s.bus_voltages[i]) / v_fund if v_fund else 0.0,
                angle_deg=angle_deg(complex(s.bus_voltages[i])),
            )
            for s in solved
        ]
        thd = _rss(c.magnitude for c in components) * 100.0
        i_dist = _rss(s.bus_injections[i] for s in solved)
        tdd = i_dist / demand[i] * 100.0 if demand[i] > 0 else 0.0
        bus_results.append(BusHarmonicResult(
            bus_id=bus.id, fundamental_voltage=v_fund, harmonics=components, thd=thd, tdd=tdd,
        ))

    fundamental_branch = {br.branch_id: abs(br.current_pu) for br in base_case.branch_results}
    labels = sorted({label for s in solved for label in s.branch_currents} | set(fundamental_branch))
    branch_results = []
    element_of = {br.branch_id: br.element_id for br in base_case.branch_results}
    for label in labels:
        i_fund = fundamental_branch.get(label, 0.0)
        currents = [(s.order, s.branch_currents.get(label, 0j)) for s in solved]
        components = [
            HarmonicComponent(
                order=h,
                magnitude=abs(c) / i_fund if i_fund > 1e-12 else 0.0,
                angle_deg=angle_deg(complex(c)),
            )
            for h, c in currents
        ]
        thd_i = _rss(c for _, c in currents) / i_fund * 100.0 if i_fund > 1e-12 else 0.0
        branch_results.append(BranchHarmonicResult(
            branch_id=label,
            element_id=element_of.get(label, label.split("/")[0]),
            fundamental_current=i_fund,
            harmonics=components,
            thd_current=thd_i,
        ))

    # PCC quantities
    system_thd = bus_results[pcc_row].thd
    i_l_pcc = 0.0
    if base_case.converged and abs(v1[pcc_row]) > 0:
        i_supply = _current_towards_supply(
            build_admittance_matrix(network), v1, pcc_row, supply_elements,
        )
        # Sources are not in the load-flow Y-bus; generation flows out of them
        pcc = base_case.get_bus(pcc_bus_id)
        s_gen = complex(pcc.p_generation_mw, pcc.q_generation_mvar) / base_mva
        i_l_pcc = float(abs(i_supply - np.conj(s_gen / v1[pcc_row])))
    if i_l_pcc <= 1e-12:
        i_l_pcc = float(sum(demand[idx[b]] for b in behind_pcc))
    pcc_currents = {s.order: s.pcc_current for s in solved}
    system_tdd = _rss(pcc_currents.values()) / i_l_pcc * 100.0 if i_l_pcc > 1e-12 else 0.0

    # Isc/IL from the fundamental positive-sequence Thevenin impedance
    isc_il = None
    z_th = build_sequence_network(network, Sequence.POSITIVE).thevenin(pcc_bus_id)
    if is_finite(z_th) and abs(z_th) > 0 and i_l_pcc > 1e-12:
        isc_il = abs(v1[pcc_row]) / abs(z_th) / i_l_pcc

    violations: list[IEEE519Violation] = []
    for bus, res in zip(network.buses, bus_results):
        v_limit = limits.voltage_limit(bus.nominal_voltage_kv)
        if res.thd > v_limit.thd_pct:
            violations.append(IEEE519Violation(
                bus.id, "voltage_thd", res.thd, v_limit.thd_pct, _severity(res.thd, v_limit.thd_pct),
            ))
        for c in res.harmonics:
            pct = c.magnitude * 100.0
            if pct > v_limit.individual_pct:
                violations.append(IEEE519Violation(
                    bus.id, "individual_voltage", pct, v_limit.individual_pct,
                    _severity(pct, v_limit.individual_pct), order=c.order,
                ))

    if isc_il is not None:
        row = limits.current_limit(isc_il)
        if system_tdd > row.tdd_pct:
            violations.append(IEEE519Violation(
                pcc_bus_id, "current_tdd", system_tdd, row.tdd_pct, _severity(system_tdd, row.tdd_pct),
            ))
        for h, current in sorted(pcc_currents.items()):
            limit = limits.individual_current_limit(h, isc_il)
            pct = abs(current) / i_l_pcc * 100.0
            if limit is not None and pct > limit:
                violations.append(IEEE519Violation(
                    pcc_bus_id, "individual_current", pct, limit, _severity(pct, limit), order=h,
                ))

    compliance = IEEEComplianceCheck(
        ieee519_compliant=not violations,
        profile=limits.name,
        pcc_bus_id=pcc_bus_id,
        isc_il_ratio=isc_il,
        violations=violations,
    )

    recommendations = _recommendations(violations, solved, bus_results)
    if failed_orders:
        recommendations.append(
            "Review network data near resonance: orders "
            f"{', '.join(str(h) for h in failed_orders)} could not be solved"
        )

    logger.info(
        "Harmonic analysis: %d order(s), system THD %.3f%%, TDD %.3f%%, compliant=%s",
        len(orders), system_thd, system_tdd, compliance.ieee519_compliant,
    )
    return HarmonicAnalysisResult(
        orders=orders,
        bus_harmonics=bus_results,
        branch_harmonics=branch_results,
        system_thd=system_thd,
        system_tdd=system_tdd,
        compliance_check=compliance,
        recommendations=recommendations,
        warnings=warnings,
        failed_orders=failed_orders,
    )


def _recommendations(
    violations: list[IEEE519Violation],
    solved: list[_OrderSolution],
    bus_results: list[BusHarmonicResult],
) -> list[str]:
    if not violations:
        return []
    recs: list[str] = []
    worst_bus = max(bus_results, key=lambda b: b.thd)
    if worst_bus.harmonics:
        dominant = max(worst_bus.harmonics, key=lambda c: c.magnitude)
        recs.append(
            f"Install a passive filter tuned near the {dominant.order}th harmonic at bus "
            f"'{worst_bus.bus_id}' (THD {worst_bus.thd:.2f}%)"
        )
    if any(s.sequence == Sequence.ZERO and np.any(s.bus_voltages) for s in solved):
        recs.append(
            "Triplen harmonics are present; a delta winding or zig-zag grounding "
            "transformer near the nonlinear loads will trap them"
        )
    if any(v.parameter in ("current_tdd", "individual_current") for v in violations):
        recs.append(
            "Current distortion at the PCC exceeds the Table 2 limits; consider active "
            "filtering or multi-pulse drives for the largest nonlinear loads"
        )
    return recs
