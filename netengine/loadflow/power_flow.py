"""Newton-Raphson AC Power Flow Solver.

Implements full AC power flow following IEEE 399 methodology.
Supports slack, PV, and PQ bus types, voltage-dependent (ZIP) loads and
generator reactive limits.

The Jacobian is built vectorized from the complex derivatives

    dS/d|V| = diag(V)·conj(Y·diag(V/|V|)) + conj(diag(I))·diag(V/|V|)
    dS/dθ   = j·diag(V)·conj(diag(I) - Y·diag(V))

with the load's d S_load/d|V| added on the diagonal.

The network is never mutated: voltages live in solver-local arrays and are
returned in a new ``LoadFlowResult``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

import numpy as np

from netengine.cancellation import CancellationToken, check_cancelled
from netengine.loadflow.load_model import BusLoadCharacteristics, bus_load_characteristics
from netengine.loadflow.results import (
    BranchResult,
    BusResult,
    LoadFlowResult,
    LossShare,
    PowerFlowSummary,
    SolverStatus,
    SystemLosses,
    VoltageProfile,
    VoltageViolation,
)
from netengine.network.admittance import AdmittanceMatrix, build_admittance_matrix
from netengine.network.network_model import AnalysisSettings, BusType, ElectricalNetwork
from netengine.network.per_unit import i_base
from netengine.network.phasor import angle_deg

logger = logging.getLogger(__name__)

# Jacobians above this condition number are treated as singular.
_MAX_CONDITION = 1e12


def _gen_specification(network: ElectricalNetwork):
    """Per-bus generation setpoints (pu), voltage setpoints and Q limits."""
    n = network.n_bus
    base = network.base_values.base_mva
    idx = network.bus_index()
    s_gen = np.zeros(n, dtype=complex)
    v_set = np.array([abs(b.voltage) or 1.0 for b in network.buses])
    q_min = np.full(n, -np.inf)
    q_max = np.full(n, np.inf)
    has_setpoint = np.zeros(n, dtype=bool)
    q_min_sum = np.zeros(n)
    q_max_sum = np.zeros(n)
    q_limited = np.ones(n, dtype=bool)

    for g in network.active_generators:
        i = idx[g.bus_id]
        s_gen[i] += complex(g.power_output_mw, g.reactive_output_mvar) / base
        if not has_setpoint[i]:
            v_set[i] = g.voltage_setpoint_pu
            has_setpoint[i] = True
        if g.q_min_mvar is None or g.q_max_mvar is None:
            q_limited[i] = False
        else:
            q_min_sum[i] += g.q_min_mvar / base
            q_max_sum[i] += g.q_max_mvar / base

    for i in range(n):
        if has_setpoint[i] and q_limited[i]:
            q_min[i] = q_min_sum[i]
            q_max[i] = q_max_sum[i]
    return s_gen, v_set, q_min, q_max


def _initial_voltages(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    v_set: np.ndarray,
    warm_start: Mapping[str, complex] | LoadFlowResult | None,
) -> tuple[np.ndarray, np.ndarray]:
    n = network.n_bus
    if settings.flat_start and warm_start is None:
        vm = np.ones(n)
        va = np.zeros(n)
    else:
        stored = np.array([b.voltage for b in network.buses], dtype=complex)
        vm = np.where(np.abs(stored) > 0, np.abs(stored), 1.0)
        va = np.angle(stored)

    if warm_start is not None:
        voltages = warm_start.voltages if isinstance(warm_start, LoadFlowResult) else warm_start
        for i, bus in enumerate(network.buses):
            if bus.id in voltages and voltages[bus.id] != 0:
                vm[i] = abs(voltages[bus.id])
                va[i] = np.angle(voltages[bus.id])

    for i, bus in enumerate(network.buses):
        if bus.bus_type == BusType.SLACK:
            vm[i] = v_set[i]
            va[i] = np.angle(bus.voltage)
        elif bus.bus_type == BusType.PV:
            vm[i] = v_set[i]
    return vm, va


def _jacobian(
    y: np.ndarray,
    v: np.ndarray,
    load_derivative: np.ndarray,
    pvpq: np.ndarray,
    pq: np.ndarray,
) -> np.ndarray:
    i_bus = y @ v
    vnorm = v / np.abs(v)
    ds_dvm = np.diag(v) @ np.conj(y @ np.diag(vnorm)) + np.diag(np.conj(i_bus) * vnorm)
    ds_dva = 1j * np.diag(v) @ np.conj(np.diag(i_bus) - y @ np.diag(v))
    ds_dvm = ds_dvm + np.diag(load_derivative)

    j11 = ds_dva[np.ix_(pvpq, pvpq)].real
    j12 = ds_dvm[np.ix_(pvpq, pq)].real
    j21 = ds_dva[np.ix_(pq, pvpq)].imag
    j22 = ds_dvm[np.ix_(pq, pq)].imag
    return np.block([[j11, j12], [j21, j22]])


def solve_power_flow(
    network: ElectricalNetwork,
    settings: AnalysisSettings | None = None,
    warm_start: Mapping[str, complex] | LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> LoadFlowResult:
    """Solve AC power flow using Newton-Raphson method.

    Algorithm:
    1. Flat start (|V|=1, θ=0) unless a warm start is supplied; slack and PV
       magnitudes at their setpoints
    2. Compute ΔP at PV+PQ buses and ΔQ at PQ buses
    3. Stop when max(|ΔP|, |ΔQ|) < tolerance
    4. Solve J·[Δθ, Δ|V|] = [ΔP, ΔQ]
    5. Apply the correction scaled by the acceleration factor
    6. PV buses whose reactive demand leaves [Qmin, Qmax] are clamped and
       become PQ for the rest of the solve

    The network is assumed valid (see ``validate_network``).

    Args:
        network: network to solve (not modified)
        settings: effective analysis settings (defaults to the network's)
        warm_start: prior voltages by bus id, or a previous result
        cancel_token: checked once per iteration
    """
    settings = settings or network.analysis_settings
    n = network.n_bus
    base_mva = network.base_values.base_mva

    y_bus = build_admittance_matrix(network)
    y = y_bus.matrix
    loads = bus_load_characteristics(network, settings.operating_frequency_hz)
    s_gen, v_set, q_min, q_max = _gen_specification(network)

    bus_types = [b.bus_type for b in network.buses]
    slack = [i for i, t in enumerate(bus_types) if t == BusType.SLACK]
    pv = [i for i, t in enumerate(bus_types) if t == BusType.PV]
    pq = [i for i, t in enumerate(bus_types) if t == BusType.PQ]
    converted: list[int] = []

    vm, va = _initial_voltages(network, settings, v_set, warm_start)
    v = vm * np.exp(1j * va)

    status = SolverStatus.MAX_ITERATIONS
    iterations = 0
    max_mismatch = math.inf
    history: list[float] = []

    for iteration in range(settings.max_iterations + 1):
        check_cancelled(cancel_token, "load flow")

        s_calc = v * np.conj(y @ v)
        s_load = loads.demand(vm)

        if settings.enforce_q_limits and iteration > 0 and pv:
            q_needed = s_calc.imag + s_load.imag
            for i in list(pv):
                if q_needed[i] > q_max[i] or q_needed[i] < q_min[i]:
                    limit = q_max[i] if q_needed[i] > q_max[i] else q_min[i]
                    s_gen[i] = complex(s_gen[i].real, limit)
                    pv.remove(i)
                    pq.append(i)
                    converted.append(i)
                    logger.debug(
                        "Bus %s reached Q limit (%.4f pu), converted to PQ",
                        network.buses[i].id, limit,
                    )
            pq.sort()

        pvpq = np.array(sorted(pv + pq), dtype=int)
        pq_arr = np.array(pq, dtype=int)
        mis = s_gen - s_load - s_calc
        f = np.concatenate([mis.real[pvpq], mis.imag[pq_arr]])
        max_mismatch = float(np.max(np.abs(f))) if f.size else 0.0
        history.append(max_mismatch)
        logger.debug("NR iteration %d: max mismatch %.3e", iteration, max_mismatch)

        if max_mismatch < settings.convergence_tolerance:
            status = SolverStatus.CONVERGED
            iterations = iteration
            break
        if iteration == settings.max_iterations:
            iterations = iteration
            break

        jac = _jacobian(y, v, loads.demand_derivative(vm), pvpq, pq_arr)
        try:
            if np.linalg.cond(jac) > _MAX_CONDITION:
                raise np.linalg.LinAlgError("ill-conditioned Jacobian")
            dx = np.linalg.solve(jac, f)
        except np.linalg.LinAlgError:
            status = SolverStatus.SINGULAR_JACOBIAN
            iterations = iteration
            break

        step = settings.acceleration_factor * dx
        va[pvpq] += step[: len(pvpq)]
        vm[pq_arr] += step[len(pvpq):]
        v = vm * np.exp(1j * va)

    converged = status == SolverStatus.CONVERGED
    if converged:
        logger.info(
            "Load flow converged in %d iterations (max mismatch %.2e pu)",
            iterations, max_mismatch,
        )
    else:
        logger.warning(
            "Load flow did not converge: %s after %d iterations (max mismatch %.2e pu)",
            status.value, iterations, max_mismatch,
        )

    final_types = {i: BusType.PQ for i in converted}
    return _build_result(
        network,
        settings,
        y_bus,
        loads,
        v,
        s_gen,
        slack,
        pv,
        final_types,
        status=status,
        iterations=iterations,
        max_mismatch=max_mismatch,
        history=history,
        base_mva=base_mva,
    )


def _voltage_severity(deviation: float) -> str:
    if deviation <= 0.02:
        return "minor"
    if deviation <= 0.05:
        return "major"
    return "critical"


def _build_result(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    y_bus: AdmittanceMatrix,
    loads: BusLoadCharacteristics,
    v: np.ndarray,
    s_gen: np.ndarray,
    slack: list[int],
    pv: list[int],
    final_types: dict[int, BusType],
    *,
    status: SolverStatus,
    iterations: int,
    max_mismatch: float,
    history: list[float],
    base_mva: float,
) -> LoadFlowResult:
    """Bus, branch, loss, profile and summary reporting from solved voltages."""
    vm = np.abs(v)
    s_inj = v * np.conj(y_bus.matrix @ v)
    s_load = loads.demand(vm)

    # Generation: solved at slack buses, P specified / Q solved at PV buses,
    # specified elsewhere.
    gen = s_gen.copy()
    for i in slack:
        gen[i] = s_inj[i] + s_load[i]
    for i in pv:
        gen[i] = complex(s_gen[i].real, (s_inj[i] + s_load[i]).imag)

    bus_results = []
    for i, bus in enumerate(network.buses):
        bus_results.append(BusResult(
            bus_id=bus.id,
            bus_type=final_types.get(i, bus.bus_type).value,
            voltage=complex(v[i]),
            voltage_magnitude=float(vm[i]),
            voltage_angle_deg=angle_deg(complex(v[i])),
            p_generation_mw=float(gen[i].real * base_mva),
            q_generation_mvar=float(gen[i].imag * base_mva),
            p_load_mw=float(s_load[i].real * base_mva),
            q_load_mvar=float(s_load[i].imag * base_mva),
        ))

    grid_code = settings.grid_code
    warnings: list[str] = []
    recommendations: list[str] = []

    # Branch flows from the stamps
    ratings: dict[str, tuple[str, float]] = {}
    for br in network.active_branches:
        ratings[br.id] = (br.branch_type.value, br.rating_mva)
    for tr in network.active_transformers:
        ratings[tr.id] = ("transformer", tr.rated_mva)

    bus_kv = [network.base_values.bus_base_kv(b) for b in network.buses]
    node_names = list(network.bus_ids)
    v_nodes = y_bus.node_voltages(v)

    branch_results: list[BranchResult] = []
    loss_by_element: dict[str, complex] = {}
    for stamp, i_from, i_to in y_bus.stamp_currents(v):
        if stamp.to_node is None:
            continue
        element_type, rating_mva = ratings.get(stamp.element_id, ("line", 0.0))
        vf = v_nodes[stamp.from_node]
        vt = v_nodes[stamp.to_node]
        s_from = vf * np.conj(i_from) * base_mva
        s_to = vt * np.conj(i_to) * base_mva
        losses = s_from + s_to
        loss_by_element[stamp.element_id] = loss_by_element.get(stamp.element_id, 0j) + losses

        kv = bus_kv[stamp.from_node]
        loading = 0.0
        if rating_mva > 0:
            loading = max(abs(i_from), abs(i_to)) / (rating_mva / base_mva) * 100.0
        drop = vf - vt
        to_name = (
            node_names[stamp.to_node] if stamp.to_node < len(node_names)
            else f"{stamp.element_id}:star"
        )
        branch_results.append(BranchResult(
            branch_id=stamp.label,
            element_id=stamp.element_id,
            element_type=element_type,
            from_bus=node_names[stamp.from_node],
            to_bus=to_name,
            from_power_mva=complex(s_from),
            to_power_mva=complex(s_to),
            losses_mva=complex(losses),
            current_pu=complex(i_from),
            current_ka=float(abs(i_from) * i_base(kv, base_mva)),
            loading_pct=float(loading),
            voltage_drop_magnitude=float(abs(drop)),
            voltage_drop_angle_deg=angle_deg(complex(drop)),
        ))

        if loading > grid_code.thermal_limit_pct:
            warnings.append(
                f"Branch '{stamp.label}' loaded at {loading:.1f}% "
                f"(limit {grid_code.thermal_limit_pct:.0f}%)"
            )
            recommendations.append(
                f"Upgrade '{stamp.element_id}' or redistribute load to relieve the overload"
            )
        elif loading > grid_code.thermal_warning_pct:
            warnings.append(f"Branch '{stamp.label}' approaching thermal limit ({loading:.1f}%)")

    # Fixed bus shunts consume (or supply) reactive power too
    distribution_items: list[tuple[str, str, complex]] = [
        (element_id, ratings.get(element_id, ("line", 0.0))[0], s)
        for element_id, s in loss_by_element.items()
    ]
    for i, bus in enumerate(network.buses):
        if bus.shunt_admittance != 0:
            s_shunt = vm[i] ** 2 * np.conj(bus.shunt_admittance) * base_mva
            distribution_items.append((bus.id, "shunt", complex(s_shunt)))

    total_losses = sum((s for _, _, s in distribution_items), 0j)
    total_gen = complex(gen.sum() * base_mva)
    total_load = complex(s_load.sum() * base_mva)
    p_loss = total_losses.real
    distribution = [
        LossShare(
            element_id=element_id,
            element_type=element_type,
            losses_mva=s,
            percentage=(s.real / p_loss * 100.0) if abs(p_loss) > 1e-12 else 0.0,
        )
        for element_id, element_type, s in sorted(
            distribution_items, key=lambda item: -item[2].real,
        )
    ]
    loss_pct = (p_loss / total_gen.real * 100.0) if abs(total_gen.real) > 1e-12 else 0.0
    system_losses = SystemLosses(
        active_mw=float(p_loss),
        reactive_mvar=float(total_losses.imag),
        loss_percentage=float(loss_pct),
        distribution=distribution,
    )

    # Voltage profile against the grid code band (per-bus overrides win)
    violations = []
    for i, bus in enumerate(network.buses):
        v_min = bus.v_min_pu if bus.v_min_pu is not None else grid_code.voltage.normal_min
        v_max = bus.v_max_pu if bus.v_max_pu is not None else grid_code.voltage.normal_max
        mag = float(vm[i])
        if mag < v_min:
            violations.append(VoltageViolation(
                bus.id, mag, v_min, v_max, "low", _voltage_severity(v_min - mag),
            ))
            warnings.append(f"Bus '{bus.id}' voltage {mag:.4f} pu below minimum {v_min:.3f} pu")
            recommendations.append(
                f"Add reactive compensation near bus '{bus.id}' or raise the upstream transformer tap"
            )
        elif mag > v_max:
            violations.append(VoltageViolation(
                bus.id, mag, v_min, v_max, "high", _voltage_severity(mag - v_max),
            ))
            warnings.append(f"Bus '{bus.id}' voltage {mag:.4f} pu above maximum {v_max:.3f} pu")
            recommendations.append(
                f"Reduce local generation or lower the transformer tap feeding bus '{bus.id}'"
            )

    i_min = int(np.argmin(vm))
    i_max = int(np.argmax(vm))
    profile = VoltageProfile(
        min_bus_id=network.buses[i_min].id,
        min_voltage=float(vm[i_min]),
        max_bus_id=network.buses[i_max].id,
        max_voltage=float(vm[i_max]),
        average_voltage=float(vm.mean()),
        voltage_spread=float(vm[i_max] - vm[i_min]),
        violations=violations,
    )

    swing = sum((gen[i] for i in slack), 0j) * base_mva
    summary = PowerFlowSummary(
        total_generation=total_gen,
        total_load=total_load,
        total_losses=total_losses,
        swing_bus_power=complex(swing),
        power_balance=total_gen - total_load - total_losses,
    )

    converted_ids = [network.buses[i].id for i in final_types]
    for bus_id in converted_ids:
        warnings.append(f"Generator bus '{bus_id}' hit its reactive power limit and was converted to PQ")

    if status == SolverStatus.MAX_ITERATIONS:
        warnings.insert(0, (
            f"Load flow did not converge after {iterations} iterations "
            f"(max mismatch {max_mismatch:.3e} pu)"
        ))
        recommendations.insert(0, (
            "Check network topology and component ratings; retry with a smaller "
            "acceleration factor or a warm start"
        ))
    elif status == SolverStatus.SINGULAR_JACOBIAN:
        warnings.insert(0, f"Jacobian became singular at iteration {iterations}")
        recommendations.insert(0, "Check for isolated buses, zero-impedance loops or missing voltage control")

    if loss_pct > 5.0:
        recommendations.append(
            f"System losses are {loss_pct:.1f}% of generation; consider conductor upgrades "
            "or reactive compensation close to the loads"
        )

    return LoadFlowResult(
        converged=status == SolverStatus.CONVERGED,
        status=status,
        iterations=iterations,
        max_mismatch=max_mismatch,
        bus_results=bus_results,
        branch_results=branch_results,
        system_losses=system_losses,
        voltage_profile=profile,
        power_flow=summary,
        warnings=warnings,
        recommendations=recommendations,
        converted_to_pq=converted_ids,
        mismatch_history=history,
    )
