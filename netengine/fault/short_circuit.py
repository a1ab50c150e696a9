"""Short-circuit analysis with symmetrical components (IEC 60909 conventions).

For a fault at bus k with pre-fault voltage Vf and fault impedance Zf, the
Thevenin impedances Z1, Z2, Z0 (diagonal entries of the sequence impedance
matrices) give the sequence fault currents:

  three phase              I1 = Vf / (Z1 + Zf)
  line to ground           I0 = I1 = I2 = Vf / (Z1 + Z2 + Z0 + 3Zf)
  line to line             I1 = −I2 = Vf / (Z1 + Z2 + Zf)
  line to line to ground   I1 = Vf / (Z1 + Z2 ∥ (Z0 + 3Zf))
                           I2 = −I1 (Z0 + 3Zf) / (Z2 + Z0 + 3Zf)
                           I0 = −I1 Z2 / (Z2 + Z0 + 3Zf)

Bus voltages follow by back-substitution:
  V1 = Vpre − Z1[:, k]·I1,  V2 = −Z2[:, k]·I2,  V0 = −Z0[:, k]·I0
and element currents from the sequence-network stamps.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from netengine.cancellation import CancellationToken, check_cancelled
from netengine.errors import ParameterError
from netengine.fault.protection import (
    EquipmentStress,
    ProtectionCoordination,
    evaluate_coordination,
    evaluate_equipment_stress,
)
from netengine.fault.sequence_networks import (
    Sequence,
    SequenceNetwork,
    build_sequence_networks,
    missing_zero_sequence_data,
)
from netengine.loadflow.power_flow import solve_power_flow
from netengine.loadflow.results import LoadFlowResult
from netengine.network.network_model import AnalysisSettings, ElectricalNetwork, FaultType
from netengine.network.per_unit import i_base
from netengine.network.phasor import (
    complex_to_dict,
    is_finite,
    sequence_to_phase,
)

logger = logging.getLogger(__name__)


@dataclass
class SequenceCurrents:
    zero: complex
    positive: complex
    negative: complex

    def phases(self) -> tuple[complex, complex, complex]:
        return sequence_to_phase(self.zero, self.positive, self.negative)


@dataclass
class BusVoltageResult:
    bus_id: str
    voltage: complex  # phase a, per-unit
    voltage_magnitude: float
    phase_magnitudes: tuple[float, float, float]
    sequence_voltages: tuple[complex, complex, complex]  # (V0, V1, V2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "voltage": complex_to_dict(self.voltage),
            "voltage_magnitude": round(self.voltage_magnitude, 6),
            "phase_magnitudes": [round(m, 6) for m in self.phase_magnitudes],
            "sequence_voltages": {
                "zero": complex_to_dict(self.sequence_voltages[0]),
                "positive": complex_to_dict(self.sequence_voltages[1]),
                "negative": complex_to_dict(self.sequence_voltages[2]),
            },
        }


@dataclass
class BranchCurrentResult:
    branch_id: str
    element_id: str
    from_bus: str
    current: complex  # phase a, kA
    current_magnitude: float  # highest phase, kA
    phase_currents_ka: tuple[float, float, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "element_id": self.element_id,
            "from_bus": self.from_bus,
            "current": complex_to_dict(self.current),
            "current_magnitude": round(self.current_magnitude, 6),
            "phase_currents_ka": [round(c, 6) for c in self.phase_currents_ka],
        }


@dataclass
class ShortCircuitResult:
    fault_bus_id: str
    fault_type: FaultType
    fault_current: complex  # faulted phase with the highest magnitude, kA
    fault_current_ka: float
    fault_current_pu: float
    fault_mva: float
    prefault_voltage: complex
    prefault_source: str  # "base_case" | "load_flow" | "flat"
    thevenin_impedances: dict[str, complex]
    sequence_currents: SequenceCurrents
    phase_currents_ka: tuple[float, float, float]
    bus_voltages: list[BusVoltageResult] = field(default_factory=list)
    branch_currents: list[BranchCurrentResult] = field(default_factory=list)
    source_contributions: dict[str, float] = field(default_factory=dict)
    protection_coordination: ProtectionCoordination = field(default_factory=ProtectionCoordination)
    equipment_stress: list[EquipmentStress] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def get_bus(self, bus_id: str) -> BusVoltageResult:
        for b in self.bus_voltages:
            if b.bus_id == bus_id:
                return b
        raise KeyError(bus_id)

    def get_branch(self, branch_id: str) -> BranchCurrentResult:
        for br in self.branch_currents:
            if br.branch_id == branch_id:
                return br
        raise KeyError(branch_id)

    def to_dict(self) -> dict[str, Any]:
        def z(value: complex) -> dict[str, float] | None:
            return complex_to_dict(value) if is_finite(value) else None

        return {
            "fault_bus_id": self.fault_bus_id,
            "fault_type": self.fault_type.value,
            "fault_current": complex_to_dict(self.fault_current),
            "fault_current_ka": round(self.fault_current_ka, 6),
            "fault_current_pu": round(self.fault_current_pu, 6),
            "fault_mva": round(self.fault_mva, 4),
            "prefault_voltage": complex_to_dict(self.prefault_voltage),
            "prefault_source": self.prefault_source,
            "thevenin_impedances": {k: z(v) for k, v in self.thevenin_impedances.items()},
            "sequence_currents": {
                "zero": complex_to_dict(self.sequence_currents.zero),
                "positive": complex_to_dict(self.sequence_currents.positive),
                "negative": complex_to_dict(self.sequence_currents.negative),
            },
            "phase_currents_ka": [round(c, 6) for c in self.phase_currents_ka],
            "bus_voltages": [b.to_dict() for b in self.bus_voltages],
            "branch_currents": [br.to_dict() for br in self.branch_currents],
            "source_contributions": {
                k: round(v, 6) for k, v in self.source_contributions.items()
            },
            "protection_coordination": self.protection_coordination.to_dict(),
            "equipment_stress": [s.to_dict() for s in self.equipment_stress],
            "warnings": list(self.warnings),
        }


def sequence_fault_currents(
    fault_type: FaultType,
    vf: complex,
    z1: complex,
    z2: complex,
    z0: complex,
    zf: complex = 0j,
) -> SequenceCurrents:
    """Closed-form sequence currents; infinite impedances are open circuits."""
    zero = SequenceCurrents(0j, 0j, 0j)
    if not is_finite(z1):
        return zero

    if fault_type == FaultType.THREE_PHASE:
        return SequenceCurrents(0j, vf / (z1 + zf), 0j)

    if fault_type == FaultType.LINE_TO_GROUND:
        if not (is_finite(z2) and is_finite(z0)):
            return zero
        i = vf / (z1 + z2 + z0 + 3 * zf)
        return SequenceCurrents(i, i, i)

    if fault_type == FaultType.LINE_TO_LINE:
        if not is_finite(z2):
            return zero
        i1 = vf / (z1 + z2 + zf)
        return SequenceCurrents(0j, i1, -i1)

    # Line to line to ground
    if not is_finite(z2):
        return zero
    if not is_finite(z0):
        i1 = vf / (z1 + z2)
        return SequenceCurrents(0j, i1, -i1)
    z0f = z0 + 3 * zf
    i1 = vf / (z1 + z2 * z0f / (z2 + z0f))
    return SequenceCurrents(
        zero=-i1 * z2 / (z2 + z0f),
        positive=i1,
        negative=-i1 * z0f / (z2 + z0f),
    )


def prefault_voltages(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    base_case: LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> tuple[np.ndarray, str, list[str]]:
    """Pre-fault bus voltages: converged base case, a fresh load flow, or flat."""
    warnings: list[str] = []
    flat = np.full(network.n_bus, settings.prefault_voltage_pu, dtype=complex)

    if base_case is None and settings.use_load_flow_prefault:
        base_case = solve_power_flow(network, settings, cancel_token=cancel_token)
        source = "load_flow"
    else:
        source = "base_case"

    if base_case is None:
        return flat, "flat", warnings
    if not base_case.converged:
        message = (
            f"Base-case load flow {base_case.status.value}; using flat "
            f"{settings.prefault_voltage_pu:.3f} pu pre-fault voltages"
        )
        logger.warning(message)
        warnings.append(message)
        return flat, "flat", warnings
    return base_case.voltage_vector(network), source, warnings


def analyze_fault(
    network: ElectricalNetwork,
    fault_bus_id: str,
    fault_type: FaultType,
    settings: AnalysisSettings,
    *,
    networks: dict[Sequence, SequenceNetwork],
    v_pre: np.ndarray,
    prefault_source: str = "flat",
    fault_impedance: complex = 0j,
) -> ShortCircuitResult:
    """Solve one fault on prepared sequence networks and pre-fault voltages."""
    base_mva = network.base_values.base_mva
    idx = network.bus_index()
    k = idx[fault_bus_id]
    fault_bus = network.buses[k]
    kv = network.base_values.bus_base_kv(fault_bus)

    pos = networks[Sequence.POSITIVE]
    neg = networks[Sequence.NEGATIVE]
    zer = networks.get(Sequence.ZERO)

    z1 = pos.thevenin(fault_bus_id)
    z2 = neg.thevenin(fault_bus_id)
    z0 = zer.thevenin(fault_bus_id) if zer is not None else complex(math.inf, 0.0)
    vf = complex(v_pre[k])

    seq = sequence_fault_currents(fault_type, vf, z1, z2, z0, fault_impedance)
    ia, ib, ic = seq.phases()
    phase_pu = (abs(ia), abs(ib), abs(ic))
    ibase = i_base(kv, base_mva)
    faulted = max((ia, ib, ic), key=abs)

    # Back-substitution
    v1 = v_pre - pos.column(fault_bus_id) * seq.positive
    v2 = -neg.column(fault_bus_id) * seq.negative
    v0 = -zer.column(fault_bus_id) * seq.zero if zer is not None else np.zeros(network.n_bus)

    bus_voltages = []
    for i, bus in enumerate(network.buses):
        va, vb, vc = sequence_to_phase(complex(v0[i]), complex(v1[i]), complex(v2[i]))
        bus_voltages.append(BusVoltageResult(
            bus_id=bus.id,
            voltage=va,
            voltage_magnitude=abs(va),
            phase_magnitudes=(abs(va), abs(vb), abs(vc)),
            sequence_voltages=(complex(v0[i]), complex(v1[i]), complex(v2[i])),
        ))

    # Element currents per sequence, combined per stamp label
    seq_voltages = {Sequence.POSITIVE: v1, Sequence.NEGATIVE: v2, Sequence.ZERO: v0}
    per_label: dict[str, dict[Sequence, complex]] = {}
    label_info: dict[str, tuple[str, int]] = {}
    sources: dict[str, dict[Sequence, complex]] = {}
    for sequence, net in networks.items():
        v_seq = seq_voltages[sequence]
        for stamp, i_from, _ in net.admittance.stamp_currents(v_seq):
            if stamp.to_node is None:
                continue
            per_label.setdefault(stamp.label, {})[sequence] = i_from
            label_info.setdefault(stamp.label, (stamp.element_id, stamp.from_node))
        # Source contributions are the fault-induced change: ΔI = −y·ΔV
        v_change = v_seq - v_pre if sequence == Sequence.POSITIVE else v_seq
        for stamp, i_from, _ in net.admittance.stamp_currents(v_change):
            if stamp.to_node is None:
                sources.setdefault(stamp.element_id, {})[sequence] = -i_from
                label_info.setdefault(stamp.element_id, (stamp.element_id, stamp.from_node))

    bus_kv = [network.base_values.bus_base_kv(b) for b in network.buses]
    branch_currents = []
    element_currents_ka: dict[str, float] = {}
    for label, currents in per_label.items():
        element_id, from_node = label_info[label]
        scale = i_base(bus_kv[from_node], base_mva)
        pa, pb, pc = sequence_to_phase(
            currents.get(Sequence.ZERO, 0j),
            currents.get(Sequence.POSITIVE, 0j),
            currents.get(Sequence.NEGATIVE, 0j),
        )
        mags = (abs(pa) * scale, abs(pb) * scale, abs(pc) * scale)
        branch_currents.append(BranchCurrentResult(
            branch_id=label,
            element_id=element_id,
            from_bus=network.buses[from_node].id,
            current=pa * scale,
            current_magnitude=max(mags),
            phase_currents_ka=mags,
        ))
        element_currents_ka[element_id] = max(element_currents_ka.get(element_id, 0.0), max(mags))

    source_contributions = {}
    for element_id, currents in sources.items():
        _, node = label_info[element_id]
        pa, pb, pc = sequence_to_phase(
            currents.get(Sequence.ZERO, 0j),
            currents.get(Sequence.POSITIVE, 0j),
            currents.get(Sequence.NEGATIVE, 0j),
        )
        source_contributions[element_id] = max(abs(pa), abs(pb), abs(pc)) * i_base(bus_kv[node], base_mva)

    fault_ka = max(phase_pu) * ibase
    coordination = evaluate_coordination(network, settings, element_currents_ka)
    stress = evaluate_equipment_stress(
        network, settings, fault_bus_id, fault_ka, element_currents_ka,
    )

    warnings = []
    if not is_finite(z1):
        warnings.append(f"Bus '{fault_bus_id}' has no source in the positive-sequence network")
    if fault_type.involves_ground and not is_finite(z0):
        warnings.append(
            f"No zero-sequence path at bus '{fault_bus_id}'; no ground current can flow"
        )
    for s in stress:
        if not s.within_rating:
            warnings.append(
                f"{s.equipment_type} '{s.equipment_id}' duty {s.current_ka:.2f} kA exceeds "
                f"rating {s.rating_ka:.2f} kA"
            )

    logger.debug(
        "Fault %s at %s: %.3f kA (%.3f pu)",
        fault_type.value, fault_bus_id, fault_ka, max(phase_pu),
    )
    return ShortCircuitResult(
        fault_bus_id=fault_bus_id,
        fault_type=fault_type,
        fault_current=faulted * ibase,
        fault_current_ka=fault_ka,
        fault_current_pu=max(phase_pu),
        fault_mva=math.sqrt(3) * kv * fault_ka,
        prefault_voltage=vf,
        prefault_source=prefault_source,
        thevenin_impedances={"positive": z1, "negative": z2, "zero": z0},
        sequence_currents=seq,
        phase_currents_ka=(phase_pu[0] * ibase, phase_pu[1] * ibase, phase_pu[2] * ibase),
        bus_voltages=bus_voltages,
        branch_currents=branch_currents,
        source_contributions=source_contributions,
        protection_coordination=coordination,
        equipment_stress=stress,
        warnings=warnings,
    )


def _check_request(
    network: ElectricalNetwork, fault_bus_id: str, fault_types: list[FaultType],
) -> None:
    if fault_bus_id not in network.bus_index():
        raise ParameterError(f"Fault bus '{fault_bus_id}' not found")
    if any(ft.involves_ground for ft in fault_types):
        missing = missing_zero_sequence_data(network)
        if missing:
            raise ParameterError(
                "Ground faults need zero-sequence data (r0/x0) on every in-service branch; "
                f"missing on: {', '.join(missing)}"
            )


def calculate_short_circuit(
    network: ElectricalNetwork,
    fault_bus_id: str,
    fault_type: FaultType | str,
    settings: AnalysisSettings,
    *,
    base_case: LoadFlowResult | None = None,
    fault_impedance: complex = 0j,
    cancel_token: CancellationToken | None = None,
) -> ShortCircuitResult:
    """Single fault at one bus.

    Raises:
        ParameterError: unknown fault type or bus, or a ground fault on a
            network without zero-sequence data.
    """
    try:
        fault_type = FaultType(fault_type)
    except ValueError as exc:
        raise ParameterError(f"Unknown fault type '{fault_type}'") from exc
    _check_request(network, fault_bus_id, [fault_type])

    networks = build_sequence_networks(network, include_zero=fault_type.involves_ground)
    v_pre, source, warnings = prefault_voltages(network, settings, base_case, cancel_token)
    check_cancelled(cancel_token, "short circuit")
    result = analyze_fault(
        network, fault_bus_id, fault_type, settings,
        networks=networks, v_pre=v_pre, prefault_source=source,
        fault_impedance=fault_impedance,
    )
    result.warnings[:0] = warnings
    logger.info(
        "Short circuit %s at %s: %.3f kA, %.1f MVA",
        fault_type.value, fault_bus_id, result.fault_current_ka, result.fault_mva,
    )
    return result


def calculate_fault_study(
    network: ElectricalNetwork,
    settings: AnalysisSettings,
    bus_ids: list[str] | None = None,
    fault_types: list[FaultType | str] | None = None,
    *,
    base_case: LoadFlowResult | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[ShortCircuitResult]:
    """Every fault type at every requested bus, sharing one set of sequence networks.

    Results are ordered by bus (network order) then fault type (settings order).
    """
    bus_ids = bus_ids or network.bus_ids
    try:
        types = [FaultType(ft) for ft in (fault_types or settings.short_circuit_types)]
    except ValueError as exc:
        raise ParameterError(str(exc)) from exc
    for bus_id in bus_ids:
        _check_request(network, bus_id, types)

    networks = build_sequence_networks(
        network, include_zero=any(ft.involves_ground for ft in types),
    )
    v_pre, source, warnings = prefault_voltages(network, settings, base_case, cancel_token)
    cases = [(bus_id, ft) for bus_id in bus_ids for ft in types]

    def run(case: tuple[str, FaultType]) -> ShortCircuitResult:
        bus_id, ft = case
        check_cancelled(cancel_token, "fault study")
        result = analyze_fault(
            network, bus_id, ft, settings,
            networks=networks, v_pre=v_pre, prefault_source=source,
        )
        result.warnings[:0] = warnings
        return result

    if settings.max_workers > 1 and len(cases) > 1:
        with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
            results = list(pool.map(run, cases))
    else:
        results = [run(case) for case in cases]

    logger.info("Fault study complete: %d case(s) on %d bus(es)", len(results), len(bus_ids))
    return results
