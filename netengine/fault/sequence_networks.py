"""Positive, negative and zero-sequence networks.

Built from the same element data as the load-flow Y-bus, but with
sequence-specific models (IEC 60909 conventions):

- Transformer taps and phase shifts are ignored (nominal ratio).
- Synchronous machines: R + jX"d (positive), R + jX2 (negative),
  R + jX0 + 3Zn (zero, grounded machines only).
- Inverter-based sources: a current-limited source, modelled as the
  impedance 1/I_limit in the positive sequence and absent from the negative
  and zero sequences.
- Utility infeeds: impedance from the short-circuit level; zero sequence via
  the Z0/Z1 ratio when the source is grounded.
- Transformer zero sequence, per winding of the star equivalent:
    YN  → series path bus–star with Z_w + 3Zn
    Y   → open
    D   → star point shorted to reference through Z_w (traps zero sequence)

``order`` scales the networks to a harmonic frequency (series X·h, shunt
capacitive B·h, inductive B/h); ``include_loads`` adds linear loads as
parallel R–L shunts, as the harmonic solve needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from netengine.network.admittance import (
    AdmittanceAssembler,
    AdmittanceMatrix,
    at_harmonic,
    charging_at_harmonic,
    stamp_transformer,
    winding_impedances,
    WINDING_NAMES,
)
from netengine.network.network_model import (
    BusType,
    ElectricalNetwork,
    Generator,
    Transformer,
    WindingConnection,
)
from netengine.network.per_unit import source_impedance_pu
from netengine.network.phasor import INFINITE_IMPEDANCE

logger = logging.getLogger(__name__)

DEFAULT_GRID_IMPEDANCE = complex(0.001, 0.01)

# Zero-sequence impedance of a line without zero-sequence data, as a multiple
# of its positive-sequence impedance (harmonic studies only).
ASSUMED_Z0_Z1_RATIO = 3.0


class Sequence(str, Enum):
    ZERO = "zero"
    POSITIVE = "positive"
    NEGATIVE = "negative"


def sequence_for_order(order: int) -> Sequence:
    """Sequence a balanced harmonic of ``order`` travels in."""
    if order % 3 == 0:
        return Sequence.ZERO
    if order % 3 == 1:
        return Sequence.POSITIVE
    return Sequence.NEGATIVE


@dataclass
class SequenceNetwork:
    """One sequence network: admittance matrix plus its impedance matrix.

    Buses whose connected component has no path to the reference get an
    infinite Thevenin impedance and a zero column in ``impedance``.
    """
    sequence: Sequence
    order: int
    admittance: AdmittanceMatrix
    impedance: np.ndarray
    grounded: np.ndarray

    @property
    def bus_ids(self) -> list[str]:
        return self.admittance.bus_ids

    def index(self, bus_id: str) -> int:
        return self.admittance.index(bus_id)

    def thevenin(self, bus_id: str) -> complex:
        k = self.index(bus_id)
        if not self.grounded[k]:
            return INFINITE_IMPEDANCE
        return complex(self.impedance[k, k])

    def column(self, bus_id: str) -> np.ndarray:
        return self.impedance[:, self.index(bus_id)]

    def solve(self, injections: np.ndarray) -> np.ndarray:
        """Bus voltages for given current injections (Z·I per component)."""
        return self.impedance @ injections


def missing_zero_sequence_data(network: ElectricalNetwork) -> list[str]:
    """In-service branches without r0/x0."""
    return [br.id for br in network.active_branches if not br.has_zero_sequence_data]


def _generator_impedance(gen: Generator, sequence: Sequence, base_mva: float) -> complex | None:
    scale = base_mva / gen.rated_mva
    x = gen.reactances
    if gen.is_inverter_based:
        if sequence != Sequence.POSITIVE:
            return None
        return complex(0.0, 1.0 / gen.fault_current_limit_pu) * scale
    if sequence == Sequence.POSITIVE:
        return complex(x.ra, x.xdpp) * scale
    if sequence == Sequence.NEGATIVE:
        return complex(x.ra, x.x2) * scale
    if not gen.grounded:
        return None
    return complex(x.ra, x.x0) * scale + 3 * gen.grounding_impedance


def _stamp_sources(
    asm: AdmittanceAssembler,
    network: ElectricalNetwork,
    sequence: Sequence,
    order: int,
) -> None:
    base_mva = network.base_values.base_mva
    for bus in network.buses:
        i = asm.index(bus.id)
        gens = network.generators_at(bus.id)
        z = None
        if bus.sc_mva > 0:
            z = source_impedance_pu(bus.sc_mva, base_mva, bus.sc_x_r_ratio)
        elif bus.bus_type == BusType.SLACK and not gens:
            z = DEFAULT_GRID_IMPEDANCE
        if z is not None:
            if sequence == Sequence.ZERO:
                z = z * bus.sc_z0_z1_ratio if bus.source_grounded else None
            if z is not None:
                asm.add_shunt(i, 1.0 / at_harmonic(z, order), element_id=f"source:{bus.id}")

        for gen in gens:
            z_gen = _generator_impedance(gen, sequence, base_mva)
            if z_gen is not None:
                asm.add_shunt(i, 1.0 / at_harmonic(z_gen, order), element_id=gen.id)


def _stamp_transformer_zero(
    asm: AdmittanceAssembler,
    network: ElectricalNetwork,
    tr: Transformer,
    order: int,
) -> None:
    base_mva = network.base_values.base_mva
    scale = base_mva / tr.rated_mva
    if tr.is_three_winding:
        windings = winding_impedances(tr, base_mva)
        if tr.zero_sequence_impedance is not None:
            ratio = tr.zero_sequence_impedance / tr.impedance
            windings = [z * ratio for z in windings]
    else:
        z0 = (tr.zero_sequence_impedance or tr.impedance) * scale
        windings = [z0 / 2, z0 / 2]

    star = asm.add_internal_node()
    for k, (bus_id, connection) in enumerate(zip(tr.buses, tr.connections)):
        z_w = at_harmonic(windings[k], order)
        if connection == WindingConnection.WYE_GROUNDED:
            z_n = at_harmonic(tr.grounding_impedances[k], order)
            asm.add_series(
                tr.id, asm.index(bus_id), star, 1.0 / (z_w + 3 * z_n),
                label=f"{tr.id}/{WINDING_NAMES[k]}",
            )
        elif connection == WindingConnection.DELTA:
            asm.add_shunt(star, 1.0 / z_w)
        # Ungrounded wye: no zero-sequence path


def _stamp_loads(
    asm: AdmittanceAssembler,
    network: ElectricalNetwork,
    order: int,
) -> None:
    """Linear loads as parallel R–L shunts sized at nominal voltage."""
    base_mva = network.base_values.base_mva
    for ld in network.active_loads:
        if ld.is_nonlinear:
            continue
        p = ld.active_power_mw / base_mva
        q = ld.reactive_power_mvar / base_mva
        # R fixed, X_L = h·X_L(1)
        y = complex(p, -q / order)
        asm.add_shunt(asm.index(ld.bus_id), y)


def _grounded_buses(admittance: AdmittanceMatrix) -> tuple[np.ndarray, np.ndarray]:
    """Component labels of the bus nodes and whether each reaches the reference.

    Decided on the unreduced element graph (star points included): a bus is
    grounded only if its component holds a node with a shunt element.
    """
    n = admittance.n_bus
    n_all = max(admittance.n_nodes, n)
    edges = [(s.from_node, s.to_node) for s in admittance.stamps if s.to_node is not None]
    rows = [i for i, _ in edges] + list(range(n_all))
    cols = [j for _, j in edges] + list(range(n_all))
    graph = csr_matrix((np.ones(len(rows), dtype=np.int8), (rows, cols)), shape=(n_all, n_all))
    _, labels = connected_components(graph, directed=False)

    grounded_components = {labels[k] for k in admittance.shunt_nodes}
    grounded = np.array([labels[k] in grounded_components for k in range(n)], dtype=bool)
    return labels[:n], grounded


def _impedance_matrix(admittance: AdmittanceMatrix) -> tuple[np.ndarray, np.ndarray]:
    """Invert Y per grounded component; floating components keep a zero block."""
    y = admittance.matrix
    n = y.shape[0]
    z = np.zeros((n, n), dtype=complex)
    if n == 0:
        return z, np.zeros(0, dtype=bool)

    labels, grounded = _grounded_buses(admittance)
    for c in np.unique(labels[grounded]):
        members = np.flatnonzero((labels == c) & grounded)
        try:
            z[np.ix_(members, members)] = np.linalg.inv(y[np.ix_(members, members)])
        except np.linalg.LinAlgError:
            logger.warning("Singular admittance block for buses %s", [admittance.bus_ids[k] for k in members])
            grounded[members] = False
    return z, grounded


def build_sequence_network(
    network: ElectricalNetwork,
    sequence: Sequence,
    *,
    order: int = 1,
    include_loads: bool = False,
    include_shunts: bool = False,
) -> SequenceNetwork:
    """Build one sequence network.

    ``include_shunts`` adds line charging and fixed bus shunts; fault studies
    neglect them, harmonic studies keep them.
    """
    asm = AdmittanceAssembler(network.bus_ids)

    for br in network.active_branches:
        if sequence == Sequence.ZERO:
            z = br.zero_sequence_impedance
            if z is None:
                z = br.impedance * ASSUMED_Z0_Z1_RATIO
            b = br.b0 if br.b0 is not None else br.susceptance
        else:
            z = br.impedance
            b = br.susceptance
        charging = charging_at_harmonic(b, order) if include_shunts else 0j
        asm.add_series(
            br.id, asm.index(br.from_bus), asm.index(br.to_bus),
            1.0 / at_harmonic(z, order), charging=charging,
        )

    for tr in network.active_transformers:
        if sequence == Sequence.ZERO:
            _stamp_transformer_zero(asm, network, tr, order)
        else:
            stamp_transformer(asm, network, tr, with_taps=False, order=order)

    _stamp_sources(asm, network, sequence, order)

    if include_shunts and sequence != Sequence.ZERO:
        for bus in network.buses:
            if bus.shunt_admittance != 0:
                y_sh = complex(bus.shunt_conductance_pu, 0.0) + charging_at_harmonic(
                    bus.shunt_susceptance_pu, order,
                )
                asm.add_shunt(asm.index(bus.id), y_sh)

    if include_loads and sequence != Sequence.ZERO:
        _stamp_loads(asm, network, order)

    admittance = asm.build()
    impedance, grounded = _impedance_matrix(admittance)
    if not grounded.all():
        logger.debug(
            "%s-sequence network (h=%d): %d bus(es) without a ground path",
            sequence.value, order, int((~grounded).sum()),
        )
    return SequenceNetwork(
        sequence=sequence,
        order=order,
        admittance=admittance,
        impedance=impedance,
        grounded=grounded,
    )


def build_sequence_networks(
    network: ElectricalNetwork,
    *,
    include_zero: bool = True,
) -> dict[Sequence, SequenceNetwork]:
    """Fundamental-frequency networks for fault studies."""
    sequences = [Sequence.POSITIVE, Sequence.NEGATIVE]
    if include_zero:
        sequences.append(Sequence.ZERO)
    return {s: build_sequence_network(network, s) for s in sequences}
