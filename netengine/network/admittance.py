"""Bus admittance matrix (Y-bus) construction.

Every series element is stamped with the standard pi model. For a branch
with series admittance y, total charging susceptance B and complex tap
t = a·e^(jφ) on the from side:

    Y_ff += y/|t|² + jB/2
    Y_tt += y + jB/2
    Y_ft -= y/t*
    Y_tf -= y/t

Three-winding transformers use their star equivalent. The star point is an
internal node that is eliminated by Kron reduction, so the returned matrix is
always bus × bus; internal node voltages are recovered from bus voltages when
winding currents are needed.

The stamps themselves are kept so branch currents and flows can be computed
from bus voltages without re-deriving element admittances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.sparse import coo_matrix

from netengine.network.network_model import ElectricalNetwork, Transformer
from netengine.network.phasor import from_polar

logger = logging.getLogger(__name__)

WINDING_NAMES = ("primary", "secondary", "tertiary")

# Star-equivalent windings can come out as (near) zero impedance.
_MIN_WINDING_IMPEDANCE = complex(0.0, 1e-6)


@dataclass
class ElementStamp:
    """Two-port admittances of one stamped element.

    ``to_node`` is None for a shunt element (source, grounding) whose other
    terminal is the reference.
    """
    element_id: str
    label: str
    from_node: int
    to_node: int | None
    y_ff: complex
    y_ft: complex = 0j
    y_tf: complex = 0j
    y_tt: complex = 0j

    def currents(self, v_nodes: np.ndarray) -> tuple[complex, complex]:
        """Currents injected into the element at its from and to terminals."""
        vf = v_nodes[self.from_node]
        vt = v_nodes[self.to_node] if self.to_node is not None else 0j
        i_from = self.y_ff * vf + self.y_ft * vt
        i_to = self.y_tf * vf + self.y_tt * vt
        return complex(i_from), complex(i_to)


@dataclass
class AdmittanceMatrix:
    """Reduced bus admittance matrix with the stamps it was built from."""
    matrix: np.ndarray
    bus_ids: list[str]
    stamps: list[ElementStamp] = field(default_factory=list)
    shunt_totals: np.ndarray | None = None
    n_nodes: int = 0
    internal_nodes: list[int] = field(default_factory=list)
    recovery: np.ndarray | None = None  # V_internal = recovery @ V_bus
    # Bus and internal nodes with an element to the reference
    shunt_nodes: list[int] = field(default_factory=list)

    @property
    def n_bus(self) -> int:
        return len(self.bus_ids)

    def index(self, bus_id: str) -> int:
        return self.bus_ids.index(bus_id)

    def node_voltages(self, v_bus: np.ndarray) -> np.ndarray:
        """Bus voltages extended with the recovered internal node voltages."""
        v = np.zeros(max(self.n_nodes, self.n_bus), dtype=complex)
        v[: self.n_bus] = v_bus
        if self.internal_nodes and self.recovery is not None:
            v[self.internal_nodes] = self.recovery @ v_bus
        return v

    def stamp_currents(
        self, v_bus: np.ndarray, element_id: str | None = None,
    ) -> list[tuple[ElementStamp, complex, complex]]:
        v_nodes = self.node_voltages(v_bus)
        out = []
        for stamp in self.stamps:
            if element_id is not None and stamp.element_id != element_id:
                continue
            i_from, i_to = stamp.currents(v_nodes)
            out.append((stamp, i_from, i_to))
        return out

    def is_symmetric(self, tol: float = 1e-10) -> bool:
        return bool(np.allclose(self.matrix, self.matrix.T, atol=tol))


class AdmittanceAssembler:
    """Accumulates stamps, then assembles and Kron-reduces the matrix."""

    def __init__(self, bus_ids: list[str]):
        self.bus_ids = list(bus_ids)
        self._index = {b: i for i, b in enumerate(self.bus_ids)}
        self._n_nodes = len(self.bus_ids)
        self._rows: list[int] = []
        self._cols: list[int] = []
        self._vals: list[complex] = []
        self._shunts: dict[int, complex] = {}
        self.stamps: list[ElementStamp] = []

    def index(self, bus_id: str) -> int:
        return self._index[bus_id]

    def add_internal_node(self) -> int:
        node = self._n_nodes
        self._n_nodes += 1
        return node

    def _add(self, i: int, j: int, value: complex) -> None:
        self._rows.append(i)
        self._cols.append(j)
        self._vals.append(value)

    def add_series(
        self,
        element_id: str,
        i: int,
        j: int,
        y: complex,
        *,
        charging: complex = 0j,
        tap: complex = 1.0 + 0j,
        label: str | None = None,
    ) -> ElementStamp:
        """Pi-model stamp; ``charging`` is the total shunt admittance jB."""
        half = charging / 2
        stamp = ElementStamp(
            element_id=element_id,
            label=label or element_id,
            from_node=i,
            to_node=j,
            y_ff=y / (abs(tap) ** 2) + half,
            y_ft=-y / np.conj(tap),
            y_tf=-y / tap,
            y_tt=y + half,
        )
        self._add(i, i, stamp.y_ff)
        self._add(i, j, stamp.y_ft)
        self._add(j, i, stamp.y_tf)
        self._add(j, j, stamp.y_tt)
        if half:
            self._shunts[i] = self._shunts.get(i, 0j) + half
            self._shunts[j] = self._shunts.get(j, 0j) + half
        self.stamps.append(stamp)
        return stamp

    def add_shunt(self, i: int, y: complex, element_id: str | None = None) -> None:
        """Admittance from node ``i`` to the reference."""
        if y == 0:
            return
        self._add(i, i, y)
        self._shunts[i] = self._shunts.get(i, 0j) + y
        if element_id is not None:
            self.stamps.append(ElementStamp(
                element_id=element_id, label=element_id, from_node=i, to_node=None, y_ff=y,
            ))

    def build(self) -> AdmittanceMatrix:
        n_all = self._n_nodes
        n = len(self.bus_ids)
        full = coo_matrix(
            (np.array(self._vals, dtype=complex), (self._rows, self._cols)),
            shape=(n_all, n_all),
        ).toarray()

        shunt_totals = np.array([self._shunts.get(i, 0j) for i in range(n)], dtype=complex)
        shunt_nodes = sorted(k for k, y in self._shunts.items() if y != 0)
        if n_all == n:
            return AdmittanceMatrix(
                matrix=full, bus_ids=self.bus_ids, stamps=self.stamps,
                shunt_totals=shunt_totals, n_nodes=n_all, shunt_nodes=shunt_nodes,
            )

        # Internal nodes with no connection at all (e.g. an open zero-sequence
        # star point) are simply dropped.
        internal = [k for k in range(n, n_all) if np.any(np.abs(full[k, :]) > 0)]
        if not internal:
            return AdmittanceMatrix(
                matrix=full[:n, :n], bus_ids=self.bus_ids, stamps=self.stamps,
                shunt_totals=shunt_totals, n_nodes=n_all, shunt_nodes=shunt_nodes,
            )
        reduced, recovery = kron_reduce(full, list(range(n)), internal)
        return AdmittanceMatrix(
            matrix=reduced,
            bus_ids=self.bus_ids,
            stamps=self.stamps,
            shunt_totals=shunt_totals,
            n_nodes=n_all,
            internal_nodes=internal,
            recovery=recovery,
            shunt_nodes=shunt_nodes,
        )


def kron_reduce(
    y: np.ndarray, keep: list[int], eliminate: list[int],
) -> tuple[np.ndarray, np.ndarray]:
    """Eliminate nodes carrying no injection.

    Y_red = Y_kk - Y_ke · Y_ee⁻¹ · Y_ek, and V_e = -Y_ee⁻¹ · Y_ek · V_k.
    """
    y_kk = y[np.ix_(keep, keep)]
    y_ke = y[np.ix_(keep, eliminate)]
    y_ek = y[np.ix_(eliminate, keep)]
    y_ee = y[np.ix_(eliminate, eliminate)]
    recovery = -np.linalg.solve(y_ee, y_ek)
    return y_kk + y_ke @ recovery, recovery


def at_harmonic(z: complex, order: int) -> complex:
    """Series impedance at harmonic ``order``: inductive reactance scales with h."""
    if order == 1:
        return z
    return complex(z.real, z.imag * order)


def charging_at_harmonic(b: float, order: int) -> complex:
    """Shunt admittance jB at harmonic ``order``: capacitive B scales with h."""
    return complex(0.0, b * order if b > 0 else b / order)


def transformer_ratio(tr: Transformer, network: ElectricalNetwork, winding: int) -> float:
    """Off-nominal turns ratio of one winding: rated kV / bus base kV."""
    rated = tr.rated_voltages[winding]
    if not rated:
        return 1.0
    bus = network.get_bus(tr.buses[winding])
    return rated / network.base_values.bus_base_kv(bus)


def winding_impedances(tr: Transformer, base_mva: float) -> list[complex]:
    """Series impedances on the system base: [z] or the star equivalent [zp, zs, zt]."""
    scale = base_mva / tr.rated_mva
    if not tr.is_three_winding:
        return [tr.impedance * scale]
    z_ps = tr.impedance * scale
    z_pt = (tr.impedance_pt or tr.impedance) * scale
    z_st = (tr.impedance_st or tr.impedance) * scale
    star = [
        (z_ps + z_pt - z_st) / 2,
        (z_ps + z_st - z_pt) / 2,
        (z_pt + z_st - z_ps) / 2,
    ]
    return [z if abs(z) > abs(_MIN_WINDING_IMPEDANCE) else _MIN_WINDING_IMPEDANCE for z in star]


def stamp_transformer(
    asm: AdmittanceAssembler,
    network: ElectricalNetwork,
    tr: Transformer,
    *,
    with_taps: bool = True,
    order: int = 1,
) -> None:
    """Positive/negative-sequence stamp of a two- or three-winding transformer.

    With ``with_taps`` the nominal ratio mismatch, tap position and explicit
    phase shift go into the complex tap of the primary winding.
    """
    base_mva = network.base_values.base_mva
    impedances = winding_impedances(tr, base_mva)

    if not tr.is_three_winding:
        tap = 1.0 + 0j
        if with_taps:
            ratio = transformer_ratio(tr, network, 0) / transformer_ratio(tr, network, 1)
            tap = from_polar(ratio * tr.tap_factor, tr.phase_shift_deg)
        asm.add_series(
            tr.id,
            asm.index(tr.primary_bus),
            asm.index(tr.secondary_bus),
            1.0 / at_harmonic(impedances[0], order),
            tap=tap,
        )
        return

    star = asm.add_internal_node()
    for k, bus_id in enumerate(tr.buses):
        tap = 1.0 + 0j
        if with_taps:
            ratio = transformer_ratio(tr, network, k)
            if k == 0:
                tap = from_polar(ratio * tr.tap_factor, tr.phase_shift_deg)
            else:
                tap = complex(ratio, 0.0)
        asm.add_series(
            tr.id,
            asm.index(bus_id),
            star,
            1.0 / at_harmonic(impedances[k], order),
            tap=tap,
            label=f"{tr.id}/{WINDING_NAMES[k]}",
        )


def build_admittance_matrix(
    network: ElectricalNetwork,
    *,
    include_shunts: bool = True,
) -> AdmittanceMatrix:
    """Positive-sequence Y-bus used by the load flow.

    Includes line charging, transformer taps and phase shifts and, with
    ``include_shunts``, the fixed bus shunts. Loads and sources are not part
    of the matrix.
    """
    asm = AdmittanceAssembler(network.bus_ids)

    for br in network.active_branches:
        asm.add_series(
            br.id,
            asm.index(br.from_bus),
            asm.index(br.to_bus),
            br.admittance,
            charging=complex(0.0, br.susceptance),
            tap=br.tap,
        )

    for tr in network.active_transformers:
        stamp_transformer(asm, network, tr)

    if include_shunts:
        for bus in network.buses:
            asm.add_shunt(asm.index(bus.id), bus.shunt_admittance)

    y_bus = asm.build()
    logger.debug(
        "Y-bus built: %d buses, %d stamps, symmetric=%s",
        y_bus.n_bus, len(y_bus.stamps), y_bus.is_symmetric(),
    )
    return y_bus
