"""Voltage- and frequency-dependent load characteristics.

Each load is the ZIP composition

    S(V) = S₀ · f_freq · (p·|V|^k + i·|V| + z·|V|²)

with p + i + z = 1, k the voltage exponent of the constant-power share and
f_freq = (f / f_base)^kf. Loads are aggregated per bus into arrays so the
Newton-Raphson mismatch and Jacobian can be evaluated vectorized.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from netengine.network.network_model import ElectricalNetwork, LoadModel
from netengine.network.per_unit import power_to_pu


def frequency_factor(model: LoadModel, frequency_hz: float, base_hz: float) -> float:
    if not model.frequency_exponent or frequency_hz == base_hz:
        return 1.0
    return (frequency_hz / base_hz) ** model.frequency_exponent


def voltage_factor(model: LoadModel, v_mag: float) -> float:
    """Demand at |V| relative to the nominal demand."""
    p, i, z = model.fractions
    return p * v_mag ** model.voltage_exponent + i * v_mag + z * v_mag ** 2


@dataclass
class BusLoadCharacteristics:
    """Per-load arrays aggregated to buses by ``bus_rows``."""
    n_bus: int
    bus_rows: np.ndarray
    s_nominal: np.ndarray  # per-unit, frequency factor applied
    p_share: np.ndarray
    i_share: np.ndarray
    z_share: np.ndarray
    exponent: np.ndarray

    def demand(self, vm: np.ndarray) -> np.ndarray:
        """Complex demand per bus at bus voltage magnitudes ``vm``."""
        v = vm[self.bus_rows]
        per_load = self.s_nominal * (
            self.p_share * v ** self.exponent + self.i_share * v + self.z_share * v ** 2
        )
        return np.bincount(self.bus_rows, weights=per_load.real, minlength=self.n_bus) + 1j * (
            np.bincount(self.bus_rows, weights=per_load.imag, minlength=self.n_bus)
        )

    def demand_derivative(self, vm: np.ndarray) -> np.ndarray:
        """d(demand)/d|V| per bus, the load term of the Jacobian."""
        v = vm[self.bus_rows]
        with np.errstate(divide="ignore", invalid="ignore"):
            power_term = np.where(
                self.exponent != 0,
                self.p_share * self.exponent * v ** (self.exponent - 1),
                0.0,
            )
        per_load = self.s_nominal * (power_term + self.i_share + 2 * self.z_share * v)
        return np.bincount(self.bus_rows, weights=per_load.real, minlength=self.n_bus) + 1j * (
            np.bincount(self.bus_rows, weights=per_load.imag, minlength=self.n_bus)
        )


def bus_load_characteristics(
    network: ElectricalNetwork,
    frequency_hz: float | None = None,
) -> BusLoadCharacteristics:
    idx = network.bus_index()
    base = network.base_values
    f_op = frequency_hz or base.base_hz

    rows, s0, p, i, z, k = [], [], [], [], [], []
    for ld in network.active_loads:
        model = ld.model
        shares = model.fractions
        rows.append(idx[ld.bus_id])
        s0.append(
            power_to_pu(ld.active_power_mw, ld.reactive_power_mvar, base.base_mva)
            * frequency_factor(model, f_op, base.base_hz)
        )
        p.append(shares[0])
        i.append(shares[1])
        z.append(shares[2])
        k.append(model.voltage_exponent)

    return BusLoadCharacteristics(
        n_bus=network.n_bus,
        bus_rows=np.array(rows, dtype=int),
        s_nominal=np.array(s0, dtype=complex),
        p_share=np.array(p, dtype=float),
        i_share=np.array(i, dtype=float),
        z_share=np.array(z, dtype=float),
        exponent=np.array(k, dtype=float),
    )
