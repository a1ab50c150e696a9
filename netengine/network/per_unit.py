"""Per-unit system conversions per IEEE 399 (Brown Book).

Base quantities:
  S_base (MVA): system-wide, typically 100 MVA
  V_base (kV): per voltage zone (the nominal voltage of each bus)
  Z_base = V_base² / S_base  (Ω)
  I_base = S_base / (√3 × V_base)  (kA)
"""

from __future__ import annotations

import math


def z_base(v_base_kv: float, s_base_mva: float) -> float:
    """Base impedance in ohms: Z_base = V²/S."""
    return (v_base_kv ** 2) / s_base_mva


def i_base(v_base_kv: float, s_base_mva: float) -> float:
    """Base current in kA: I_base = S / (√3·V)."""
    return s_base_mva / (math.sqrt(3) * v_base_kv)


def ohm_to_pu(z_ohm: complex, v_base_kv: float, s_base_mva: float) -> complex:
    """Convert impedance from ohms to per-unit."""
    return z_ohm / z_base(v_base_kv, s_base_mva)


def rebase_impedance(
    z_pu: complex,
    s_old_mva: float,
    s_new_mva: float,
    v_old_kv: float | None = None,
    v_new_kv: float | None = None,
) -> complex:
    """Change the base of a per-unit impedance.

    Z_new = Z_old × (S_new / S_old) × (V_old / V_new)²
    """
    z = z_pu * (s_new_mva / s_old_mva)
    if v_old_kv and v_new_kv:
        z *= (v_old_kv / v_new_kv) ** 2
    return z


def impedance_from_pct(impedance_pct: float, x_r_ratio: float = 10.0) -> complex:
    """Split a nameplate %Z into R + jX using the X/R ratio (own base)."""
    z = impedance_pct / 100.0
    x = z * x_r_ratio / math.sqrt(1 + x_r_ratio ** 2)
    return complex(x / x_r_ratio, x)


def source_impedance_pu(
    sc_mva: float,
    s_base_mva: float,
    x_r_ratio: float = 10.0,
    v_pre_pu: float = 1.0,
) -> complex:
    """Utility source impedance from its short-circuit level.

    |Z_src| = V² · S_base / S_sc, split into R + jX by the X/R ratio.
    """
    z = (v_pre_pu ** 2) * s_base_mva / sc_mva
    x = z * x_r_ratio / math.sqrt(1 + x_r_ratio ** 2)
    return complex(x / x_r_ratio, x)


def cable_z_pu(
    r_ohm_per_km: float,
    x_ohm_per_km: float,
    length_km: float,
    v_base_kv: float,
    s_base_mva: float,
) -> complex:
    """Convert a cable's per-km impedance to per-unit on the system base."""
    z_ohm = complex(r_ohm_per_km * length_km, x_ohm_per_km * length_km)
    return ohm_to_pu(z_ohm, v_base_kv, s_base_mva)


def cable_b_pu(
    c_nf_per_km: float,
    length_km: float,
    v_base_kv: float,
    s_base_mva: float,
    frequency_hz: float,
) -> float:
    """Total charging susceptance of a cable in per-unit."""
    b_siemens = 2 * math.pi * frequency_hz * c_nf_per_km * 1e-9 * length_km
    return b_siemens * z_base(v_base_kv, s_base_mva)


def power_to_pu(p_mw: float, q_mvar: float, s_base_mva: float) -> complex:
    """Convert power (MW, MVAr) to per-unit complex power S = P + jQ."""
    return complex(p_mw, q_mvar) / s_base_mva


def pf_to_q(p_mw: float, power_factor: float) -> float:
    """Reactive power from active power and (lagging) power factor."""
    if power_factor >= 1.0:
        return 0.0
    return p_mw * math.sqrt(1.0 - power_factor ** 2) / power_factor
