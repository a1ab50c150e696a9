"""IEEE-519 harmonic distortion limit profiles.

Limits are configuration, not constants baked into the solver: the harmonic
analysis receives a ``HarmonicLimitProfile`` through the analysis settings.
``IEEE519_2014`` reproduces the 2014 edition:

Table 1: voltage distortion at the PCC, by bus voltage class
    V ≤ 1 kV          individual 5.0 %   THD 8.0 %
    1 kV < V ≤ 69 kV  individual 3.0 %   THD 5.0 %
    69 < V ≤ 161 kV   individual 1.5 %   THD 2.5 %
    V > 161 kV        individual 1.0 %   THD 1.5 %

Table 2: current distortion (120 V to 69 kV) in % of IL, rows by Isc/IL,
bands by harmonic order [<11, 11–16, 17–22, 23–34, 35–50]. Even harmonics
are limited to 25 % of the odd-harmonic limit of their band.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

# Upper bounds (exclusive) of the harmonic-order bands of Table 2.
BAND_UPPER_ORDERS: tuple[int, ...] = (11, 17, 23, 35, 51)
BAND_LABELS: tuple[str, ...] = ("2-10", "11-16", "17-22", "23-34", "35-50")


def band_index(order: int) -> int | None:
    """Table-2 band of a harmonic order, None outside 2..50."""
    if order < 2 or order > 50:
        return None
    for i, upper in enumerate(BAND_UPPER_ORDERS):
        if order < upper:
            return i
    return None


@dataclass
class VoltageDistortionLimit:
    """Voltage limits for buses up to ``max_kv`` (inclusive)."""
    max_kv: float
    individual_pct: float
    thd_pct: float


@dataclass
class CurrentDistortionLimit:
    """Current limits for short-circuit ratios Isc/IL below ``max_isc_il``."""
    max_isc_il: float
    individual_pct: tuple[float, ...]
    tdd_pct: float


@dataclass
class HarmonicLimitProfile:
    """A complete set of voltage and current distortion limits."""
    name: str
    standard: str
    voltage_limits: list[VoltageDistortionLimit] = field(default_factory=list)
    current_limits: list[CurrentDistortionLimit] = field(default_factory=list)
    even_harmonic_factor: float = 0.25

    def voltage_limit(self, nominal_kv: float) -> VoltageDistortionLimit:
        for limit in sorted(self.voltage_limits, key=lambda lim: lim.max_kv):
            if nominal_kv <= limit.max_kv:
                return limit
        return max(self.voltage_limits, key=lambda lim: lim.max_kv)

    def current_limit(self, isc_il: float) -> CurrentDistortionLimit:
        for limit in sorted(self.current_limits, key=lambda lim: lim.max_isc_il):
            if isc_il < limit.max_isc_il:
                return limit
        return max(self.current_limits, key=lambda lim: lim.max_isc_il)

    def individual_current_limit(self, order: int, isc_il: float) -> float | None:
        """Limit for one current harmonic in % of IL, None if not evaluated."""
        band = band_index(order)
        if band is None:
            return None
        limit = self.current_limit(isc_il).individual_pct[band]
        if order % 2 == 0:
            limit *= self.even_harmonic_factor
        return limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "standard": self.standard,
            "voltage_limits": [
                {
                    "max_kv": None if math.isinf(v.max_kv) else v.max_kv,
                    "individual_pct": v.individual_pct,
                    "thd_pct": v.thd_pct,
                }
                for v in self.voltage_limits
            ],
            "current_limits": [
                {
                    "max_isc_il": None if math.isinf(c.max_isc_il) else c.max_isc_il,
                    "individual_pct": dict(zip(BAND_LABELS, c.individual_pct)),
                    "tdd_pct": c.tdd_pct,
                }
                for c in self.current_limits
            ],
            "even_harmonic_factor": self.even_harmonic_factor,
        }


IEEE519_2014 = HarmonicLimitProfile(
    name="IEEE 519-2014",
    standard="IEEE Std 519-2014 Tables 1 and 2",
    voltage_limits=[
        VoltageDistortionLimit(max_kv=1.0, individual_pct=5.0, thd_pct=8.0),
        VoltageDistortionLimit(max_kv=69.0, individual_pct=3.0, thd_pct=5.0),
        VoltageDistortionLimit(max_kv=161.0, individual_pct=1.5, thd_pct=2.5),
        VoltageDistortionLimit(max_kv=math.inf, individual_pct=1.0, thd_pct=1.5),
    ],
    current_limits=[
        CurrentDistortionLimit(20.0, (4.0, 2.0, 1.5, 0.6, 0.3), 5.0),
        CurrentDistortionLimit(50.0, (7.0, 3.5, 2.5, 1.0, 0.5), 8.0),
        CurrentDistortionLimit(100.0, (10.0, 4.5, 4.0, 1.5, 0.7), 12.0),
        CurrentDistortionLimit(1000.0, (12.0, 5.5, 5.0, 2.0, 1.0), 15.0),
        CurrentDistortionLimit(math.inf, (15.0, 7.0, 6.0, 2.5, 1.4), 20.0),
    ],
)

PROFILES: dict[str, HarmonicLimitProfile] = {
    "ieee519_2014": IEEE519_2014,
}


def get_profile(name: str) -> HarmonicLimitProfile:
    if name not in PROFILES:
        available = ", ".join(sorted(PROFILES.keys()))
        raise KeyError(f"Unknown harmonic limit profile '{name}'. Available: {available}")
    return PROFILES[name]


def list_profiles() -> list[dict[str, Any]]:
    return [
        {"key": key, "name": profile.name, "standard": profile.standard}
        for key, profile in PROFILES.items()
    ]


def build_custom_profile(config: dict[str, Any]) -> HarmonicLimitProfile:
    """Build a limit profile from a config dict; missing tables fall back to IEEE 519-2014.

    Example::

        {
            "name": "Utility X",
            "voltage_limits": [{"max_kv": 1.0, "individual_pct": 3, "thd_pct": 5}],
            "current_limits": [{"max_isc_il": null, "individual_pct": [4, 2, 1.5, 0.6, 0.3], "tdd_pct": 5}],
        }

    A ``null`` upper bound means "and above".
    """
    voltage = [
        VoltageDistortionLimit(
            max_kv=math.inf if v.get("max_kv") is None else float(v["max_kv"]),
            individual_pct=float(v["individual_pct"]),
            thd_pct=float(v["thd_pct"]),
        )
        for v in config.get("voltage_limits", [])
    ] or list(IEEE519_2014.voltage_limits)

    current = []
    for c in config.get("current_limits", []):
        individual = c["individual_pct"]
        if isinstance(individual, dict):
            individual = [individual[label] for label in BAND_LABELS]
        if len(individual) != len(BAND_LABELS):
            raise ValueError(
                f"current limit rows need {len(BAND_LABELS)} band values, got {len(individual)}"
            )
        current.append(CurrentDistortionLimit(
            max_isc_il=math.inf if c.get("max_isc_il") is None else float(c["max_isc_il"]),
            individual_pct=tuple(float(x) for x in individual),
            tdd_pct=float(c["tdd_pct"]),
        ))

    return HarmonicLimitProfile(
        name=config.get("name", "Custom"),
        standard=config.get("standard", "Custom Standard"),
        voltage_limits=voltage,
        current_limits=current or list(IEEE519_2014.current_limits),
        even_harmonic_factor=config.get("even_harmonic_factor", 0.25),
    )


def resolve_profile(
    value: HarmonicLimitProfile | str | dict[str, Any] | None,
) -> HarmonicLimitProfile:
    if value is None:
        return IEEE519_2014
    if isinstance(value, HarmonicLimitProfile):
        return value
    if isinstance(value, str):
        return get_profile(value)
    return build_custom_profile(value)
