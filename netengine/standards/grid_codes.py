"""Grid code compliance profiles.

Configurable voltage-band, thermal-loading and fault-level limits per
standard. Built-in profiles for IEC default, ANSI C84.1 and IEEE 1547, plus
custom profiles built from a config dict.

Each profile specifies:
- Voltage limits (normal and contingency)
- Thermal loading limit (% of rating) and an early-warning threshold
- Maximum fault level for switchgear without an explicit withstand rating

Load-flow reporting, N-1 contingency screening and the topology analyzer use
these profiles to decide what counts as a violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class VoltageLimits:
    """Voltage limits in per-unit."""
    normal_min: float = 0.95
    normal_max: float = 1.05
    contingency_min: float = 0.90
    contingency_max: float = 1.10

    def check_normal(self, v_pu: float) -> str | None:
        """Return violation type or None if within limits."""
        if v_pu < self.normal_min:
            return "low"
        if v_pu > self.normal_max:
            return "high"
        return None

    def check_contingency(self, v_pu: float) -> str | None:
        """Return violation type or None if within contingency limits."""
        if v_pu < self.contingency_min:
            return "low"
        if v_pu > self.contingency_max:
            return "high"
        return None


@dataclass
class FaultLevelLimits:
    """Fault level requirements."""
    max_fault_ka: float = 50.0  # switchgear withstand when none is specified


@dataclass
class GridCodeProfile:
    """Complete grid code compliance profile.

    Attributes:
        name: Human-readable profile name (e.g. "IEC Default")
        standard: Standard reference (e.g. "IEC 60038")
        voltage: Voltage limits for normal and contingency operation
        thermal_limit_pct: Maximum branch loading as % of thermal rating
        thermal_warning_pct: Loading above which a branch is reported as
            approaching its limit
        fault_level: Fault level requirements
        metadata: Additional standard-specific data
    """
    name: str
    standard: str
    voltage: VoltageLimits = field(default_factory=VoltageLimits)
    thermal_limit_pct: float = 100.0
    thermal_warning_pct: float = 80.0
    fault_level: FaultLevelLimits = field(default_factory=FaultLevelLimits)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize profile to a JSON-compatible dict."""
        return {
            "name": self.name,
            "standard": self.standard,
            "voltage_limits": {
                "normal": [self.voltage.normal_min, self.voltage.normal_max],
                "contingency": [self.voltage.contingency_min, self.voltage.contingency_max],
            },
            "thermal_limit_pct": self.thermal_limit_pct,
            "thermal_warning_pct": self.thermal_warning_pct,
            "fault_level": {"max_fault_ka": self.fault_level.max_fault_ka},
            "metadata": self.metadata,
        }


# ======================================================================
# Built-in profiles
# ======================================================================

IEC_DEFAULT = GridCodeProfile(
    name="IEC Default",
    standard="IEC 60038 / IEC 60909",
    voltage=VoltageLimits(
        normal_min=0.95, normal_max=1.05,
        contingency_min=0.90, contingency_max=1.10,
    ),
    thermal_limit_pct=100.0,
    fault_level=FaultLevelLimits(max_fault_ka=50.0),
)

ANSI_C84_1 = GridCodeProfile(
    name="ANSI C84.1",
    standard="ANSI C84.1-2020 (Range A normal, Range B contingency)",
    voltage=VoltageLimits(
        normal_min=0.95, normal_max=1.05,
        contingency_min=0.917, contingency_max=1.058,
    ),
    thermal_limit_pct=100.0,
    fault_level=FaultLevelLimits(max_fault_ka=65.0),
    metadata={
        "region": "North America",
        "notes": "Service voltage ranges; Range B applies to infrequent operating conditions.",
    },
)

IEEE_1547 = GridCodeProfile(
    name="IEEE 1547",
    standard="IEEE 1547-2018 (Interconnection of DER)",
    voltage=VoltageLimits(
        normal_min=0.95, normal_max=1.05,
        contingency_min=0.88, contingency_max=1.10,
    ),
    thermal_limit_pct=100.0,
    thermal_warning_pct=85.0,
    fault_level=FaultLevelLimits(max_fault_ka=65.0),
    metadata={
        "region": "North America",
        "notes": "IEEE 1547-2018 with amendments. Category II assumed.",
    },
)

# Profile registry
PROFILES: dict[str, GridCodeProfile] = {
    "iec_default": IEC_DEFAULT,
    "ansi_c84_1": ANSI_C84_1,
    "ieee_1547": IEEE_1547,
}


def get_profile(name: str) -> GridCodeProfile:
    """Get a built-in grid code profile by name.

    Raises:
        KeyError if profile name not found
    """
    if name not in PROFILES:
        available = ", ".join(sorted(PROFILES.keys()))
        raise KeyError(f"Unknown grid code profile '{name}'. Available: {available}")
    return PROFILES[name]


def list_profiles() -> list[dict[str, Any]]:
    """List all available grid code profiles with summary info."""
    return [
        {
            "key": key,
            "name": profile.name,
            "standard": profile.standard,
            "voltage_normal": [profile.voltage.normal_min, profile.voltage.normal_max],
            "thermal_limit_pct": profile.thermal_limit_pct,
        }
        for key, profile in PROFILES.items()
    ]


def build_custom_profile(config: dict[str, Any]) -> GridCodeProfile:
    """Build a custom grid code profile from a configuration dict.

    Args:
        config: Dictionary with optional keys:
            name, standard, voltage_limits, thermal_limit_pct,
            thermal_warning_pct, fault_level, metadata

    Returns:
        GridCodeProfile with custom settings (IEC defaults for unspecified fields)
    """
    vl = config.get("voltage_limits", {})
    normal = vl.get("normal", [0.95, 1.05])
    contingency = vl.get("contingency", [0.90, 1.10])
    fault = config.get("fault_level", {})

    return GridCodeProfile(
        name=config.get("name", "Custom"),
        standard=config.get("standard", "Custom Standard"),
        voltage=VoltageLimits(
            normal_min=normal[0], normal_max=normal[1],
            contingency_min=contingency[0], contingency_max=contingency[1],
        ),
        thermal_limit_pct=config.get("thermal_limit_pct", 100.0),
        thermal_warning_pct=config.get("thermal_warning_pct", 80.0),
        fault_level=FaultLevelLimits(max_fault_ka=fault.get("max_fault_ka", 50.0)),
        metadata=config.get("metadata", {}),
    )


def resolve_profile(value: GridCodeProfile | str | dict[str, Any] | None) -> GridCodeProfile:
    """Accept a profile, a registry key or a custom config dict."""
    if value is None:
        return IEC_DEFAULT
    if isinstance(value, GridCodeProfile):
        return value
    if isinstance(value, str):
        return get_profile(value)
    return build_custom_profile(value)
