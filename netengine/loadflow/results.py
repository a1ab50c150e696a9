"""Load-flow result types.

Results are independent values: they never point back into the network
they were computed from. Powers are in MW / MVAr / MVA, voltages and
currents in per-unit unless the field name says otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from netengine.network.network_model import ElectricalNetwork
from netengine.network.phasor import complex_to_dict

if TYPE_CHECKING:
    from netengine.harmonics.harmonic_flow import HarmonicAnalysisResult


class SolverStatus(str, Enum):
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    SINGULAR_JACOBIAN = "singular_jacobian"


@dataclass
class BusResult:
    bus_id: str
    bus_type: str
    voltage: complex
    voltage_magnitude: float
    voltage_angle_deg: float
    p_generation_mw: float
    q_generation_mvar: float
    p_load_mw: float
    q_load_mvar: float

    @property
    def p_net_mw(self) -> float:
        return self.p_generation_mw - self.p_load_mw

    @property
    def q_net_mvar(self) -> float:
        return self.q_generation_mvar - self.q_load_mvar

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "bus_type": self.bus_type,
            "voltage": complex_to_dict(self.voltage),
            "voltage_magnitude": round(self.voltage_magnitude, 6),
            "voltage_angle_deg": round(self.voltage_angle_deg, 4),
            "p_generation_mw": round(self.p_generation_mw, 6),
            "q_generation_mvar": round(self.q_generation_mvar, 6),
            "p_load_mw": round(self.p_load_mw, 6),
            "q_load_mvar": round(self.q_load_mvar, 6),
            "p_net_mw": round(self.p_net_mw, 6),
            "q_net_mvar": round(self.q_net_mvar, 6),
        }


@dataclass
class BranchResult:
    """Flow through one branch, transformer or transformer winding."""
    branch_id: str
    element_id: str
    element_type: str
    from_bus: str
    to_bus: str
    from_power_mva: complex
    to_power_mva: complex
    losses_mva: complex
    current_pu: complex
    current_ka: float
    loading_pct: float
    voltage_drop_magnitude: float
    voltage_drop_angle_deg: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "element_id": self.element_id,
            "element_type": self.element_type,
            "from_bus": self.from_bus,
            "to_bus": self.to_bus,
            "from_power_mva": complex_to_dict(self.from_power_mva),
            "to_power_mva": complex_to_dict(self.to_power_mva),
            "losses_mva": complex_to_dict(self.losses_mva),
            "current_pu": complex_to_dict(self.current_pu),
            "current_ka": round(self.current_ka, 6),
            "loading_pct": round(self.loading_pct, 2),
            "voltage_drop_magnitude": round(self.voltage_drop_magnitude, 6),
            "voltage_drop_angle_deg": round(self.voltage_drop_angle_deg, 4),
        }


@dataclass
class LossShare:
    element_id: str
    element_type: str
    losses_mva: complex
    percentage: float


@dataclass
class SystemLosses:
    active_mw: float
    reactive_mvar: float
    loss_percentage: float  # of total active generation
    distribution: list[LossShare] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_mw": round(self.active_mw, 6),
            "reactive_mvar": round(self.reactive_mvar, 6),
            "loss_percentage": round(self.loss_percentage, 4),
            "distribution": [
                {
                    "element_id": s.element_id,
                    "element_type": s.element_type,
                    "losses_mva": complex_to_dict(s.losses_mva),
                    "percentage": round(s.percentage, 4),
                }
                for s in self.distribution
            ],
        }


@dataclass
class VoltageViolation:
    bus_id: str
    voltage: float
    limit_min: float
    limit_max: float
    kind: str  # "low" | "high"
    severity: str  # "minor" | "major" | "critical"

    def to_dict(self) -> dict[str, Any]:
        return {
            "bus_id": self.bus_id,
            "voltage": round(self.voltage, 6),
            "limit": {"min": self.limit_min, "max": self.limit_max},
            "kind": self.kind,
            "severity": self.severity,
        }


@dataclass
class VoltageProfile:
    min_bus_id: str
    min_voltage: float
    max_bus_id: str
    max_voltage: float
    average_voltage: float
    voltage_spread: float
    violations: list[VoltageViolation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "minimum_voltage": {"bus_id": self.min_bus_id, "voltage": round(self.min_voltage, 6)},
            "maximum_voltage": {"bus_id": self.max_bus_id, "voltage": round(self.max_voltage, 6)},
            "average_voltage": round(self.average_voltage, 6),
            "voltage_spread": round(self.voltage_spread, 6),
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class PowerFlowSummary:
    total_generation: complex
    total_load: complex
    total_losses: complex
    swing_bus_power: complex
    power_balance: complex  # generation - load - losses, ~0 when converged

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_generation": complex_to_dict(self.total_generation),
            "total_load": complex_to_dict(self.total_load),
            "total_losses": complex_to_dict(self.total_losses),
            "swing_bus_power": complex_to_dict(self.swing_bus_power),
            "power_balance": complex_to_dict(self.power_balance, digits=9),
        }


@dataclass
class LoadFlowResult:
    """Complete load-flow outcome; non-convergence is reported, never raised."""
    converged: bool
    status: SolverStatus
    iterations: int
    max_mismatch: float
    bus_results: list[BusResult] = field(default_factory=list)
    branch_results: list[BranchResult] = field(default_factory=list)
    system_losses: SystemLosses | None = None
    voltage_profile: VoltageProfile | None = None
    power_flow: PowerFlowSummary | None = None
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    converted_to_pq: list[str] = field(default_factory=list)
    mismatch_history: list[float] = field(default_factory=list)
    # Filled when the settings ask for harmonics alongside the load flow
    harmonics: HarmonicAnalysisResult | None = None

    @property
    def voltages(self) -> dict[str, complex]:
        return {b.bus_id: b.voltage for b in self.bus_results}

    def voltage_vector(self, network: ElectricalNetwork) -> np.ndarray:
        """Solved voltages ordered as the network's buses (matrix order)."""
        voltages = self.voltages
        return np.array([voltages[b.id] for b in network.buses], dtype=complex)

    def get_bus(self, bus_id: str) -> BusResult:
        for b in self.bus_results:
            if b.bus_id == bus_id:
                return b
        raise KeyError(bus_id)

    def get_branch(self, branch_id: str) -> BranchResult:
        for br in self.branch_results:
            if br.branch_id == branch_id:
                return br
        raise KeyError(branch_id)

    def apply_to(self, network: ElectricalNetwork) -> None:
        """Write the solved voltages onto the network's buses (explicit opt-in)."""
        voltages = self.voltages
        for bus in network.buses:
            if bus.id in voltages:
                bus.voltage = voltages[bus.id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "converged": self.converged,
            "status": self.status.value,
            "iterations": self.iterations,
            "max_mismatch": self.max_mismatch,
            "bus_results": [b.to_dict() for b in self.bus_results],
            "branch_results": [br.to_dict() for br in self.branch_results],
            "system_losses": self.system_losses.to_dict() if self.system_losses else None,
            "voltage_profile": self.voltage_profile.to_dict() if self.voltage_profile else None,
            "power_flow": self.power_flow.to_dict() if self.power_flow else None,
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "converted_to_pq": list(self.converted_to_pq),
            "harmonics": self.harmonics.to_dict() if self.harmonics else None,
        }
