"""Network topology model.

Typed, id-keyed representation of an electrical network: buses, branches,
loads, generators, transformers and protective devices, plus the per-unit
base values and the analysis settings. Elements reference each other by
string id only; ``ElectricalNetwork`` owns the lookup tables.

Conventions (IEEE 399):
- Impedances of branches are per-unit on the system base.
- Transformer and generator impedances are per-unit on their own rating and
  are rebased by the matrix builders.
- Grounding impedances are per-unit on the system base.
"""

from __future__ import annotations

import dataclasses
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from netengine.errors import ParameterError
from netengine.network.per_unit import (
    cable_b_pu,
    cable_z_pu,
    impedance_from_pct,
    pf_to_q,
)
from netengine.network.phasor import from_polar, inverse, parse_complex, angle_deg
from netengine.standards.grid_codes import IEC_DEFAULT, GridCodeProfile
from netengine.standards.grid_codes import resolve_profile as resolve_grid_code
from netengine.standards.ieee519 import IEEE519_2014, HarmonicLimitProfile
from netengine.standards.ieee519 import resolve_profile as resolve_harmonic_limits


class BusType(str, Enum):
    SLACK = "slack"
    PV = "pv"
    PQ = "pq"


class BranchType(str, Enum):
    LINE = "line"
    CABLE = "cable"
    TRANSFORMER = "transformer"


class LoadType(str, Enum):
    CONSTANT_POWER = "constant_power"
    CONSTANT_CURRENT = "constant_current"
    CONSTANT_IMPEDANCE = "constant_impedance"
    COMPOSITE = "composite"


class GeneratorType(str, Enum):
    SYNCHRONOUS = "synchronous"
    INDUCTION = "induction"
    INVERTER = "inverter"
    PV = "pv"
    WIND = "wind"


class TransformerType(str, Enum):
    TWO_WINDING = "two_winding"
    THREE_WINDING = "three_winding"
    AUTO = "auto"


class WindingConnection(str, Enum):
    WYE_GROUNDED = "yn"
    WYE = "y"
    DELTA = "d"


class FaultType(str, Enum):
    THREE_PHASE = "three_phase"
    LINE_TO_GROUND = "line_to_ground"
    LINE_TO_LINE = "line_to_line"
    LINE_TO_LINE_TO_GROUND = "line_to_line_to_ground"

    @property
    def involves_ground(self) -> bool:
        return self in (FaultType.LINE_TO_GROUND, FaultType.LINE_TO_LINE_TO_GROUND)


class DeviceType(str, Enum):
    RELAY = "relay"
    BREAKER = "breaker"
    FUSE = "fuse"
    RECLOSER = "recloser"


class TripCurve(str, Enum):
    STANDARD_INVERSE = "standard_inverse"
    VERY_INVERSE = "very_inverse"
    EXTREMELY_INVERSE = "extremely_inverse"
    LONG_TIME_INVERSE = "long_time_inverse"
    DEFINITE_TIME = "definite_time"


INVERTER_BASED = frozenset({GeneratorType.INVERTER, GeneratorType.PV, GeneratorType.WIND})

DEFAULT_HARMONIC_ORDERS = [3, 5, 7, 9, 11, 13, 15, 17, 19, 21, 23, 25]


# ======================================================================
# Buses and branches
# ======================================================================

@dataclass
class Bus:
    """Single bus definition.

    ``voltage`` is the per-unit complex phasor: the slack setpoint for the
    slack bus, the stored solution (or warm-start value) for the others.
    """
    id: str
    bus_type: BusType = BusType.PQ
    nominal_voltage_kv: float = 1.0
    name: str = ""
    voltage: complex = 1.0 + 0j
    connected_elements: list[str] = field(default_factory=list)
    # Per-bus voltage band overriding the grid code profile
    v_min_pu: float | None = None
    v_max_pu: float | None = None
    # Fixed shunt (capacitor bank, reactor), per-unit on system base
    shunt_conductance_pu: float = 0.0
    shunt_susceptance_pu: float = 0.0
    # Utility infeed at source buses
    sc_mva: float = 0.0
    sc_x_r_ratio: float = 10.0
    sc_z0_z1_ratio: float = 1.0
    source_grounded: bool = True
    # Switchgear short-time withstand
    withstand_rating_ka: float | None = None

    @property
    def voltage_magnitude(self) -> float:
        return abs(self.voltage)

    @property
    def angle_deg(self) -> float:
        return angle_deg(self.voltage)

    @property
    def shunt_admittance(self) -> complex:
        return complex(self.shunt_conductance_pu, self.shunt_susceptance_pu)


@dataclass
class Branch:
    """Line, cable or simple tapped transformer between two buses."""
    id: str
    from_bus: str
    to_bus: str
    branch_type: BranchType = BranchType.LINE
    resistance: float = 0.0
    reactance: float = 0.0
    susceptance: float = 0.0  # total charging, split half per end
    rating_mva: float = 0.0
    name: str = ""
    length_km: float = 0.0
    tap_ratio: float = 1.0  # on the from side
    phase_shift_deg: float = 0.0
    # Zero-sequence data (fault studies)
    r0: float | None = None
    x0: float | None = None
    b0: float | None = None
    interrupting_rating_ka: float | None = None
    in_service: bool = True

    @property
    def impedance(self) -> complex:
        return complex(self.resistance, self.reactance)

    @property
    def admittance(self) -> complex:
        return inverse(self.impedance)

    @property
    def tap(self) -> complex:
        """Complex tap t = a·e^(jφ)."""
        return from_polar(self.tap_ratio, self.phase_shift_deg)

    @property
    def has_zero_sequence_data(self) -> bool:
        return self.r0 is not None or self.x0 is not None

    @property
    def zero_sequence_impedance(self) -> complex | None:
        if not self.has_zero_sequence_data:
            return None
        return complex(self.r0 or 0.0, self.x0 or 0.0)


# ======================================================================
# Loads
# ======================================================================

@dataclass
class LoadModel:
    """ZIP decomposition of a load.

    Fractions are percentages of the nominal demand and sum to 100.
    ``voltage_exponent`` applies to the constant-power share only
    (P ∝ |V|^k, 0 keeps it truly constant); ``frequency_exponent`` scales the
    whole load by (f / f_base)^k.
    """
    constant_power_pct: float = 100.0
    constant_current_pct: float = 0.0
    constant_impedance_pct: float = 0.0
    voltage_exponent: float = 0.0
    frequency_exponent: float = 0.0

    @property
    def fractions(self) -> tuple[float, float, float]:
        return (
            self.constant_power_pct / 100.0,
            self.constant_current_pct / 100.0,
            self.constant_impedance_pct / 100.0,
        )

    def validate(self) -> None:
        total = self.constant_power_pct + self.constant_current_pct + self.constant_impedance_pct
        if abs(total - 100.0) > 1e-6:
            raise ParameterError(f"load model fractions sum to {total:.3f}%, expected 100%")
        if min(self.constant_power_pct, self.constant_current_pct, self.constant_impedance_pct) < 0:
            raise ParameterError("load model fractions must be non-negative")

    @classmethod
    def for_load_type(cls, load_type: LoadType) -> LoadModel:
        if load_type == LoadType.CONSTANT_CURRENT:
            return cls(constant_power_pct=0.0, constant_current_pct=100.0)
        if load_type == LoadType.CONSTANT_IMPEDANCE:
            return cls(constant_power_pct=0.0, constant_impedance_pct=100.0)
        return cls()


@dataclass
class HarmonicComponent:
    order: int
    magnitude: float  # per-unit of the fundamental current
    angle_deg: float = 0.0


@dataclass
class HarmonicSpectrum:
    """Harmonic current spectrum of a nonlinear load."""
    components: list[HarmonicComponent] = field(default_factory=list)

    @property
    def orders(self) -> list[int]:
        return sorted(c.order for c in self.components if c.order > 1)

    def component(self, order: int) -> HarmonicComponent | None:
        for c in self.components:
            if c.order == order:
                return c
        return None

    @property
    def thd(self) -> float:
        """Current THD of the spectrum in percent."""
        return math.sqrt(sum(c.magnitude ** 2 for c in self.components if c.order > 1)) * 100.0


@dataclass
class Load:
    """Demand attached to one bus."""
    id: str
    bus_id: str
    active_power_mw: float = 0.0
    reactive_power_mvar: float = 0.0
    name: str = ""
    load_type: LoadType = LoadType.CONSTANT_POWER
    load_model: LoadModel | None = None
    harmonic_spectrum: HarmonicSpectrum | None = None
    demand_current_pu: float | None = None  # max demand current, TDD denominator
    in_service: bool = True

    @property
    def model(self) -> LoadModel:
        return self.load_model or LoadModel.for_load_type(self.load_type)

    @property
    def is_nonlinear(self) -> bool:
        return bool(self.harmonic_spectrum and self.harmonic_spectrum.orders)


# ======================================================================
# Sources
# ======================================================================

@dataclass
class GeneratorReactances:
    """Machine reactances, per-unit on the generator rating."""
    xd: float = 1.8
    xq: float = 1.7
    xdp: float = 0.3
    xqp: float = 0.55
    xdpp: float = 0.2
    xqpp: float = 0.2
    xl: float = 0.15
    ra: float = 0.0

    @property
    def x2(self) -> float:
        """Negative-sequence reactance (x"d + x"q) / 2."""
        return (self.xdpp + self.xqpp) / 2.0

    @property
    def x0(self) -> float:
        """Zero-sequence reactance, approximated by the leakage reactance."""
        return self.xl


@dataclass
class Generator:
    id: str
    bus_id: str
    generator_type: GeneratorType = GeneratorType.SYNCHRONOUS
    rated_mva: float = 100.0
    rated_voltage_kv: float | None = None
    power_output_mw: float = 0.0
    reactive_output_mvar: float = 0.0
    voltage_setpoint_pu: float = 1.0
    q_min_mvar: float | None = None
    q_max_mvar: float | None = None
    reactances: GeneratorReactances = field(default_factory=GeneratorReactances)
    grounded: bool = True
    grounding_impedance: complex = 0j
    fault_current_limit_pu: float = 1.2  # inverter-based sources, on rated current
    name: str = ""
    in_service: bool = True

    @property
    def is_inverter_based(self) -> bool:
        return self.generator_type in INVERTER_BASED


@dataclass
class TapRange:
    min_position: int = -10
    max_position: int = 10
    step_pct: float = 1.25

    def contains(self, position: int) -> bool:
        return self.min_position <= position <= self.max_position


_VECTOR_GROUP = re.compile(
    r"^(YN|Y|D)(yn|y|d)(\d{1,2})(?:(yn|y|d)(\d{1,2}))?$"
)


def parse_vector_group(vector_group: str) -> tuple[list[WindingConnection], list[int]]:
    """Parse IEC vector-group notation into winding connections and clock numbers.

    "Dyn11"   → [D, YN], [0, 11]
    "YNyn0d1" → [YN, YN, D], [0, 0, 1]
    """
    match = _VECTOR_GROUP.match(vector_group.strip())
    if not match:
        raise ParameterError(f"Unsupported vector group '{vector_group}'")
    hv, lv, lv_clock, tv, tv_clock = match.groups()
    connections = [WindingConnection(hv.lower()), WindingConnection(lv)]
    clocks = [0, int(lv_clock)]
    if tv:
        connections.append(WindingConnection(tv))
        clocks.append(int(tv_clock))
    return connections, clocks


@dataclass
class Transformer:
    """Two- or three-winding transformer.

    ``impedance`` is the primary-secondary short-circuit impedance on the
    transformer's own rating; three-winding units also give ``impedance_pt``
    and ``impedance_st``. Taps act on the primary winding.
    """
    id: str
    primary_bus: str
    secondary_bus: str
    tertiary_bus: str | None = None
    transformer_type: TransformerType = TransformerType.TWO_WINDING
    rated_mva: float = 1.0
    primary_voltage_kv: float | None = None
    secondary_voltage_kv: float | None = None
    tertiary_voltage_kv: float | None = None
    impedance: complex = complex(0.006, 0.06)
    impedance_pt: complex | None = None
    impedance_st: complex | None = None
    zero_sequence_impedance: complex | None = None  # defaults to ``impedance``
    vector_group: str = "Dyn11"
    primary_grounding_impedance: complex = 0j
    secondary_grounding_impedance: complex = 0j
    tertiary_grounding_impedance: complex = 0j
    tap_position: int = 0
    tap_range: TapRange = field(default_factory=TapRange)
    phase_shift_deg: float = 0.0
    name: str = ""
    in_service: bool = True

    @property
    def is_three_winding(self) -> bool:
        return self.transformer_type == TransformerType.THREE_WINDING

    @property
    def buses(self) -> list[str]:
        if self.is_three_winding and self.tertiary_bus:
            return [self.primary_bus, self.secondary_bus, self.tertiary_bus]
        return [self.primary_bus, self.secondary_bus]

    @property
    def connections(self) -> list[WindingConnection]:
        connections, _ = parse_vector_group(self.vector_group)
        return connections

    @property
    def grounding_impedances(self) -> list[complex]:
        return [
            self.primary_grounding_impedance,
            self.secondary_grounding_impedance,
            self.tertiary_grounding_impedance,
        ]

    @property
    def rated_voltages(self) -> list[float | None]:
        return [self.primary_voltage_kv, self.secondary_voltage_kv, self.tertiary_voltage_kv]

    @property
    def tap_factor(self) -> float:
        """Off-nominal ratio contributed by the tap changer."""
        return 1.0 + self.tap_position * self.tap_range.step_pct / 100.0


@dataclass
class ProtectiveDevice:
    """Relay, breaker, fuse or recloser protecting a branch or transformer."""
    id: str
    element_id: str
    device_type: DeviceType = DeviceType.RELAY
    curve: TripCurve = TripCurve.STANDARD_INVERSE
    pickup_current_a: float = 100.0
    time_multiplier: float = 0.1
    definite_time_s: float = 0.0
    instantaneous_pickup_a: float | None = None
    interrupting_rating_ka: float | None = None
    bus_id: str | None = None  # end of the element the device sits at
    name: str = ""
    in_service: bool = True


# ======================================================================
# Base values and settings
# ======================================================================

@dataclass
class BaseValues:
    """Per-unit system definition. Buses use their nominal kV as zone base."""
    base_mva: float = 100.0
    base_kv: float = 1.0
    base_hz: float = 60.0

    @property
    def base_impedance(self) -> float:
        return self.base_kv ** 2 / self.base_mva

    def bus_base_kv(self, bus: Bus) -> float:
        return bus.nominal_voltage_kv or self.base_kv


@dataclass
class AnalysisSettings:
    convergence_tolerance: float = 1e-6
    max_iterations: int = 30
    acceleration_factor: float = 1.0
    flat_start: bool = True
    enforce_q_limits: bool = True
    include_harmonics: bool = False
    harmonic_orders: list[int] = field(default_factory=lambda: list(DEFAULT_HARMONIC_ORDERS))
    short_circuit_types: list[FaultType] = field(default_factory=lambda: list(FaultType))
    grid_code: GridCodeProfile = field(default_factory=lambda: IEC_DEFAULT)
    harmonic_limits: HarmonicLimitProfile = field(default_factory=lambda: IEEE519_2014)
    coordination_margin_s: float = 0.3
    pcc_bus_id: str | None = None
    prefault_voltage_pu: float = 1.0
    use_load_flow_prefault: bool = True
    operating_frequency_hz: float | None = None
    max_workers: int = 1

    def validate(self) -> None:
        if self.convergence_tolerance <= 0:
            raise ParameterError("convergence_tolerance must be positive")
        if self.max_iterations < 1:
            raise ParameterError("max_iterations must be at least 1")
        if not 0 < self.acceleration_factor <= 2:
            raise ParameterError("acceleration_factor must be in (0, 2]")
        if any(h < 2 for h in self.harmonic_orders):
            raise ParameterError("harmonic orders must be integers >= 2")
        if self.coordination_margin_s < 0:
            raise ParameterError("coordination_margin_s must be non-negative")
        if self.prefault_voltage_pu <= 0:
            raise ParameterError("prefault_voltage_pu must be positive")
        if self.max_workers < 1:
            raise ParameterError("max_workers must be at least 1")

    def with_overrides(self, overrides: AnalysisSettings | dict[str, Any] | None) -> AnalysisSettings:
        """Merge per-call overrides; returns a new settings object."""
        if overrides is None:
            return self
        if isinstance(overrides, AnalysisSettings):
            return overrides
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ParameterError(f"Unknown analysis settings: {', '.join(sorted(unknown))}")
        return settings_from_dict(overrides, base=self)


def settings_from_dict(data: dict[str, Any], base: AnalysisSettings | None = None) -> AnalysisSettings:
    """Build settings from plain data, resolving profile keys and enum strings."""
    values = dict(data)
    try:
        if "grid_code" in values:
            values["grid_code"] = resolve_grid_code(values["grid_code"])
        if "harmonic_limits" in values:
            values["harmonic_limits"] = resolve_harmonic_limits(values["harmonic_limits"])
    except KeyError as exc:
        raise ParameterError(str(exc.args[0])) from exc
    if "short_circuit_types" in values:
        try:
            values["short_circuit_types"] = [FaultType(t) for t in values["short_circuit_types"]]
        except ValueError as exc:
            raise ParameterError(str(exc)) from exc
    if "harmonic_orders" in values:
        values["harmonic_orders"] = [int(h) for h in values["harmonic_orders"]]
    settings = dataclasses.replace(base or AnalysisSettings(), **values)
    settings.validate()
    return settings


# ======================================================================
# Aggregate root
# ======================================================================

@dataclass
class ElectricalNetwork:
    """Complete network; every cross reference is a string id."""
    buses: list[Bus] = field(default_factory=list)
    branches: list[Branch] = field(default_factory=list)
    loads: list[Load] = field(default_factory=list)
    generators: list[Generator] = field(default_factory=list)
    transformers: list[Transformer] = field(default_factory=list)
    protective_devices: list[ProtectiveDevice] = field(default_factory=list)
    base_values: BaseValues = field(default_factory=BaseValues)
    analysis_settings: AnalysisSettings = field(default_factory=AnalysisSettings)
    name: str = ""

    @property
    def n_bus(self) -> int:
        return len(self.buses)

    @property
    def bus_ids(self) -> list[str]:
        return [b.id for b in self.buses]

    def bus_index(self) -> dict[str, int]:
        """Bus id → matrix row/column."""
        return {bus.id: i for i, bus in enumerate(self.buses)}

    def get_bus(self, bus_id: str) -> Bus:
        for bus in self.buses:
            if bus.id == bus_id:
                return bus
        raise ParameterError(f"Bus '{bus_id}' not found")

    def get_branch(self, branch_id: str) -> Branch:
        for br in self.branches:
            if br.id == branch_id:
                return br
        raise ParameterError(f"Branch '{branch_id}' not found")

    def get_transformer(self, transformer_id: str) -> Transformer:
        for tr in self.transformers:
            if tr.id == transformer_id:
                return tr
        raise ParameterError(f"Transformer '{transformer_id}' not found")

    @property
    def slack_buses(self) -> list[Bus]:
        return [b for b in self.buses if b.bus_type == BusType.SLACK]

    @property
    def active_branches(self) -> list[Branch]:
        return [br for br in self.branches if br.in_service]

    @property
    def active_transformers(self) -> list[Transformer]:
        return [tr for tr in self.transformers if tr.in_service]

    @property
    def active_loads(self) -> list[Load]:
        return [ld for ld in self.loads if ld.in_service]

    @property
    def active_generators(self) -> list[Generator]:
        return [g for g in self.generators if g.in_service]

    def loads_at(self, bus_id: str) -> list[Load]:
        return [ld for ld in self.active_loads if ld.bus_id == bus_id]

    def generators_at(self, bus_id: str) -> list[Generator]:
        return [g for g in self.active_generators if g.bus_id == bus_id]

    def element_endpoints(self) -> dict[str, list[str]]:
        """Element id → bus ids it connects, for every in-service branch and transformer."""
        endpoints: dict[str, list[str]] = {}
        for br in self.active_branches:
            endpoints[br.id] = [br.from_bus, br.to_bus]
        for tr in self.active_transformers:
            endpoints[tr.id] = tr.buses
        return endpoints

    def link_elements(self) -> None:
        """Fill each bus's ``connected_elements`` from the element references."""
        index = {b.id: b for b in self.buses}
        for bus in self.buses:
            bus.connected_elements = []
        pairs: list[tuple[str, Iterable[str]]] = []
        pairs += [(br.id, (br.from_bus, br.to_bus)) for br in self.branches]
        pairs += [(tr.id, tr.buses) for tr in self.transformers]
        pairs += [(ld.id, (ld.bus_id,)) for ld in self.loads]
        pairs += [(g.id, (g.bus_id,)) for g in self.generators]
        for element_id, bus_ids in pairs:
            for bus_id in bus_ids:
                bus = index.get(bus_id)
                if bus is not None and element_id not in bus.connected_elements:
                    bus.connected_elements.append(element_id)


# ======================================================================
# Construction from plain data
# ======================================================================

def _enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ParameterError(str(exc)) from exc


def _optional_complex(value: Any) -> complex | None:
    return None if value is None else parse_complex(value)


def _parse_spectrum(data: Any) -> HarmonicSpectrum | None:
    """Accept a list of components or an ``{order: magnitude}`` mapping."""
    if not data:
        return None
    components = []
    if isinstance(data, dict):
        for order, magnitude in data.items():
            components.append(HarmonicComponent(order=int(order), magnitude=float(magnitude)))
    else:
        for c in data:
            magnitude = c.get("magnitude")
            if magnitude is None:
                magnitude = c.get("magnitude_pct", 0.0) / 100.0
            components.append(HarmonicComponent(
                order=int(c["order"]),
                magnitude=float(magnitude),
                angle_deg=float(c.get("angle_deg", 0.0)),
            ))
    return HarmonicSpectrum(components=components)


def _parse_branch(data: dict[str, Any], bus_kv: dict[str, float], base: BaseValues) -> Branch:
    length = float(data.get("length_km", 0.0))
    v_base = bus_kv.get(data["from_bus"], base.base_kv)
    if "r_ohm_per_km" in data or "x_ohm_per_km" in data:
        z = cable_z_pu(
            r_ohm_per_km=data.get("r_ohm_per_km", 0.0),
            x_ohm_per_km=data.get("x_ohm_per_km", 0.0),
            length_km=length,
            v_base_kv=v_base,
            s_base_mva=base.base_mva,
        )
        resistance, reactance = z.real, z.imag
    else:
        resistance = float(data.get("resistance", 0.0))
        reactance = float(data.get("reactance", 0.0))

    if "c_nf_per_km" in data:
        susceptance = cable_b_pu(data["c_nf_per_km"], length, v_base, base.base_mva, base.base_hz)
    else:
        susceptance = float(data.get("susceptance", 0.0))

    r0, x0 = data.get("r0"), data.get("x0")
    if "r0_ohm_per_km" in data or "x0_ohm_per_km" in data:
        z0 = cable_z_pu(
            data.get("r0_ohm_per_km", 0.0), data.get("x0_ohm_per_km", 0.0),
            length, v_base, base.base_mva,
        )
        r0, x0 = z0.real, z0.imag

    rating_mva = float(data.get("rating_mva", 0.0))
    ampacity = data.get("ampacity_a", 0.0)
    if not rating_mva and ampacity:
        rating_mva = math.sqrt(3) * v_base * ampacity / 1000.0

    return Branch(
        id=data["id"],
        name=data.get("name", data["id"]),
        from_bus=data["from_bus"],
        to_bus=data["to_bus"],
        branch_type=_enum(BranchType, data.get("branch_type"), BranchType.LINE),
        resistance=resistance,
        reactance=reactance,
        susceptance=susceptance,
        rating_mva=rating_mva,
        length_km=length,
        tap_ratio=float(data.get("tap_ratio", 1.0)),
        phase_shift_deg=float(data.get("phase_shift_deg", 0.0)),
        r0=r0,
        x0=x0,
        b0=data.get("b0"),
        interrupting_rating_ka=data.get("interrupting_rating_ka"),
        in_service=data.get("in_service", True),
    )


def _parse_transformer(data: dict[str, Any]) -> Transformer:
    if "impedance_pct" in data:
        impedance = impedance_from_pct(data["impedance_pct"], data.get("x_r_ratio", 10.0))
    else:
        impedance = parse_complex(data.get("impedance", complex(0.006, 0.06)))
    tap_range = data.get("tap_range") or {}
    return Transformer(
        id=data["id"],
        name=data.get("name", data["id"]),
        primary_bus=data["primary_bus"],
        secondary_bus=data["secondary_bus"],
        tertiary_bus=data.get("tertiary_bus"),
        transformer_type=_enum(
            TransformerType,
            data.get("transformer_type"),
            TransformerType.THREE_WINDING if data.get("tertiary_bus") else TransformerType.TWO_WINDING,
        ),
        rated_mva=float(data.get("rated_mva", 1.0)),
        primary_voltage_kv=data.get("primary_voltage_kv"),
        secondary_voltage_kv=data.get("secondary_voltage_kv"),
        tertiary_voltage_kv=data.get("tertiary_voltage_kv"),
        impedance=impedance,
        impedance_pt=_optional_complex(data.get("impedance_pt")),
        impedance_st=_optional_complex(data.get("impedance_st")),
        zero_sequence_impedance=_optional_complex(data.get("zero_sequence_impedance")),
        vector_group=data.get("vector_group", "Dyn11"),
        primary_grounding_impedance=parse_complex(data.get("primary_grounding_impedance")),
        secondary_grounding_impedance=parse_complex(data.get("secondary_grounding_impedance")),
        tertiary_grounding_impedance=parse_complex(data.get("tertiary_grounding_impedance")),
        tap_position=int(data.get("tap_position", 0)),
        tap_range=TapRange(**tap_range),
        phase_shift_deg=float(data.get("phase_shift_deg", 0.0)),
        in_service=data.get("in_service", True),
    )


def _parse_load(data: dict[str, Any]) -> Load:
    p_mw = float(data.get("active_power_mw", 0.0))
    if "reactive_power_mvar" in data:
        q_mvar = float(data["reactive_power_mvar"])
    else:
        q_mvar = pf_to_q(p_mw, float(data.get("power_factor", 1.0)))
    model_data = data.get("load_model")
    load_model = LoadModel(**model_data) if model_data else None
    return Load(
        id=data["id"],
        name=data.get("name", data["id"]),
        bus_id=data["bus_id"],
        active_power_mw=p_mw,
        reactive_power_mvar=q_mvar,
        load_type=_enum(LoadType, data.get("load_type"), LoadType.CONSTANT_POWER),
        load_model=load_model,
        harmonic_spectrum=_parse_spectrum(data.get("harmonic_spectrum")),
        demand_current_pu=data.get("demand_current_pu"),
        in_service=data.get("in_service", True),
    )


def _parse_generator(data: dict[str, Any]) -> Generator:
    return Generator(
        id=data["id"],
        name=data.get("name", data["id"]),
        bus_id=data["bus_id"],
        generator_type=_enum(GeneratorType, data.get("generator_type"), GeneratorType.SYNCHRONOUS),
        rated_mva=float(data.get("rated_mva", 100.0)),
        rated_voltage_kv=data.get("rated_voltage_kv"),
        power_output_mw=float(data.get("power_output_mw", 0.0)),
        reactive_output_mvar=float(data.get("reactive_output_mvar", 0.0)),
        voltage_setpoint_pu=float(data.get("voltage_setpoint_pu", 1.0)),
        q_min_mvar=data.get("q_min_mvar"),
        q_max_mvar=data.get("q_max_mvar"),
        reactances=GeneratorReactances(**(data.get("reactances") or {})),
        grounded=data.get("grounded", True),
        grounding_impedance=parse_complex(data.get("grounding_impedance")),
        fault_current_limit_pu=float(data.get("fault_current_limit_pu", 1.2)),
        in_service=data.get("in_service", True),
    )


def _parse_device(data: dict[str, Any]) -> ProtectiveDevice:
    return ProtectiveDevice(
        id=data["id"],
        name=data.get("name", data["id"]),
        element_id=data["element_id"],
        device_type=_enum(DeviceType, data.get("device_type"), DeviceType.RELAY),
        curve=_enum(TripCurve, data.get("curve"), TripCurve.STANDARD_INVERSE),
        pickup_current_a=float(data.get("pickup_current_a", 100.0)),
        time_multiplier=float(data.get("time_multiplier", 0.1)),
        definite_time_s=float(data.get("definite_time_s", 0.0)),
        instantaneous_pickup_a=data.get("instantaneous_pickup_a"),
        interrupting_rating_ka=data.get("interrupting_rating_ka"),
        bus_id=data.get("bus_id"),
        in_service=data.get("in_service", True),
    )


def _build_network(data: dict[str, Any]) -> ElectricalNetwork:
    base = BaseValues(**(data.get("base_values") or {}))

    buses = []
    for b in data.get("buses", []):
        if "voltage" in b:
            voltage = parse_complex(b["voltage"])
        else:
            voltage = from_polar(b.get("voltage_pu", 1.0), b.get("angle_deg", 0.0))
        buses.append(Bus(
            id=b["id"],
            name=b.get("name", b["id"]),
            bus_type=_enum(BusType, b.get("bus_type"), BusType.PQ),
            nominal_voltage_kv=float(b.get("nominal_voltage_kv", base.base_kv)),
            voltage=voltage,
            v_min_pu=b.get("v_min_pu"),
            v_max_pu=b.get("v_max_pu"),
            shunt_conductance_pu=float(b.get("shunt_conductance_pu", 0.0)),
            shunt_susceptance_pu=float(b.get("shunt_susceptance_pu", 0.0)),
            sc_mva=float(b.get("sc_mva", 0.0)),
            sc_x_r_ratio=float(b.get("sc_x_r_ratio", 10.0)),
            sc_z0_z1_ratio=float(b.get("sc_z0_z1_ratio", 1.0)),
            source_grounded=b.get("source_grounded", True),
            withstand_rating_ka=b.get("withstand_rating_ka"),
        ))
    bus_kv = {b.id: b.nominal_voltage_kv for b in buses}

    settings_data = data.get("analysis_settings") or {}
    network = ElectricalNetwork(
        name=data.get("name", ""),
        buses=buses,
        branches=[_parse_branch(br, bus_kv, base) for br in data.get("branches", [])],
        loads=[_parse_load(ld) for ld in data.get("loads", [])],
        generators=[_parse_generator(g) for g in data.get("generators", [])],
        transformers=[_parse_transformer(t) for t in data.get("transformers", [])],
        protective_devices=[_parse_device(d) for d in data.get("protective_devices", [])],
        base_values=base,
        analysis_settings=settings_from_dict(settings_data),
    )
    network.link_elements()
    return network


def network_from_dict(data: dict[str, Any]) -> ElectricalNetwork:
    """Build an ElectricalNetwork from JSON-shaped data.

    Bus voltages may be given as ``voltage`` (complex in any form accepted by
    ``parse_complex``) or as ``voltage_pu`` + ``angle_deg``. Branches take
    per-unit ``resistance``/``reactance`` or cable data in ohm/km
    (``r_ohm_per_km``, ``x_ohm_per_km``, ``c_nf_per_km``, ``length_km``).

    Raises:
        ParameterError: for missing ids/references or malformed values.
    """
    try:
        return _build_network(data)
    except KeyError as exc:
        raise ParameterError(f"Missing required field {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ParameterError):
            raise
        raise ParameterError(f"Invalid network data: {exc}") from exc
