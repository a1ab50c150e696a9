from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Element(BaseModel):
    # Engine-specific fields (impedances, ratings, spectra, ...) pass through
    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None


class BusIn(_Element):
    bus_type: Literal["slack", "pv", "pq"] = "pq"
    nominal_voltage_kv: float = Field(gt=0)


class BranchIn(_Element):
    from_bus: str
    to_bus: str
    branch_type: Literal["line", "cable", "transformer"] = "line"


class LoadIn(_Element):
    bus_id: str
    active_power_mw: float = 0.0


class GeneratorIn(_Element):
    bus_id: str
    generator_type: Literal["synchronous", "induction", "inverter", "pv", "wind"] = "synchronous"


class TransformerIn(_Element):
    primary_bus: str
    secondary_bus: str
    tertiary_bus: str | None = None
    rated_mva: float = Field(gt=0)


class ProtectiveDeviceIn(_Element):
    element_id: str
    device_type: Literal["relay", "breaker", "fuse", "recloser"] = "relay"


class BaseValuesIn(BaseModel):
    base_mva: float = Field(default=100.0, gt=0)
    base_kv: float = Field(default=1.0, gt=0)
    base_hz: float = Field(default=60.0, gt=0)


class NetworkIn(BaseModel):
    name: str = ""
    buses: list[BusIn] = Field(min_length=1)
    branches: list[BranchIn] = []
    loads: list[LoadIn] = []
    generators: list[GeneratorIn] = []
    transformers: list[TransformerIn] = []
    protective_devices: list[ProtectiveDeviceIn] = []
    base_values: BaseValuesIn = BaseValuesIn()
    analysis_settings: dict[str, Any] = {}

    def to_engine_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class StudyRequest(BaseModel):
    network: NetworkIn
    settings: dict[str, Any] | None = Field(
        default=None,
        description="Per-call overrides of the network's analysis settings",
    )


class LoadFlowRequest(StudyRequest):
    warm_start: dict[str, Any] | None = Field(
        default=None,
        description="Prior bus voltages by bus id (complex as {real, imaginary} or [re, im])",
    )


class ShortCircuitRequest(StudyRequest):
    fault_bus_id: str
    fault_type: Literal[
        "three_phase", "line_to_ground", "line_to_line", "line_to_line_to_ground",
    ] = "three_phase"
    fault_impedance: Any = Field(default=0.0, description="Fault impedance Zf in per unit")


class FaultStudyRequest(StudyRequest):
    bus_ids: list[str] | None = None
    fault_types: list[str] | None = None


class TopologyRequest(StudyRequest):
    costs: dict[str, float] | None = Field(
        default=None,
        description="Unit costs per recommendation type (add_redundancy, voltage_support, ...)",
    )
    include_short_circuit: bool = Field(
        default=False,
        description="Run a three-phase fault study first and add protection upgrades",
    )


class ContingencyRequest(StudyRequest):
    element_ids: list[str] | None = None


StudyName = Literal["load_flow", "short_circuit", "fault_study", "harmonics", "topology", "contingency"]


class JobRequest(BaseModel):
    study: StudyName
    payload: dict[str, Any] = Field(description="Request body of the corresponding study endpoint")


class JobSubmitted(BaseModel):
    job_id: str
    study: str
    status: str


class JobStatus(BaseModel):
    job_id: str
    status: str
    result: dict[str, Any] | None = None
    error: str | None = None
