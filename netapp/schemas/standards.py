from typing import Any

from pydantic import BaseModel


class GridCodeProfileSummary(BaseModel):
    key: str
    name: str
    standard: str
    voltage_normal: list[float]
    thermal_limit_pct: float


class GridCodeListResponse(BaseModel):
    profiles: list[GridCodeProfileSummary]


class GridCodeDetailResponse(BaseModel):
    name: str
    standard: str
    voltage_limits: dict
    thermal_limit_pct: float
    thermal_warning_pct: float
    fault_level: dict
    metadata: dict


class HarmonicLimitSummary(BaseModel):
    key: str
    name: str
    standard: str


class HarmonicLimitListResponse(BaseModel):
    profiles: list[HarmonicLimitSummary]


class HarmonicLimitDetailResponse(BaseModel):
    name: str
    standard: str
    voltage_limits: list[dict[str, Any]]
    current_limits: list[dict[str, Any]]
    even_harmonic_factor: float
