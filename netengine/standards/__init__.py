"""Compliance profiles: grid-code voltage/thermal limits and IEEE-519 harmonic limits."""

from .grid_codes import (
    ANSI_C84_1,
    IEC_DEFAULT,
    IEEE_1547,
    GridCodeProfile,
    VoltageLimits,
)
from .ieee519 import IEEE519_2014, HarmonicLimitProfile

__all__ = [
    "ANSI_C84_1",
    "IEC_DEFAULT",
    "IEEE_1547",
    "GridCodeProfile",
    "VoltageLimits",
    "IEEE519_2014",
    "HarmonicLimitProfile",
]
