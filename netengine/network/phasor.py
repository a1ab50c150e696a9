"""Complex (phasor) primitives used throughout the engine.

Per-unit voltages, currents, impedances and powers are plain Python
``complex`` values; arithmetic (+, -, *) is the language's own. This module
adds the operations power-system code keeps reaching for: polar conversion,
safe inversion, series/parallel combination and the symmetrical-component
transforms.

    a = 1∠120°
    [Va]   [1  1   1 ] [V0]
    [Vb] = [1  a²  a ] [V1]
    [Vc]   [1  a   a²] [V2]
"""

from __future__ import annotations

import cmath
import math
from typing import Any

import numpy as np

A = complex(-0.5, math.sqrt(3) / 2)
A2 = A * A

SEQUENCE_TO_PHASE = np.array([
    [1, 1, 1],
    [1, A2, A],
    [1, A, A2],
], dtype=complex)

PHASE_TO_SEQUENCE = np.array([
    [1, 1, 1],
    [1, A, A2],
    [1, A2, A],
], dtype=complex) / 3.0

INFINITE_IMPEDANCE = complex(math.inf, 0.0)


def from_polar(magnitude: float, angle_deg: float) -> complex:
    """Phasor from magnitude and angle in degrees."""
    return cmath.rect(magnitude, math.radians(angle_deg))


def magnitude(z: complex) -> float:
    return abs(z)


def angle_deg(z: complex) -> float:
    """Angle of ``z`` in degrees (0 for a zero phasor)."""
    if z == 0:
        return 0.0
    return math.degrees(cmath.phase(z))


def is_finite(z: complex) -> bool:
    return math.isfinite(z.real) and math.isfinite(z.imag)


def inverse(z: complex) -> complex:
    """1/z, e.g. impedance → admittance.

    Raises:
        ZeroDivisionError: for a zero impedance (a modelling error, not a short).
    """
    if z == 0:
        raise ZeroDivisionError("cannot invert a zero impedance")
    if not is_finite(z):
        return 0j
    return 1.0 / z


def parallel(*impedances: complex) -> complex:
    """Parallel combination; infinite branches (open circuits) are ignored."""
    total = 0j
    for z in impedances:
        if not is_finite(z):
            continue
        total += inverse(z)
    if total == 0:
        return INFINITE_IMPEDANCE
    return 1.0 / total


def sequence_to_phase(
    zero: complex, positive: complex, negative: complex
) -> tuple[complex, complex, complex]:
    """Phase a, b, c quantities from sequence 0, 1, 2 quantities."""
    a, b, c = SEQUENCE_TO_PHASE @ np.array([zero, positive, negative], dtype=complex)
    return complex(a), complex(b), complex(c)


def phase_to_sequence(
    a: complex, b: complex, c: complex
) -> tuple[complex, complex, complex]:
    """Sequence 0, 1, 2 quantities from phase a, b, c quantities."""
    z, p, n = PHASE_TO_SEQUENCE @ np.array([a, b, c], dtype=complex)
    return complex(z), complex(p), complex(n)


def complex_to_dict(z: complex, digits: int = 6) -> dict[str, float]:
    """JSON shape used by the surrounding application: ``{real, imaginary}``."""
    return {"real": round(z.real, digits), "imaginary": round(z.imag, digits)}


def parse_complex(value: Any) -> complex:
    """Accept ``{"real", "imaginary"}``, ``[re, im]``, numbers or ``"0.1+0.2j"``."""
    if value is None:
        return 0j
    if isinstance(value, complex):
        return value
    if isinstance(value, (int, float)):
        return complex(value, 0.0)
    if isinstance(value, dict):
        real = value.get("real", 0.0)
        imag = value.get("imaginary", value.get("imag", 0.0))
        return complex(float(real), float(imag))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return complex(float(value[0]), float(value[1]))
    if isinstance(value, str):
        return complex(value.replace(" ", ""))
    raise TypeError(f"cannot interpret {value!r} as a complex number")
