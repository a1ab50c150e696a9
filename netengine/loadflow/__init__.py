"""Newton-Raphson load flow with voltage-dependent loads and generator Q limits."""
