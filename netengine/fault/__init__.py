"""Sequence networks, IEC 60909 style short-circuit analysis and protection checks."""
