"""Redundancy analysis, N-1 contingency screening and upgrade recommendations."""
