"""Harmonic load flow, THD/TDD and IEEE-519 compliance."""
