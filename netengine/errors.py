"""Exceptions raised by the analysis engine.

Only problems that make a solve meaningless are raised: a malformed network,
an impossible request, or a caller-requested cancellation. Numerical outcomes
(non-convergence, singular Jacobians) are reported inside the result objects.
"""

from __future__ import annotations


class NetworkAnalysisError(Exception):
    """Base class for all engine errors."""


class TopologyError(NetworkAnalysisError, ValueError):
    """The network structure is invalid (ids, references, slack buses, islands)."""

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ParameterError(NetworkAnalysisError, ValueError):
    """A request parameter or element parameter is out of range."""


class AnalysisCancelled(NetworkAnalysisError):
    """The caller cancelled a running analysis."""
