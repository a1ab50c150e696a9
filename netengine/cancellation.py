"""Cooperative cancellation for long-running solves.

A UI thread (or a worker supervising a job) holds the token and calls
``cancel()``; solvers call ``check_cancelled(token)`` once per iteration,
harmonic order, fault case or contingency case.
"""

from __future__ import annotations

import threading

from netengine.errors import AnalysisCancelled


class CancellationToken:
    """Thread-safe flag shared between a caller and a running analysis."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str = "analysis") -> None:
        if self._event.is_set():
            raise AnalysisCancelled(f"{where} cancelled by caller")


def check_cancelled(token: CancellationToken | None, where: str = "analysis") -> None:
    """No-op when no token was supplied."""
    if token is not None:
        token.raise_if_cancelled(where)
