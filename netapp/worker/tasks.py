"""Celery tasks for long-running studies.

A running study is cancelled cooperatively: ``request_cancellation`` sets a
Redis flag for the job, a watcher thread in the task turns the flag into a
``CancellationToken.cancel()``, and the engine stops at its next check
(per Newton-Raphson iteration, harmonic order, fault case or contingency).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import redis

from netapp.config import settings
from netapp.core.logging import log_context
from netapp.services.studies import run_study
from netapp.worker import celery_app
from netengine.cancellation import CancellationToken
from netengine.errors import AnalysisCancelled

logger = logging.getLogger(__name__)

CANCEL_POLL_INTERVAL_S = 0.5


def _cancel_key(job_id: str) -> str:
    return f"netapp:cancel:{job_id}"


def request_cancellation(job_id: str) -> None:
    """Flag a job for cooperative cancellation and revoke it if still queued."""
    client = redis.Redis.from_url(settings.redis_url)
    client.set(_cancel_key(job_id), 1, ex=settings.job_result_expires_s)
    celery_app.control.revoke(job_id)


@contextmanager
def watch_cancellation(job_id: str | None, token: CancellationToken) -> Iterator[None]:
    """Poll the job's cancel flag in a background thread while the block runs."""
    if not job_id:
        yield
        return

    stop = threading.Event()

    def poll() -> None:
        try:
            client = redis.Redis.from_url(settings.redis_url)
            while not stop.wait(CANCEL_POLL_INTERVAL_S):
                if client.exists(_cancel_key(job_id)):
                    token.cancel()
                    return
        except redis.RedisError as e:
            logger.warning("Cancellation watcher for job %s stopped: %s", job_id, e)

    watcher = threading.Thread(target=poll, name=f"cancel-watch-{job_id}", daemon=True)
    watcher.start()
    try:
        yield
    finally:
        stop.set()
        watcher.join(timeout=CANCEL_POLL_INTERVAL_S * 2)


@celery_app.task(bind=True, name="run_analysis_study")
def run_analysis_study(self, study: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Run one study (load_flow, short_circuit, harmonics, ...) and return its result dict."""
    job_id = self.request.id
    token = CancellationToken()
    with log_context(job_id=job_id, study=study), watch_cancellation(job_id, token):
        try:
            result = run_study(study, payload, cancel_token=token)
        except AnalysisCancelled as e:
            logger.info("Job %s cancelled: %s", job_id, e)
            return {"status": "cancelled", "study": study, "result": None}
        except Exception:
            logger.exception("Job %s failed", job_id)
            raise
        logger.info("Job %s completed", job_id)

    return {"status": "completed", "study": study, "result": result}
