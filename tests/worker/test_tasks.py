"""Tests for the Celery study task, run eagerly without a broker."""

from contextlib import contextmanager

import pytest

from netapp.worker import tasks
from netengine.cancellation import CancellationToken
from netengine.errors import AnalysisCancelled, ParameterError

_watch_cancellation = tasks.watch_cancellation


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    @contextmanager
    def _watch(job_id, token):
        yield

    monkeypatch.setattr(tasks, "watch_cancellation", _watch)


def _run(study, payload):
    return tasks.run_analysis_study.apply(args=(study, payload)).get()


class TestRunAnalysisStudy:

    def test_load_flow_completes(self, two_bus_payload):
        outcome = _run("load_flow", {"network": two_bus_payload})
        assert outcome["status"] == "completed"
        assert outcome["study"] == "load_flow"
        assert outcome["result"]["converged"] is True

    def test_contingency_completes(self, ring_payload):
        outcome = _run("contingency", {"network": ring_payload})
        assert outcome["result"]["summary"]["n1_secure"] is True

    def test_cancelled_study(self, monkeypatch, two_bus_payload):
        def _cancelled(study, payload, cancel_token=None):
            raise AnalysisCancelled("Load flow cancelled")

        monkeypatch.setattr(tasks, "run_study", _cancelled)
        outcome = _run("load_flow", {"network": two_bus_payload})
        assert outcome == {"status": "cancelled", "study": "load_flow", "result": None}

    @pytest.mark.parametrize("study,extra", [
        ("short_circuit", {"fault_bus_id": "B3", "fault_type": "three_phase"}),
        ("fault_study", {}),
    ])
    def test_fault_studies_honour_cancellation(self, monkeypatch, radial_payload, study, extra):
        @contextmanager
        def _cancel_at_once(job_id, token):
            token.cancel()
            yield

        monkeypatch.setattr(tasks, "watch_cancellation", _cancel_at_once)
        outcome = _run(study, {"network": radial_payload, **extra})
        assert outcome["status"] == "cancelled"

    def test_engine_errors_propagate(self, radial_payload):
        with pytest.raises(ParameterError):
            _run("short_circuit", {"network": radial_payload, "fault_bus_id": "nowhere"})


class TestWatchCancellation:

    def test_no_job_id_is_a_no_op(self):
        token = CancellationToken()
        with _watch_cancellation(None, token):
            pass
        assert not token.cancelled
