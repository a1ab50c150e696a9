"""Analysis endpoints.

Provides:
- POST /analysis/load-flow: Newton-Raphson load flow
- POST /analysis/short-circuit: single fault at one bus
- POST /analysis/fault-study: every fault type at every requested bus
- POST /analysis/harmonics: harmonic distortion and IEEE-519 compliance
- POST /analysis/topology: single points of failure and costed upgrades
- POST /analysis/contingency: N-1 contingency screening
"""

import logging
from typing import Any, Callable

from fastapi import APIRouter, HTTPException, status

from netapp.schemas.analysis import (
    ContingencyRequest,
    FaultStudyRequest,
    LoadFlowRequest,
    ShortCircuitRequest,
    StudyRequest,
    TopologyRequest,
)
from netapp.services import studies
from netengine.errors import AnalysisCancelled, NetworkAnalysisError, TopologyError

logger = logging.getLogger(__name__)

router = APIRouter()


def _run(handler: Callable[..., dict[str, Any]], body: StudyRequest) -> dict[str, Any]:
    try:
        return handler(body)
    except AnalysisCancelled as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TopologyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid network topology", "problems": e.problems},
        )
    except NetworkAnalysisError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/load-flow")
def run_load_flow(body: LoadFlowRequest) -> dict[str, Any]:
    """Solve the load flow. Non-convergence is reported in the body, not as an error."""
    return _run(studies.load_flow, body)


@router.post("/short-circuit")
def run_short_circuit(body: ShortCircuitRequest) -> dict[str, Any]:
    return _run(studies.short_circuit, body)


@router.post("/fault-study")
def run_fault_study(body: FaultStudyRequest) -> dict[str, Any]:
    return _run(studies.fault_study, body)


@router.post("/harmonics")
def run_harmonics(body: StudyRequest) -> dict[str, Any]:
    return _run(studies.harmonics, body)


@router.post("/topology")
def run_topology(body: TopologyRequest) -> dict[str, Any]:
    return _run(studies.topology, body)


@router.post("/contingency")
def run_contingency(body: ContingencyRequest) -> dict[str, Any]:
    """Take each branch and transformer out in turn and re-run the load flow."""
    return _run(studies.contingency, body)
