"""Study dispatch shared by the HTTP routers and the Celery worker.

Every study takes the validated request body, builds an engine network from
it and returns the engine result serialized with ``to_dict()``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel

from netapp.config import settings as app_settings
from netapp.schemas.analysis import (
    ContingencyRequest,
    FaultStudyRequest,
    LoadFlowRequest,
    ShortCircuitRequest,
    StudyRequest,
    TopologyRequest,
)
from netengine import analysis
from netengine.cancellation import CancellationToken
from netengine.network.network_model import ElectricalNetwork, FaultType, network_from_dict
from netengine.network.phasor import parse_complex

logger = logging.getLogger(__name__)


def _overrides(request: StudyRequest) -> dict[str, Any]:
    """Per-call settings, falling back to the service defaults."""
    overrides = dict(request.settings or {})
    on_network = request.network.analysis_settings
    if "grid_code" not in overrides and "grid_code" not in on_network:
        overrides["grid_code"] = app_settings.default_grid_code
    if "max_workers" not in overrides and "max_workers" not in on_network:
        overrides["max_workers"] = app_settings.default_max_workers
    return overrides


def _network(request: StudyRequest) -> ElectricalNetwork:
    return network_from_dict(request.network.to_engine_dict())


def load_flow(request: LoadFlowRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    warm_start = None
    if request.warm_start:
        warm_start = {bus_id: parse_complex(v) for bus_id, v in request.warm_start.items()}
    result = analysis.perform_load_flow(
        _network(request),
        settings=_overrides(request),
        warm_start=warm_start,
        cancel_token=cancel_token,
    )
    return result.to_dict()


def short_circuit(request: ShortCircuitRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    result = analysis.perform_short_circuit_analysis(
        _network(request),
        request.fault_bus_id,
        request.fault_type,
        settings=_overrides(request),
        fault_impedance=parse_complex(request.fault_impedance),
        cancel_token=cancel_token,
    )
    return result.to_dict()


def fault_study(request: FaultStudyRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    results = analysis.perform_fault_study(
        _network(request),
        request.bus_ids,
        request.fault_types,
        settings=_overrides(request),
        cancel_token=cancel_token,
    )
    return {"cases": [r.to_dict() for r in results]}


def harmonics(request: StudyRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    result = analysis.perform_harmonic_analysis(
        _network(request), settings=_overrides(request), cancel_token=cancel_token,
    )
    return result.to_dict()


def topology(request: TopologyRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    network = _network(request)
    overrides = _overrides(request)
    short_circuit_results = None
    if request.include_short_circuit:
        short_circuit_results = analysis.perform_fault_study(
            network, fault_types=[FaultType.THREE_PHASE], settings=overrides, cancel_token=cancel_token,
        )
    result = analysis.optimize_network_topology(
        network,
        settings=overrides,
        short_circuit=short_circuit_results,
        costs=request.costs,
        cancel_token=cancel_token,
    )
    return result.to_dict()


def contingency(request: ContingencyRequest, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
    result = analysis.run_contingency_analysis(
        _network(request),
        settings=_overrides(request),
        element_ids=request.element_ids,
        cancel_token=cancel_token,
    )
    return result.to_dict()


STUDIES: dict[str, tuple[type[BaseModel], Callable[..., dict[str, Any]]]] = {
    "load_flow": (LoadFlowRequest, load_flow),
    "short_circuit": (ShortCircuitRequest, short_circuit),
    "fault_study": (FaultStudyRequest, fault_study),
    "harmonics": (StudyRequest, harmonics),
    "topology": (TopologyRequest, topology),
    "contingency": (ContingencyRequest, contingency),
}


def run_study(
    study: str,
    payload: dict[str, Any] | BaseModel,
    cancel_token: CancellationToken | None = None,
) -> dict[str, Any]:
    """Validate ``payload`` for ``study`` and run it.

    Raises:
        KeyError: unknown study name
        pydantic.ValidationError: malformed payload
        NetworkAnalysisError: topology/parameter problems or cancellation
    """
    request_model, handler = STUDIES[study]
    request = payload if isinstance(payload, request_model) else request_model.model_validate(payload)
    logger.info("Running %s study", study, extra={"study": study})
    return handler(request, cancel_token)
