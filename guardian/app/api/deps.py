"""
FastAPI dependencies — services built at startup live on `app.state`.
"""

from __future__ import annotations

from fastapi import Request

from guardian.app.core.errors import GuardianError
from guardian.app.hazards.store import HazardStore
from guardian.app.ingestion.flood import FloodRiskService
from guardian.app.jobs.orchestrator import Orchestrator


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise GuardianError(
            f"Service '{name}' is not initialised",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
        )
    return value


def get_store(request: Request) -> HazardStore:
    return _state(request, "store")


def get_flood_service(request: Request) -> FloodRiskService:
    return _state(request, "flood_service")


def get_orchestrator(request: Request) -> Orchestrator:
    return _state(request, "orchestrator")
