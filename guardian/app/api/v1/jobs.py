"""
Task orchestration endpoints.

Endpoints:
    GET   /api/v1/jobs              — Task cadences, counters, last results
    POST  /api/v1/jobs/{name}/run   — Run one task immediately
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from guardian.app.api.deps import get_orchestrator
from guardian.app.api.schemas import JobsSnapshotOut, TaskResultOut
from guardian.app.jobs.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.get("", response_model=JobsSnapshotOut)
async def list_jobs(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.snapshot()


@router.post("/{name}/run", response_model=TaskResultOut)
async def run_job(name: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Run a task once, outside its schedule. Unknown names return 404."""
    logger.info("Manual run requested for %s", name, extra={"task": name})
    result = await orchestrator.run_task(name)
    return result.to_dict()
