"""
Flood outlook endpoint.

Endpoints:
    GET  /api/v1/flood   — 3-day river discharge outlook for a point

Uses the same FloodRiskService as the scheduled sweep, so a HIGH first day
looked up here is persisted exactly once.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from guardian.app.api.deps import get_flood_service
from guardian.app.api.schemas import FloodDayOut, FloodOutlookOut
from guardian.app.core.errors import ExternalServiceError
from guardian.app.ingestion.flood import SERVICE, FloodRiskService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/flood", tags=["flood"])


@router.get("", response_model=FloodOutlookOut)
async def flood_outlook(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    service: FloodRiskService = Depends(get_flood_service),
):
    outlook = await service.lookup(lat, lon)
    if outlook is None:
        raise ExternalServiceError(SERVICE, "flood outlook unavailable")
    return FloodOutlookOut(
        lat=outlook.lat,
        lon=outlook.lon,
        unit=outlook.unit,
        cached=outlook.cached,
        forecast=[FloodDayOut(**vars(day)) for day in outlook.forecast],
    )
