"""
User alert endpoints.

Endpoints:
    GET  /api/v1/alerts   — A user's materialized alerts, newest first
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from guardian.app.api.deps import get_store
from guardian.app.api.schemas import AlertListResponse, AlertOut
from guardian.app.core.errors import ValidationError
from guardian.app.hazards.models import Hazard
from guardian.app.hazards.store import HazardStore
from guardian.app.spatial.radius_utils import distance_km, format_distance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])

MAX_ALERTS = 200


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    user_id: int = Query(..., ge=1),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: float = Query(500.0, gt=0, le=20000),
    store: HazardStore = Depends(get_store),
):
    """
    Alerts for `user_id`. With `lat`/`lon`, only alerts whose hazard lies
    within `radius_km` of that point are returned.
    """
    if (lat is None) != (lon is None):
        raise ValidationError("lat and lon must be given together", field="lat")

    records = await store.list_alerts(user_id)

    hazards: Dict[int, Optional[Hazard]] = {}
    for record in records:
        if record.hazard_id not in hazards:
            hazards[record.hazard_id] = await store.get_hazard(record.hazard_id)

    items = []
    for record in records:
        hazard = hazards[record.hazard_id]
        display = None
        if lat is not None and hazard is not None:
            d = distance_km(lat, lon, hazard.lat, hazard.lon)
            if d > radius_km:
                continue
            display = format_distance(d)
        items.append(AlertOut.from_record(record, hazard, display))
        if len(items) >= MAX_ALERTS:
            break

    return AlertListResponse(user_id=user_id, count=len(items), alerts=items)
