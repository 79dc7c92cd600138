"""
Hazard feed endpoints.

Endpoints:
    GET  /api/v1/hazards   — Recent hazards, optionally around a point
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from guardian.app.api.deps import get_store
from guardian.app.api.schemas import HazardListResponse, HazardOut
from guardian.app.core.errors import ValidationError
from guardian.app.hazards.models import HazardType
from guardian.app.hazards.store import HazardStore
from guardian.app.spatial.radius_utils import distance_km

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/hazards", tags=["hazards"])


@router.get("", response_model=HazardListResponse)
async def list_hazards(
    hours: int = Query(24, ge=1, le=24 * 30, description="Look-back window"),
    hazard_type: Optional[HazardType] = Query(None, alias="type", description="Filter by hazard type"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: float = Query(100.0, gt=0, le=20000),
    limit: int = Query(100, ge=1, le=500),
    store: HazardStore = Depends(get_store),
):
    """
    Hazards that occurred in the last `hours`, newest first.

    With `lat`/`lon`, only hazards within `radius_km` are returned, nearest
    first.
    """
    if (lat is None) != (lon is None):
        raise ValidationError("lat and lon must be given together", field="lat")

    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    types = [hazard_type] if hazard_type else None

    if lat is None:
        hazards = await store.hazards_since(cutoff, types=types, limit=limit)
        items = [HazardOut.from_hazard(h) for h in hazards]
    else:
        hazards = await store.hazards_since(cutoff, types=types)
        nearby = [(h, distance_km(lat, lon, h.lat, h.lon)) for h in hazards]
        nearby = sorted((p for p in nearby if p[1] <= radius_km), key=lambda p: p[1])
        items = [HazardOut.from_hazard(h, d) for h, d in nearby[:limit]]

    return HazardListResponse(count=len(items), hours=hours, hazards=items)
