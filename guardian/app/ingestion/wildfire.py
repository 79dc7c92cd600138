"""
wildfire.py — Active wildfire ingestion from the NIFC WFIGS feature service.

Queries the ArcGIS REST `query` endpoint for the newest incident locations:

    where=1=1
    outFields=UniqueFireIdentifier,IncidentName,IncidentSize,PercentContained,
              POOCounty,POOState,OBJECTID,FireDiscoveryDateTime
    orderByFields=FireDiscoveryDateTime DESC
    resultRecordCount=500
    f=json

ArcGIS reports query errors inside a 200 response body as
`{"error": {"code": ..., "message": ...}}`; those count as fetch failures.

Severity by incident size (acres):

    acres ≤ 1 000            → 0.3
    1 000 < acres ≤ 10 000   → 0.6
    acres > 10 000           → 0.9
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guardian.app.core.config import settings
from guardian.app.core.errors import ExternalServiceError, FeedParseError
from guardian.app.core.results import TaskResult
from guardian.app.hazards.models import HazardCandidate, HazardType
from guardian.app.ingestion.base import SourceAdapter, UpsertTally

logger = logging.getLogger(__name__)

SOURCE = "NIFC"

OUT_FIELDS = (
    "UniqueFireIdentifier",
    "IncidentName",
    "IncidentSize",
    "PercentContained",
    "POOCounty",
    "POOState",
    "OBJECTID",
    "FireDiscoveryDateTime",
)


def wildfire_severity(acres: Optional[float]) -> float:
    acres = acres or 0
    if acres > 10_000:
        return 0.9
    if acres > 1_000:
        return 0.6
    return 0.3


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_nifc_feature(feature: Dict[str, Any]) -> Optional[HazardCandidate]:
    """Parse one ArcGIS feature; None when geometry or incident size is unusable."""
    attrs = feature.get("attributes") or {}
    geom = feature.get("geometry") or {}
    x, y = geom.get("x"), geom.get("y")
    if not _is_number(x) or not _is_number(y):
        return None

    source_event_id = attrs.get("UniqueFireIdentifier") or f"nifc:{attrs.get('OBJECTID')}"
    contained = attrs.get("PercentContained") or 0
    place = ", ".join(p for p in (attrs.get("POOCounty"), attrs.get("POOState")) if p)

    try:
        acres = float(attrs.get("IncidentSize") or 0)
        discovered = attrs.get("FireDiscoveryDateTime")
        occurred_at = (
            datetime.fromtimestamp(discovered / 1000.0, tz=timezone.utc)
            if _is_number(discovered) else datetime.now(timezone.utc)
        )
        return HazardCandidate(
            type=HazardType.WILDFIRE,
            severity=wildfire_severity(acres),
            occurred_at=occurred_at,
            lat=y,
            lon=x,
            source=SOURCE,
            source_event_id=str(source_event_id),
            attributes={
                "title": attrs.get("IncidentName") or "Unknown Fire",
                "place": place,
                "description": f"Acres: {attrs.get('IncidentSize') or 0}, Contained: {contained}%",
                "url": None,
                **attrs,
            },
        )
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        logger.warning(
            "Failed to parse NIFC feature %s: %s", source_event_id, exc,
            extra={"source": SOURCE},
        )
        return None


class WildfireAdapter(SourceAdapter):
    """Fetch NIFC incidents and upsert them in concurrent batches."""

    name = "wildfire"

    def __init__(
        self,
        store,
        client,
        *,
        url: str = settings.NIFC_FEATURE_SERVICE_URL,
        record_limit: int = settings.WILDFIRE_RECORD_LIMIT,
        batch_size: int = settings.INGEST_BATCH_SIZE,
    ):
        super().__init__(store, client, batch_size=batch_size)
        self.url = url
        self.record_limit = record_limit

    def query_params(self) -> Dict[str, Any]:
        return {
            "where": "1=1",
            "outFields": ",".join(OUT_FIELDS),
            "orderByFields": "FireDiscoveryDateTime DESC",
            "f": "json",
            "resultRecordCount": self.record_limit,
        }

    async def _run(self) -> TaskResult:
        data = await self.client.get_json(self.url, service=SOURCE, params=self.query_params())
        if not isinstance(data, dict):
            raise FeedParseError(SOURCE, "response is not a JSON object")
        if data.get("error"):
            err = data["error"]
            raise ExternalServiceError(
                SOURCE,
                f"ArcGIS error {err.get('code')}: {err.get('message')}",
            )

        features = data.get("features") or []
        candidates: List[HazardCandidate] = []
        for feature in features:
            candidate = parse_nifc_feature(feature) if isinstance(feature, dict) else None
            if candidate is not None:
                candidates.append(candidate)
        malformed = len(features) - len(candidates)

        tally = UpsertTally()
        await self.upsert_all(candidates, tally)

        logger.info(
            "NIFC ingest: %d incidents, %d upserted, %d skipped",
            len(features), tally.written, malformed + tally.failed,
            extra={"task": self.name, "count": tally.written},
        )
        return TaskResult.success(
            self.name,
            count=tally.written,
            skipped=malformed + tally.failed,
            warnings=tally.errors,
            details={"features": len(features), **tally.to_dict()},
        )
