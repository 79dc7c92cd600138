"""
seismic.py — Earthquake ingestion from the USGS GeoJSON summary feed.

USGS GeoJSON format:
    feature = {
        "type": "Feature",
        "properties": { "mag": 5.2, "place": "...", "time": 1708617600000, ... },
        "geometry": { "type": "Point", "coordinates": [lon, lat, depth_km] },
        "id": "us7000m..."
    }

Severity scale:
    severity = clamp(magnitude / 10, 0, 1), rounded to 2 decimals

    M2.5 → 0.25    M5.0 → 0.50    M7.8 → 0.78    M10+ → 1.00
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guardian.app.core.config import settings
from guardian.app.core.errors import FeedParseError
from guardian.app.core.results import TaskResult
from guardian.app.hazards.models import HazardCandidate, HazardType
from guardian.app.ingestion.base import SourceAdapter, UpsertTally

logger = logging.getLogger(__name__)

SOURCE = "USGS"


def seismic_severity(magnitude: Optional[float]) -> float:
    if magnitude is None:
        return 0.0
    return round(min(1.0, max(0.0, magnitude / 10.0)), 2)


def parse_usgs_feature(feature: Dict[str, Any]) -> Optional[HazardCandidate]:
    """Parse one GeoJSON feature; None when it lacks an id or coordinates."""
    try:
        event_id = feature.get("id")
        props = feature.get("properties") or {}
        coords = (feature.get("geometry") or {}).get("coordinates") or []
        if not event_id or len(coords) < 2 or coords[0] is None or coords[1] is None:
            return None

        longitude = float(coords[0])
        latitude = float(coords[1])
        depth_km = float(coords[2]) if len(coords) > 2 and coords[2] is not None else None

        mag = props.get("mag")
        magnitude = float(mag) if mag is not None else None

        # USGS gives milliseconds since epoch
        ts_ms = props.get("time")
        occurred_at = (
            datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
            if ts_ms is not None else datetime.now(timezone.utc)
        )

        return HazardCandidate(
            type=HazardType.EARTHQUAKE,
            severity=seismic_severity(magnitude),
            occurred_at=occurred_at,
            lat=latitude,
            lon=longitude,
            source=SOURCE,
            source_event_id=str(event_id),
            attributes={
                "title": props.get("title") or (
                    f"M{magnitude} Earthquake" if magnitude is not None else "Earthquake"
                ),
                "place": props.get("place"),
                "magnitude": magnitude,
                "depth_km": depth_km,
                "url": props.get("url"),
                "felt": props.get("felt"),
                "tsunami": bool(props.get("tsunami", 0)),
                "alert": props.get("alert"),
                "status": props.get("status"),
                "mag_type": props.get("magType"),
            },
        )
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to parse USGS feature: %s", exc, extra={"source": SOURCE})
        return None


class SeismicAdapter(SourceAdapter):
    """Fetch the USGS feed and upsert every usable feature (overwrite mode)."""

    name = "seismic"

    def __init__(
        self,
        store,
        client,
        *,
        feed_url: str = settings.USGS_FEED_URL,
        batch_size: int = settings.INGEST_BATCH_SIZE,
    ):
        super().__init__(store, client, batch_size=batch_size)
        self.feed_url = feed_url

    async def _run(self) -> TaskResult:
        data = await self.client.get_json(self.feed_url, service=SOURCE)
        features = data.get("features") if isinstance(data, dict) else None
        if not isinstance(features, list):
            raise FeedParseError(SOURCE, "response has no 'features' array")

        candidates: List[HazardCandidate] = []
        for feature in features:
            candidate = parse_usgs_feature(feature) if isinstance(feature, dict) else None
            if candidate is not None:
                candidates.append(candidate)
        malformed = len(features) - len(candidates)

        tally = UpsertTally()
        await self.upsert_all(candidates, tally)

        logger.info(
            "USGS ingest: %d features, %d upserted, %d skipped",
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
