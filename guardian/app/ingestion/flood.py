"""
flood.py — River flood risk from the Open-Meteo flood API (Copernicus GloFAS).

Two entry points share one service:

    FloodRiskService.lookup(lat, lon)   — synchronous lookup (API endpoint)
    FloodAdapter.run()                  — scheduled sweep over active users
                                          and sentinel river cities

═══════════════════════════════════════════════════════════════════════════
RISK CLASSIFICATION
═══════════════════════════════════════════════════════════════════════════

Each forecast day compares forecast discharge with the historical median:

    ratio = discharge / max(median, 0.1)      (m³/s, floor avoids ÷0)

    ratio > 5.0   → high      (score 0.8)
    ratio > 2.5   → moderate  (score 0.5)
    otherwise     → low       (score 0.0)

Only a HIGH first forecast day is persisted, as one Hazard per rounded
coordinate per date:

    source_event_id = GLOFAS_<lat>_<lon>_<date>

The write is insert-if-absent, so the sweep and the endpoint may look up the
same place concurrently without duplicating or rewriting the row.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from guardian.app.core.cache import cache_get, cache_key, cache_set
from guardian.app.core.config import settings
from guardian.app.core.errors import FeedParseError, GuardianError
from guardian.app.core.results import ErrorKind, TaskResult
from guardian.app.hazards.models import HazardCandidate, HazardType, UpsertOutcome
from guardian.app.hazards.store import HazardStore, UserDirectory
from guardian.app.ingestion.http_client import FeedClient
from guardian.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

SOURCE = "Copernicus GloFAS"
SERVICE = "Open-Meteo Flood"

DAILY_VARIABLES = (
    "river_discharge",
    "river_discharge_mean",
    "river_discharge_median",
    "river_discharge_max",
)

MEDIAN_FLOOR = 0.1
HIGH_RATIO = 5.0
MODERATE_RATIO = 2.5

CRITICAL_TEXT = (
    "Critical river discharge levels. Excessive rainfall may cause severe "
    "urban and river flooding."
)
ELEVATED_TEXT = (
    "Elevated river discharge levels. Be cautious of ponding in low-lying "
    "areas and poor drainage."
)


# ═══════════════════════════════════════════════════════════════════════════
# Data structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class FloodDay:
    date: str
    river_discharge: Optional[float]
    river_discharge_median: Optional[float]
    river_discharge_max: Optional[float]
    ratio: Optional[float]
    risk_level: str   # low | moderate | high
    risk_score: float


@dataclass
class FloodOutlook:
    lat: float
    lon: float
    unit: str
    forecast: List[FloodDay] = field(default_factory=list)
    hazard_outcome: Optional[UpsertOutcome] = None
    cached: bool = False

    @property
    def today(self) -> Optional[FloodDay]:
        return self.forecast[0] if self.forecast else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "unit": self.unit,
            "forecast": [asdict(d) for d in self.forecast],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FloodOutlook":
        return cls(
            lat=data["lat"],
            lon=data["lon"],
            unit=data.get("unit", "m³/s"),
            forecast=[FloodDay(**d) for d in data.get("forecast", [])],
            cached=True,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════════════════

def round_coord(value: float) -> float:
    """Round to 2 decimals, halves toward +∞ (29.955 → 29.96, -90.075 → -90.07)."""
    return math.floor(value * 100 + 0.5) / 100


def format_coord(value: float) -> str:
    """Shortest decimal form used in event ids (30.0 → '30', -90.07 → '-90.07')."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def flood_event_id(lat: float, lon: float, date: str) -> str:
    return f"GLOFAS_{format_coord(lat)}_{format_coord(lon)}_{date}"


def classify_day(
    discharge: Optional[float], median: Optional[float],
) -> Tuple[Optional[float], str, float]:
    """Return (ratio, risk_level, risk_score) for one forecast day."""
    if discharge is None:
        return None, "low", 0.0
    baseline = median if median is not None and median > MEDIAN_FLOOR else MEDIAN_FLOOR
    ratio = discharge / baseline
    if ratio > HIGH_RATIO:
        return ratio, "high", 0.8
    if ratio > MODERATE_RATIO:
        return ratio, "moderate", 0.5
    return ratio, "low", 0.0


def _series(daily: Dict[str, Any], key: str, i: int) -> Optional[float]:
    values = daily.get(key) or []
    if i >= len(values) or values[i] is None:
        return None
    return float(values[i])


def parse_flood_response(data: Any, lat: float, lon: float) -> FloodOutlook:
    if not isinstance(data, dict) or not isinstance(data.get("daily"), dict):
        raise FeedParseError(SERVICE, "response has no 'daily' block")
    daily = data["daily"]
    dates = daily.get("time") or []

    forecast: List[FloodDay] = []
    try:
        for i, date in enumerate(dates):
            discharge = _series(daily, "river_discharge", i)
            median = _series(daily, "river_discharge_median", i)
            ratio, level, score = classify_day(discharge, median)
            forecast.append(FloodDay(
                date=str(date),
                river_discharge=discharge,
                river_discharge_median=median,
                river_discharge_max=_series(daily, "river_discharge_max", i),
                ratio=round(ratio, 2) if ratio is not None else None,
                risk_level=level,
                risk_score=score,
            ))
    except (TypeError, ValueError) as exc:
        raise FeedParseError(SERVICE, str(exc)) from exc

    unit = (data.get("daily_units") or {}).get("river_discharge") or "m³/s"
    return FloodOutlook(lat=lat, lon=lon, unit=unit, forecast=forecast)


def high_risk_candidate(outlook: FloodOutlook) -> Optional[HazardCandidate]:
    """The Hazard for a HIGH first day, else None."""
    today = outlook.today
    if today is None or today.risk_level != "high":
        return None
    try:
        occurred_at = datetime.strptime(today.date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning("Unparseable flood forecast date %r", today.date)
        return None

    median = today.river_discharge_median
    critical = median is not None and today.river_discharge > median * HIGH_RATIO
    return HazardCandidate(
        type=HazardType.FLOOD,
        severity=today.risk_score,
        occurred_at=occurred_at,
        lat=outlook.lat,
        lon=outlook.lon,
        source=SOURCE,
        source_event_id=flood_event_id(outlook.lat, outlook.lon, today.date),
        attributes={
            "discharge": today.river_discharge,
            "median": median,
            "max": today.river_discharge_max,
            "ratio": today.ratio,
            "title": f"Flood Risk: {today.risk_level.upper()}",
            "description": CRITICAL_TEXT if critical else ELEVATED_TEXT,
        },
    )


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class FloodRiskService:
    """Fetch, classify and (when HIGH) persist a flood outlook."""

    def __init__(
        self,
        store: HazardStore,
        client: FeedClient,
        *,
        url: str = settings.FLOOD_API_URL,
        forecast_days: int = settings.FLOOD_FORECAST_DAYS,
        cache_ttl: int = settings.FLOOD_OUTLOOK_TTL,
    ):
        self.store = store
        self.client = client
        self.url = url
        self.forecast_days = forecast_days
        self.cache_ttl = cache_ttl

    async def fetch_outlook(self, lat: float, lon: float) -> FloodOutlook:
        """Fetch and classify; raises on fetch or parse failure."""
        rlat, rlon = round_coord(lat), round_coord(lon)
        data = await self.client.get_json(
            self.url,
            service=SERVICE,
            params={
                "latitude": rlat,
                "longitude": rlon,
                "daily": ",".join(DAILY_VARIABLES),
                "forecast_days": self.forecast_days,
            },
        )
        return parse_flood_response(data, rlat, rlon)

    async def lookup(self, lat: float, lon: float) -> Optional[FloodOutlook]:
        """
        Flood outlook for a point, or None when the provider call fails.

        A HIGH first day is written as a Hazard (insert-if-absent) on every
        fresh fetch; cached outlooks were already persisted when fetched.
        """
        rlat, rlon = round_coord(lat), round_coord(lon)
        key = cache_key("flood", rlat, rlon)

        cached = await cache_get(key)
        if cached:
            return FloodOutlook.from_dict(cached)

        try:
            outlook = await self.fetch_outlook(lat, lon)
        except GuardianError as exc:
            logger.error(
                "Flood lookup failed for (%s, %s): %s", rlat, rlon, exc.message,
                extra={"lat": rlat, "lon": rlon, "error_kind": exc.kind.value},
            )
            return None

        candidate = high_risk_candidate(outlook)
        if candidate is not None:
            try:
                outlook.hazard_outcome = await self.store.upsert_hazard(candidate, overwrite=False)
            except GuardianError as exc:
                logger.error(
                    "Flood hazard write failed for %s: %s",
                    candidate.source_event_id, exc.message,
                    extra={"source": SOURCE},
                )

        await cache_set(key, outlook.to_dict(), ttl=self.cache_ttl)
        return outlook


# ═══════════════════════════════════════════════════════════════════════════
# Scheduled sweep
# ═══════════════════════════════════════════════════════════════════════════

def grid_key(lat: float, lon: float) -> Tuple[float, float]:
    """0.1° cell used to de-duplicate nearby check points."""
    return (round(lat * 10) / 10, round(lon * 10) / 10)


def dedupe_points(points: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
    seen = set()
    unique: List[Tuple[float, float]] = []
    for lat, lon in points:
        key = grid_key(lat, lon)
        if key not in seen:
            seen.add(key)
            unique.append((lat, lon))
    return unique


class FloodAdapter:
    """Check recently active users and sentinel cities for flood risk."""

    name = "flood"

    def __init__(
        self,
        service: FloodRiskService,
        directory: UserDirectory,
        *,
        sentinels: Sequence[Tuple[float, float]] = tuple(settings.FLOOD_SENTINELS),
        active_hours: int = settings.FLOOD_ACTIVE_USER_HOURS,
        spacing_seconds: float = settings.FLOOD_REQUEST_SPACING_SECONDS,
    ):
        self.service = service
        self.directory = directory
        self.sentinels = list(sentinels)
        self.active_hours = active_hours
        self.spacing_seconds = spacing_seconds

    async def check_points(self, now: Optional[datetime] = None) -> List[Tuple[float, float]]:
        now = now or datetime.now(timezone.utc)
        users = await self.directory.recent_live_positions(now - timedelta(hours=self.active_hours))
        points = [(u.last_lat, u.last_lon) for u in users] + self.sentinels
        points = [(lat, lon) for lat, lon in points if Coordinate.is_valid(lat, lon)]
        return dedupe_points(points)

    async def run(self, now: Optional[datetime] = None) -> TaskResult:
        started = datetime.now(timezone.utc)
        try:
            points = await self.check_points(now)
        except GuardianError as exc:
            return TaskResult.failure(self.name, exc.kind, exc.message)

        written = failed = high = 0
        for i, (lat, lon) in enumerate(points):
            if i > 0 and self.spacing_seconds > 0:
                await asyncio.sleep(self.spacing_seconds)
            outlook = await self.service.lookup(lat, lon)
            if outlook is None:
                failed += 1
                continue
            if outlook.today and outlook.today.risk_level == "high":
                high += 1
            if outlook.hazard_outcome is UpsertOutcome.INSERTED:
                written += 1

        duration_ms = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
        details = {"points": len(points), "high_risk": high, "failed": failed}
        logger.info(
            "Flood sweep: %d points, %d high risk, %d new hazards, %d failed",
            len(points), high, written, failed,
            extra={"task": self.name, "count": written},
        )

        if points and failed == len(points):
            return TaskResult.failure(
                self.name, ErrorKind.FETCH, "every flood lookup failed",
                skipped=failed, details=details, duration_ms=duration_ms,
            )
        return TaskResult.success(
            self.name, count=written, skipped=failed,
            details=details, duration_ms=duration_ms,
        )
