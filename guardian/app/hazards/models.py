"""
models.py — Canonical data structures shared across the pipeline.

Defines:
    • HazardType       — the four signal families
    • UpsertOutcome    — result of a store upsert
    • HazardCandidate  — a normalized record emitted by a source adapter
    • Hazard           — a stored hazard (candidate + store-assigned id)
    • AlertRecord      — a materialized "user should know" fact
    • PoiKind / PointOfInterest — saved place or live position of a user
    • TrackedUser      — collaborator-owned user row (position, token, family)

═══════════════════════════════════════════════════════════════════════════
IDENTITY
═══════════════════════════════════════════════════════════════════════════

A hazard's identity is (source, source_event_id). Re-ingesting an upstream
event refreshes its mutable fields:

    severity, occurred_at, lat, lon, attributes

but never its `id`, `type`, `source` or `source_event_id`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from guardian.app.spatial.radius_utils import Coordinate


class HazardType(str, Enum):
    EARTHQUAKE = "earthquake"
    WILDFIRE   = "wildfire"
    FLOOD      = "flood"
    TSUNAMI    = "tsunami"


class UpsertOutcome(str, Enum):
    INSERTED  = "inserted"
    UPDATED   = "updated"
    UNCHANGED = "unchanged"  # insert-if-absent hit an existing row


MUTABLE_HAZARD_FIELDS = ("severity", "occurred_at", "lat", "lon", "attributes")


def utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class HazardCandidate:
    """
    A normalized hazard as produced by a source adapter, before storage.

    Severity is clamped into [0.0, 1.0] and occurred_at normalized to UTC.
    Coordinates outside the lat/lon ranges (or NaN) raise ValueError.
    """
    type: HazardType
    severity: float
    occurred_at: datetime
    lat: float
    lon: float
    source: str
    source_event_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = HazardType(self.type)
        self.severity = min(1.0, max(0.0, float(self.severity)))
        self.occurred_at = utc(self.occurred_at)
        self.lat = float(self.lat)
        self.lon = float(self.lon)
        if not Coordinate.is_valid(self.lat, self.lon):
            raise ValueError(f"invalid coordinates ({self.lat}, {self.lon})")
        if not self.source or not self.source_event_id:
            raise ValueError("source and source_event_id are required")

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.source, self.source_event_id)

    @property
    def title(self) -> Optional[str]:
        return self.attributes.get("title")


@dataclass
class Hazard:
    """A hazard row as held by the store."""
    id: int
    type: HazardType
    severity: float
    occurred_at: datetime
    lat: float
    lon: float
    source: str
    source_event_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> Optional[str]:
        return self.attributes.get("title")

    @property
    def magnitude(self) -> Optional[float]:
        mag = self.attributes.get("magnitude")
        if mag is None or mag == "":
            return None
        try:
            return float(mag)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": round(self.severity, 3),
            "occurred_at": self.occurred_at.isoformat(),
            "lat": self.lat,
            "lon": self.lon,
            "source": self.source,
            "source_event_id": self.source_event_id,
            "attributes": self.attributes,
        }


@dataclass
class AlertRecord:
    """A stored per-user alert."""
    id: int
    user_id: int
    hazard_id: int
    message: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "hazard_id": self.hazard_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class PoiKind(str, Enum):
    SAVED = "saved"
    LIVE  = "live"


@dataclass(frozen=True)
class PointOfInterest:
    """A saved place or last live position belonging to a user."""
    user_id: int
    lat: float
    lon: float
    kind: PoiKind
    place_id: Optional[int] = None  # set for saved places


@dataclass
class TrackedUser:
    """User row owned by the CRUD layer; read-only here."""
    id: int
    name: str
    last_lat: Optional[float] = None
    last_lon: Optional[float] = None
    push_token: Optional[str] = None
    family_id: Optional[str] = None
    last_location_update: Optional[datetime] = None

    @property
    def has_position(self) -> bool:
        return self.last_lat is not None and self.last_lon is not None
