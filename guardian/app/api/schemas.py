"""
Pydantic response schemas for the hazard API.

Separated from the route handlers so they are reusable across routers
and tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from guardian.app.hazards.models import AlertRecord, Hazard, HazardType


class HazardOut(BaseModel):
    id: int
    type: HazardType
    severity: float = Field(..., ge=0.0, le=1.0)
    occurred_at: datetime
    lat: float
    lon: float
    source: str
    source_event_id: str
    title: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    distance_km: Optional[float] = Field(None, description="Set when a lat/lon was given")

    @classmethod
    def from_hazard(cls, hazard: Hazard, distance_km: Optional[float] = None) -> "HazardOut":
        return cls(
            id=hazard.id,
            type=hazard.type,
            severity=hazard.severity,
            occurred_at=hazard.occurred_at,
            lat=hazard.lat,
            lon=hazard.lon,
            source=hazard.source,
            source_event_id=hazard.source_event_id,
            title=hazard.title,
            attributes=hazard.attributes,
            distance_km=round(distance_km, 2) if distance_km is not None else None,
        )


class HazardListResponse(BaseModel):
    count: int
    hours: int
    hazards: List[HazardOut]


class AlertOut(BaseModel):
    id: int
    user_id: int
    hazard_id: int
    message: str
    created_at: datetime
    hazard_type: Optional[HazardType] = None
    hazard_severity: Optional[float] = None
    hazard_title: Optional[str] = None
    hazard_lat: Optional[float] = None
    hazard_lon: Optional[float] = None
    distance_display: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        alert: AlertRecord,
        hazard: Optional[Hazard],
        distance_display: Optional[str] = None,
    ) -> "AlertOut":
        out = cls(
            id=alert.id,
            user_id=alert.user_id,
            hazard_id=alert.hazard_id,
            message=alert.message,
            created_at=alert.created_at,
            distance_display=distance_display,
        )
        if hazard is not None:
            out.hazard_type = hazard.type
            out.hazard_severity = hazard.severity
            out.hazard_title = hazard.title
            out.hazard_lat = hazard.lat
            out.hazard_lon = hazard.lon
        return out


class AlertListResponse(BaseModel):
    user_id: int
    count: int
    alerts: List[AlertOut]


class FloodDayOut(BaseModel):
    date: str
    river_discharge: Optional[float] = None
    river_discharge_median: Optional[float] = None
    river_discharge_max: Optional[float] = None
    ratio: Optional[float] = None
    risk_level: str
    risk_score: float


class FloodOutlookOut(BaseModel):
    lat: float
    lon: float
    unit: str
    cached: bool = False
    forecast: List[FloodDayOut]


class TaskResultOut(BaseModel):
    task: str
    ok: bool
    count: int
    skipped: int
    error_kind: Optional[str] = None
    error_message: str = ""
    warnings: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    duration_ms: int


class TaskInfoOut(BaseModel):
    name: str
    interval_seconds: int
    run_on_start: bool
    runs: int
    failures: int
    last_result: Optional[TaskResultOut] = None
    last_finished_at: Optional[datetime] = None
    next_run_time: Optional[datetime] = None


class JobsSnapshotOut(BaseModel):
    running: bool
    tasks: Dict[str, TaskInfoOut]
