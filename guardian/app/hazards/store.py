"""
store.py — Hazard store and user directory interfaces, SQL implementation.

Two seams are injected into every component that touches persistence:

    HazardStore    — canonical Hazard and Alert rows (read/write)
    UserDirectory  — users, saved places and family links (read-only)

═══════════════════════════════════════════════════════════════════════════
UPSERT CONTRACT
═══════════════════════════════════════════════════════════════════════════

    upsert_hazard(candidate, overwrite=True)
        absent  → INSERTED
        present → UPDATED    (severity, occurred_at, lat, lon, attributes
                              replaced; id/type untouched)

    upsert_hazard(candidate, overwrite=False)
        absent  → INSERTED
        present → UNCHANGED  (insert-if-absent)

    insert_alert(user_id, hazard_id, message)
        absent  → True
        present → False      (conflict on (user_id, hazard_id) is a no-op)

The SQL implementation relies on the dialect's native
INSERT … ON CONFLICT so that overlapping task runs (a scheduled flood sweep
and an endpoint lookup, say) converge on one row without locks.
"""

from __future__ import annotations

import abc
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guardian.app.core.errors import StoreError
from guardian.app.hazards.models import (
    AlertRecord,
    Hazard,
    HazardCandidate,
    HazardType,
    PoiKind,
    PointOfInterest,
    TrackedUser,
    UpsertOutcome,
    utc,
)
from guardian.app.hazards.tables import AlertRow, HazardRow, UserAccountRow, UserPlaceRow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Interfaces
# ═══════════════════════════════════════════════════════════════════════════

class HazardStore(abc.ABC):
    """Canonical hazard and alert persistence."""

    @abc.abstractmethod
    async def upsert_hazard(
        self, candidate: HazardCandidate, *, overwrite: bool = True,
    ) -> UpsertOutcome: ...

    @abc.abstractmethod
    async def get_hazard(self, hazard_id: int) -> Optional[Hazard]: ...

    @abc.abstractmethod
    async def get_hazard_by_source(
        self, source: str, source_event_id: str,
    ) -> Optional[Hazard]: ...

    @abc.abstractmethod
    async def hazards_since(
        self,
        cutoff: datetime,
        *,
        types: Optional[Sequence[HazardType]] = None,
        limit: Optional[int] = None,
    ) -> List[Hazard]:
        """Hazards with occurred_at >= cutoff, newest first."""

    @abc.abstractmethod
    async def insert_alert(
        self,
        user_id: int,
        hazard_id: int,
        message: str,
        created_at: Optional[datetime] = None,
    ) -> bool: ...

    @abc.abstractmethod
    async def delete_alerts_before(self, cutoff: datetime) -> int: ...

    @abc.abstractmethod
    async def list_alerts(
        self, user_id: int, since: Optional[datetime] = None,
    ) -> List[AlertRecord]:
        """A user's alerts, newest first."""

    @abc.abstractmethod
    async def count_hazards(self) -> int: ...

    @abc.abstractmethod
    async def count_alerts(self) -> int: ...


class UserDirectory(abc.ABC):
    """Read-only view of the users, places and families owned elsewhere."""

    @abc.abstractmethod
    async def points_of_interest(self) -> List[PointOfInterest]:
        """Every saved place plus every user's last live position."""

    @abc.abstractmethod
    async def tracked_users(self) -> List[TrackedUser]:
        """Users with a live position."""

    @abc.abstractmethod
    async def recent_live_positions(self, since: datetime) -> List[TrackedUser]:
        """Users whose live position was updated at or after `since`."""

    @abc.abstractmethod
    async def family_members(
        self, family_id: str, exclude_user_id: int,
    ) -> List[TrackedUser]:
        """Other members of a family that have a push token."""


# ═══════════════════════════════════════════════════════════════════════════
# Row mapping
# ═══════════════════════════════════════════════════════════════════════════

def _to_hazard(row: HazardRow) -> Hazard:
    return Hazard(
        id=row.id,
        type=HazardType(row.type),
        severity=row.severity,
        occurred_at=utc(row.occurred_at),
        lat=row.lat,
        lon=row.lon,
        source=row.source,
        source_event_id=row.source_event_id,
        attributes=dict(row.attributes or {}),
    )


def _to_alert(row: AlertRow) -> AlertRecord:
    return AlertRecord(
        id=row.id,
        user_id=row.user_id,
        hazard_id=row.hazard_id,
        message=row.message,
        created_at=utc(row.created_at),
    )


def _to_user(row: UserAccountRow) -> TrackedUser:
    return TrackedUser(
        id=row.id,
        name=row.name or "",
        last_lat=row.last_lat,
        last_lon=row.last_lon,
        push_token=row.push_token,
        family_id=row.family_id,
        last_location_update=(
            utc(row.last_location_update) if row.last_location_update else None
        ),
    )


def _insert_for(session: AsyncSession, table):
    """Dialect-native INSERT supporting ON CONFLICT."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise StoreError("insert", f"unsupported dialect '{dialect}'")


# ═══════════════════════════════════════════════════════════════════════════
# SQL implementation
# ═══════════════════════════════════════════════════════════════════════════

class _SqlBase:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Store %s failed: %s", operation, exc)
            raise StoreError(operation, str(exc)) from exc


class SqlHazardStore(_SqlBase, HazardStore):
    """HazardStore over SQLAlchemy async (PostgreSQL or SQLite)."""

    async def upsert_hazard(
        self, candidate: HazardCandidate, *, overwrite: bool = True,
    ) -> UpsertOutcome:
        values = {
            "type": candidate.type.value,
            "severity": candidate.severity,
            "occurred_at": candidate.occurred_at,
            "lat": candidate.lat,
            "lon": candidate.lon,
            "source": candidate.source,
            "source_event_id": candidate.source_event_id,
            "attributes": candidate.attributes,
        }
        async with self._session("upsert_hazard") as session:
            stmt = _insert_for(session, HazardRow.__table__).values(**values)
            conflict = ["source", "source_event_id"]

            if not overwrite:
                result = await session.execute(
                    stmt.on_conflict_do_nothing(index_elements=conflict)
                )
                return UpsertOutcome.INSERTED if result.rowcount else UpsertOutcome.UNCHANGED

            existing = await session.scalar(
                select(HazardRow.id).where(
                    HazardRow.source == candidate.source,
                    HazardRow.source_event_id == candidate.source_event_id,
                )
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict,
                set_={
                    "severity": stmt.excluded.severity,
                    "occurred_at": stmt.excluded.occurred_at,
                    "lat": stmt.excluded.lat,
                    "lon": stmt.excluded.lon,
                    "attributes": stmt.excluded.attributes,
                },
            )
            await session.execute(stmt)
            return UpsertOutcome.UPDATED if existing is not None else UpsertOutcome.INSERTED

    async def get_hazard(self, hazard_id: int) -> Optional[Hazard]:
        async with self._session("get_hazard") as session:
            row = await session.get(HazardRow, hazard_id)
            return _to_hazard(row) if row else None

    async def get_hazard_by_source(
        self, source: str, source_event_id: str,
    ) -> Optional[Hazard]:
        async with self._session("get_hazard_by_source") as session:
            row = await session.scalar(
                select(HazardRow).where(
                    HazardRow.source == source,
                    HazardRow.source_event_id == source_event_id,
                )
            )
            return _to_hazard(row) if row else None

    async def hazards_since(
        self,
        cutoff: datetime,
        *,
        types: Optional[Sequence[HazardType]] = None,
        limit: Optional[int] = None,
    ) -> List[Hazard]:
        query = (
            select(HazardRow)
            .where(HazardRow.occurred_at >= utc(cutoff))
            .order_by(HazardRow.occurred_at.desc(), HazardRow.id.desc())
        )
        if types:
            query = query.where(HazardRow.type.in_([HazardType(t).value for t in types]))
        if limit:
            query = query.limit(limit)
        async with self._session("hazards_since") as session:
            rows = (await session.scalars(query)).all()
            return [_to_hazard(r) for r in rows]

    async def insert_alert(
        self,
        user_id: int,
        hazard_id: int,
        message: str,
        created_at: Optional[datetime] = None,
    ) -> bool:
        created_at = utc(created_at) if created_at else datetime.now(timezone.utc)
        async with self._session("insert_alert") as session:
            stmt = (
                _insert_for(session, AlertRow.__table__)
                .values(
                    user_id=user_id,
                    hazard_id=hazard_id,
                    message=message,
                    created_at=created_at,
                )
                .on_conflict_do_nothing(index_elements=["user_id", "hazard_id"])
            )
            result = await session.execute(stmt)
            return bool(result.rowcount)

    async def delete_alerts_before(self, cutoff: datetime) -> int:
        async with self._session("delete_alerts_before") as session:
            result = await session.execute(
                delete(AlertRow).where(AlertRow.created_at < utc(cutoff))
            )
            return result.rowcount or 0

    async def list_alerts(
        self, user_id: int, since: Optional[datetime] = None,
    ) -> List[AlertRecord]:
        query = (
            select(AlertRow)
            .where(AlertRow.user_id == user_id)
            .order_by(AlertRow.created_at.desc(), AlertRow.id.desc())
        )
        if since is not None:
            query = query.where(AlertRow.created_at >= utc(since))
        async with self._session("list_alerts") as session:
            return [_to_alert(r) for r in (await session.scalars(query)).all()]

    async def count_hazards(self) -> int:
        async with self._session("count_hazards") as session:
            return await session.scalar(select(func.count()).select_from(HazardRow)) or 0

    async def count_alerts(self) -> int:
        async with self._session("count_alerts") as session:
            return await session.scalar(select(func.count()).select_from(AlertRow)) or 0


class SqlUserDirectory(_SqlBase, UserDirectory):
    """UserDirectory over the user_account / user_place tables."""

    _with_position = (
        UserAccountRow.last_lat.is_not(None),
        UserAccountRow.last_lon.is_not(None),
    )

    async def points_of_interest(self) -> List[PointOfInterest]:
        async with self._session("points_of_interest") as session:
            places = (await session.scalars(select(UserPlaceRow))).all()
            users = (
                await session.scalars(select(UserAccountRow).where(*self._with_position))
            ).all()

        pois = [
            PointOfInterest(
                user_id=p.user_id, lat=p.lat, lon=p.lon,
                kind=PoiKind.SAVED, place_id=p.id,
            )
            for p in places
        ]
        pois.extend(
            PointOfInterest(user_id=u.id, lat=u.last_lat, lon=u.last_lon, kind=PoiKind.LIVE)
            for u in users
        )
        return pois

    async def tracked_users(self) -> List[TrackedUser]:
        async with self._session("tracked_users") as session:
            rows = (
                await session.scalars(
                    select(UserAccountRow).where(*self._with_position).order_by(UserAccountRow.id)
                )
            ).all()
            return [_to_user(r) for r in rows]

    async def recent_live_positions(self, since: datetime) -> List[TrackedUser]:
        query = (
            select(UserAccountRow)
            .where(*self._with_position)
            .where(UserAccountRow.last_location_update >= utc(since))
            .order_by(UserAccountRow.id)
        )
        async with self._session("recent_live_positions") as session:
            return [_to_user(r) for r in (await session.scalars(query)).all()]

    async def family_members(
        self, family_id: str, exclude_user_id: int,
    ) -> List[TrackedUser]:
        query = (
            select(UserAccountRow)
            .where(
                UserAccountRow.family_id == family_id,
                UserAccountRow.id != exclude_user_id,
                UserAccountRow.push_token.is_not(None),
            )
            .order_by(UserAccountRow.id)
        )
        async with self._session("family_members") as session:
            return [_to_user(r) for r in (await session.scalars(query)).all()]
