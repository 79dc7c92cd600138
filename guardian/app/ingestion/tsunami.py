"""
tsunami.py — Tsunami bulletin ingestion from the NOAA warning centres.

Feeds (Atom):
    NOAA NTWC  — National Tsunami Warning Center (PAAQAtom.xml)
    NOAA PTWC  — Pacific Tsunami Warning Center (PHEBAtom.xml)

Each feed is fetched and parsed independently: one unreachable or malformed
feed is reported as a warning while the others are still ingested. The run
fails only when every feed fails.

Severity by bulletin title (case-insensitive, first match wins):

    "warning"      → 0.9
    "advisory"     → 0.6
    "watch"        → 0.4
    "information"  → 0.2
    anything else  → 0.3
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from guardian.app.core.config import settings
from guardian.app.core.errors import GuardianError
from guardian.app.core.results import TaskResult
from guardian.app.hazards.models import HazardCandidate, HazardType
from guardian.app.ingestion.atom import BulletinEntry, parse_atom_bulletins
from guardian.app.ingestion.base import SourceAdapter, UpsertTally

logger = logging.getLogger(__name__)

SEVERITY_KEYWORDS = (
    ("warning", 0.9),
    ("advisory", 0.6),
    ("watch", 0.4),
    ("information", 0.2),
)
DEFAULT_SEVERITY = 0.3


def tsunami_severity(title: str) -> float:
    lowered = title.lower()
    for keyword, severity in SEVERITY_KEYWORDS:
        if keyword in lowered:
            return severity
    return DEFAULT_SEVERITY


def bulletin_to_candidate(entry: BulletinEntry, source: str) -> Optional[HazardCandidate]:
    """Bulletins without a point carry no location and are not ingested."""
    if not entry.has_point:
        return None
    return HazardCandidate(
        type=HazardType.TSUNAMI,
        severity=tsunami_severity(entry.title),
        occurred_at=entry.updated,
        lat=entry.lat,
        lon=entry.lon,
        source=source,
        source_event_id=entry.id,
        attributes={
            "title": entry.title,
            "summary": entry.summary,
            "url": entry.id,
        },
    )


class TsunamiAdapter(SourceAdapter):

    name = "tsunami"

    def __init__(
        self,
        store,
        client,
        *,
        feeds: Sequence[Tuple[str, str]] = tuple(settings.TSUNAMI_FEEDS),
        batch_size: int = settings.INGEST_BATCH_SIZE,
    ):
        super().__init__(store, client, batch_size=batch_size)
        self.feeds = list(feeds)

    async def ingest_feed(self, name: str, url: str, tally: UpsertTally) -> int:
        """Ingest one feed; returns the number of entries dropped."""
        xml_text = await self.client.get_text(url, service=name)
        entries = parse_atom_bulletins(xml_text, source=name, now=datetime.now(timezone.utc))

        candidates: List[HazardCandidate] = []
        for entry in entries:
            candidate = bulletin_to_candidate(entry, name)
            if candidate is not None:
                candidates.append(candidate)

        await self.upsert_all(candidates, tally)
        logger.info(
            "%s: %d bulletins, %d with location", name, len(entries), len(candidates),
            extra={"task": self.name, "source": name},
        )
        return len(entries) - len(candidates)

    async def _run(self) -> TaskResult:
        tally = UpsertTally()
        dropped = 0
        warnings: List[str] = []
        last_error: Optional[GuardianError] = None

        for name, url in self.feeds:
            try:
                dropped += await self.ingest_feed(name, url, tally)
            except GuardianError as exc:
                last_error = exc
                warnings.append(f"{name}: {exc.message}")
                logger.warning(
                    "Tsunami feed %s failed: %s", name, exc.message,
                    extra={"task": self.name, "source": name, "error_kind": exc.kind.value},
                )

        if last_error is not None and len(warnings) == len(self.feeds):
            return TaskResult.failure(
                self.name, last_error.kind, "; ".join(warnings), warnings=warnings,
            )
        return TaskResult.success(
            self.name,
            count=tally.written,
            skipped=dropped + tally.failed,
            warnings=warnings + tally.errors,
            details={"feeds": len(self.feeds), **tally.to_dict()},
        )
