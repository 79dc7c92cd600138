"""
base.py — Shared run/upsert scaffolding for source adapters.

Each adapter implements `_run()` and lets `run()` turn provider failures
into a failed TaskResult. Per-record failures are handled inside
`upsert_batch` and never fail the run. Candidates are written in batches of
INGEST_BATCH_SIZE so a large feed never opens more store sessions than that
at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from guardian.app.core.config import settings
from guardian.app.core.errors import GuardianError
from guardian.app.core.results import ErrorKind, TaskResult
from guardian.app.hazards.models import HazardCandidate, UpsertOutcome
from guardian.app.hazards.store import HazardStore
from guardian.app.ingestion.http_client import FeedClient

logger = logging.getLogger(__name__)


@dataclass
class UpsertTally:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    def add(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.INSERTED:
            self.inserted += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def to_dict(self) -> dict:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


async def upsert_batch(
    store: HazardStore,
    candidates: Sequence[HazardCandidate],
    tally: UpsertTally,
    *,
    overwrite: bool = True,
) -> None:
    """Upsert a batch concurrently; a failed upsert is counted, not raised."""
    outcomes = await asyncio.gather(
        *(store.upsert_hazard(c, overwrite=overwrite) for c in candidates),
        return_exceptions=True,
    )
    for candidate, outcome in zip(candidates, outcomes):
        if isinstance(outcome, BaseException):
            tally.failed += 1
            tally.errors.append(f"{candidate.source_event_id}: {outcome}")
            logger.error(
                "Upsert failed for %s/%s: %s",
                candidate.source, candidate.source_event_id, outcome,
                extra={"source": candidate.source},
            )
        else:
            tally.add(outcome)


async def upsert_in_batches(
    store: HazardStore,
    candidates: Sequence[HazardCandidate],
    tally: UpsertTally,
    *,
    batch_size: int,
    overwrite: bool = True,
) -> None:
    """Upsert in fixed-size batches; at most `batch_size` writes in flight."""
    size = max(1, batch_size)
    for i in range(0, len(candidates), size):
        await upsert_batch(store, candidates[i:i + size], tally, overwrite=overwrite)


class SourceAdapter:
    """Base class: `run()` never raises, `_run()` does the work."""

    name: str = "source"

    def __init__(
        self,
        store: HazardStore,
        client: FeedClient,
        *,
        batch_size: int = settings.INGEST_BATCH_SIZE,
    ):
        self.store = store
        self.client = client
        self.batch_size = max(1, batch_size)

    async def upsert_all(self, candidates: Sequence[HazardCandidate], tally: UpsertTally) -> None:
        await upsert_in_batches(self.store, candidates, tally, batch_size=self.batch_size)

    async def _run(self) -> TaskResult:
        raise NotImplementedError

    async def run(self) -> TaskResult:
        start = time.monotonic()
        try:
            result = await self._run()
        except GuardianError as exc:
            logger.warning(
                "%s ingest failed: %s", self.name, exc.message,
                extra={"task": self.name, "error_kind": exc.kind.value},
            )
            result = TaskResult.failure(self.name, exc.kind, exc.message)
        except Exception as exc:
            logger.exception("%s ingest crashed", self.name, extra={"task": self.name})
            result = TaskResult.failure(self.name, ErrorKind.INTERNAL, str(exc))
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result
