"""
results.py — Typed outcome of a single pipeline task run.

Every adapter, the alert generator and both notification passes return a
TaskResult instead of raising, so the orchestrator can aggregate outcomes:

    TaskResult.success("seismic", count=12)       → Ok(12)
    TaskResult.failure("tsunami", ErrorKind.PARSE, "bad XML")  → Err(PARSE)

Callers check `ok` before reading `count`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Failure taxonomy for a task run."""
    FETCH    = "fetch"     # upstream network / HTTP failure
    PARSE    = "parse"     # upstream payload unreadable
    STORE    = "store"     # database failure
    GATEWAY  = "gateway"   # push gateway failure
    INTERNAL = "internal"  # anything else


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TaskResult:
    """
    Outcome of one task run.

    Attributes
    ----------
    task : str
        Task name (e.g. "wildfire", "alerts").
    ok : bool
        False when the run as a whole failed.
    count : int
        Records produced (hazards upserted, alerts created, pushes sent).
    skipped : int
        Records dropped or ignored (malformed, duplicate, failed individually).
    error_kind : ErrorKind | None
        Set when `ok` is False.
    warnings : list of str
        Partial failures that did not fail the run (one feed of several,
        one hazard's push, one record's upsert).
    details : dict
        Task-specific counters.
    """
    task: str
    ok: bool = True
    count: int = 0
    skipped: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: str = ""
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_now)
    duration_ms: int = 0

    @classmethod
    def success(cls, task: str, count: int = 0, **kwargs: Any) -> "TaskResult":
        return cls(task=task, ok=True, count=count, **kwargs)

    @classmethod
    def failure(
        cls,
        task: str,
        kind: ErrorKind,
        message: str = "",
        **kwargs: Any,
    ) -> "TaskResult":
        return cls(task=task, ok=False, error_kind=kind, error_message=message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "ok": self.ok,
            "count": self.count,
            "skipped": self.skipped,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "warnings": list(self.warnings),
            "details": dict(self.details),
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
