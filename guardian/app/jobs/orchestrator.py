"""
orchestrator.py — Owns the pipeline's named tasks and their cadences.

═══════════════════════════════════════════════════════════════════════════
TASK MODEL
═══════════════════════════════════════════════════════════════════════════

A ScheduledTask is (name, coroutine function, interval, run_on_start).
The coroutine returns a TaskResult; the orchestrator never lets one task's
failure reach another:

    run_task(name)   runs once, now, and never raises
                     (exceptions become Err(INTERNAL) or the error's kind)
    start()          schedules every task on an APScheduler interval
                     trigger, firing immediately when run_on_start
    shutdown()       stops future ticks; in-flight runs finish on their own

Tasks do not coordinate with each other. Overlapping runs of different
tasks are safe because every write is idempotent at the store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from guardian.app.core.errors import NotFoundError, classify_exception
from guardian.app.core.logging_config import log_context
from guardian.app.core.results import TaskResult

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    name: str
    func: TaskFunc
    interval: timedelta
    run_on_start: bool = True

    # Run statistics
    runs: int = 0
    failures: int = 0
    last_result: Optional[TaskResult] = None
    last_finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": int(self.interval.total_seconds()),
            "run_on_start": self.run_on_start,
            "runs": self.runs,
            "failures": self.failures,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "last_finished_at": (
                self.last_finished_at.isoformat() if self.last_finished_at else None
            ),
        }


@dataclass
class Orchestrator:
    """
    Usage:
        orch = Orchestrator()
        orch.add_task("seismic", seismic.run, timedelta(minutes=5))
        orch.start()                      # inside a running event loop
        result = await orch.run_task("seismic")
        orch.shutdown()
    """
    tasks: Dict[str, ScheduledTask] = field(default_factory=dict)
    scheduler: Optional[AsyncIOScheduler] = None

    def add_task(
        self,
        name: str,
        func: TaskFunc,
        interval: timedelta,
        *,
        run_on_start: bool = True,
    ) -> ScheduledTask:
        if name in self.tasks:
            raise ValueError(f"Task '{name}' already registered")
        if interval.total_seconds() <= 0:
            raise ValueError(f"Task '{name}' needs a positive interval")
        task = ScheduledTask(name, func, interval, run_on_start)
        self.tasks[name] = task
        return task

    @property
    def task_names(self) -> List[str]:
        return list(self.tasks)

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def run_task(self, name: str) -> TaskResult:
        """Run one task once. Unknown names raise NotFoundError; nothing else raises."""
        task = self.tasks.get(name)
        if task is None:
            raise NotFoundError("task", name=name)

        with log_context(task=name):
            start = time.monotonic()
            try:
                result = await task.func()
                if not isinstance(result, TaskResult):
                    # Plain callables (reference refresh) report no counts
                    result = TaskResult.success(name)
            except Exception as exc:
                kind = classify_exception(exc)
                logger.exception("Task %s raised", name, extra={"task": name, "error_kind": kind.value})
                result = TaskResult.failure(name, kind, str(exc))

            if not result.duration_ms:
                result.duration_ms = int((time.monotonic() - start) * 1000)

            task.runs += 1
            if not result.ok:
                task.failures += 1
            task.last_result = result
            task.last_finished_at = datetime.now(timezone.utc)

            logger.log(
                logging.INFO if result.ok else logging.WARNING,
                "Task %s %s: count=%d skipped=%d (%dms)%s",
                name, "ok" if result.ok else "failed", result.count, result.skipped,
                result.duration_ms,
                f" [{result.error_kind.value}] {result.error_message}" if not result.ok else "",
                extra={
                    "task": name,
                    "count": result.count,
                    "skipped": result.skipped,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    async def run_all(self) -> Dict[str, TaskResult]:
        """Run every task once, in registration order."""
        return {name: await self.run_task(name) for name in self.tasks}

    def start(self) -> None:
        """Schedule all tasks. Must be called with an event loop running."""
        if self.running:
            return
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        for task in self.tasks.values():
            kwargs: Dict[str, Any] = {}
            if task.run_on_start:
                kwargs["next_run_time"] = datetime.now(timezone.utc)  # run immediately
            self.scheduler.add_job(
                self.run_task,
                IntervalTrigger(seconds=int(task.interval.total_seconds())),
                args=[task.name],
                id=task.name,
                name=task.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **kwargs,
            )
        self.scheduler.start()
        logger.info("Scheduler started with %d tasks: %s", len(self.tasks), ", ".join(self.tasks))

    def shutdown(self) -> None:
        """Stop future ticks without waiting for in-flight runs."""
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    def next_run_time(self, name: str) -> Optional[datetime]:
        if not self.running:
            return None
        job = self.scheduler.get_job(name)
        return job.next_run_time if job else None

    def snapshot(self) -> Dict[str, Any]:
        tasks = {}
        for name, task in self.tasks.items():
            info = task.to_dict()
            nxt = self.next_run_time(name)
            info["next_run_time"] = nxt.isoformat() if nxt else None
            tasks[name] = info
        return {"running": self.running, "tasks": tasks}
