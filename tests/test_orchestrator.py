"""
test_orchestrator.py — Task registry, isolated runs and pipeline wiring.

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from guardian.app.core.config import Settings
from guardian.app.core.errors import NotFoundError, StoreError
from guardian.app.core.results import ErrorKind, TaskResult
from guardian.app.jobs.orchestrator import Orchestrator
from guardian.app.jobs.schedule import build_pipeline

MINUTE = timedelta(minutes=1)


def _make_orchestrator(**funcs) -> Orchestrator:
    orch = Orchestrator()
    for name, func in funcs.items():
        orch.add_task(name, func, MINUTE)
    return orch


async def _ok():
    return TaskResult.success("ok", count=3)


async def _returns_none():
    return None


async def _crashes():
    raise RuntimeError("boom")


async def _store_down():
    raise StoreError("hazards_since", "connection refused")


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════

class TestRegistry:

    def test_duplicate_name_rejected(self):
        orch = _make_orchestrator(ok=_ok)
        with pytest.raises(ValueError):
            orch.add_task("ok", _ok, MINUTE)

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            Orchestrator().add_task("zero", _ok, timedelta(0))

    async def test_unknown_task(self):
        with pytest.raises(NotFoundError):
            await Orchestrator().run_task("nope")


# ═══════════════════════════════════════════════════════════════════════════
# Runs
# ═══════════════════════════════════════════════════════════════════════════

class TestRunTask:

    async def test_success_recorded(self):
        orch = _make_orchestrator(ok=_ok)
        result = await orch.run_task("ok")
        assert result.ok and result.count == 3
        assert orch.tasks["ok"].runs == 1
        assert orch.tasks["ok"].failures == 0

    async def test_none_return_is_success(self):
        result = await _make_orchestrator(quiet=_returns_none).run_task("quiet")
        assert result.ok and result.task == "quiet"

    async def test_exception_becomes_internal_failure(self):
        orch = _make_orchestrator(bad=_crashes)
        result = await orch.run_task("bad")
        assert not result.ok
        assert result.error_kind is ErrorKind.INTERNAL
        assert "boom" in result.error_message
        assert orch.tasks["bad"].failures == 1

    async def test_typed_error_keeps_its_kind(self):
        result = await _make_orchestrator(db=_store_down).run_task("db")
        assert result.error_kind is ErrorKind.STORE

    async def test_one_failure_does_not_stop_run_all(self):
        results = await _make_orchestrator(bad=_crashes, ok=_ok).run_all()
        assert not results["bad"].ok
        assert results["ok"].ok

    async def test_snapshot(self):
        orch = _make_orchestrator(ok=_ok)
        await orch.run_task("ok")
        snap = orch.snapshot()
        assert snap["running"] is False
        info = snap["tasks"]["ok"]
        assert info["interval_seconds"] == 60
        assert info["runs"] == 1
        assert info["last_result"]["count"] == 3
        assert info["next_run_time"] is None


class TestScheduler:

    async def test_start_runs_on_start_tasks(self):
        ran = asyncio.Event()

        async def task():
            ran.set()

        orch = Orchestrator()
        orch.add_task("tick", task, timedelta(hours=1))
        orch.start()
        try:
            assert orch.running
            await asyncio.wait_for(ran.wait(), timeout=5)
        finally:
            orch.shutdown()
        assert not orch.running

    async def test_deferred_task_waits_for_interval(self):
        orch = Orchestrator()
        orch.add_task("later", _ok, timedelta(hours=1), run_on_start=False)
        orch.start()
        try:
            assert orch.next_run_time("later") is not None
            await asyncio.sleep(0.05)
            assert orch.tasks["later"].runs == 0
        finally:
            orch.shutdown()


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline wiring
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildPipeline:

    def _build(self, store, directory, feed_client_factory, gateway_factory, **kwargs):
        client = feed_client_factory(lambda request: httpx.Response(503))
        gateway = gateway_factory(lambda request: httpx.Response(200, json={"data": []}))
        return build_pipeline(store, directory, client, gateway, **kwargs)

    def test_default_tasks(self, store, directory, feed_client_factory, gateway_factory):
        pipeline = self._build(store, directory, feed_client_factory, gateway_factory)
        assert pipeline.orchestrator.task_names == [
            "seismic", "wildfire", "flood", "tsunami", "alerts", "push", "geofence",
        ]

    def test_reference_task_only_when_supplied(
        self, store, directory, feed_client_factory, gateway_factory,
    ):
        pipeline = self._build(
            store, directory, feed_client_factory, gateway_factory,
            reference_refresh=_returns_none,
        )
        task = pipeline.orchestrator.tasks["reference"]
        assert task.interval == timedelta(hours=24)

    def test_injected_settings_reach_adapters_and_notifier(
        self, store, directory, feed_client_factory, gateway_factory,
    ):
        config = Settings(
            INGEST_BATCH_SIZE=7,
            GEOFENCE_CRITICAL_SEVERITY=0.8,
            GEOFENCE_HIGH_RADIUS_KM=4.0,
        )
        pipeline = self._build(
            store, directory, feed_client_factory, gateway_factory, config=config,
        )
        assert pipeline.seismic.batch_size == 7
        assert pipeline.wildfire.batch_size == 7
        assert pipeline.tsunami.batch_size == 7
        assert pipeline.notifier.danger_tiers["critical_severity"] == 0.8
        assert pipeline.notifier.danger_tiers["high_radius_km"] == 4.0

    async def test_feed_outage_does_not_stop_alerting(
        self, store, directory, feed_client_factory, gateway_factory,
    ):
        pipeline = self._build(store, directory, feed_client_factory, gateway_factory)
        seismic = await pipeline.orchestrator.run_task("seismic")
        alerts = await pipeline.orchestrator.run_task("alerts")
        assert not seismic.ok and seismic.error_kind is ErrorKind.FETCH
        assert alerts.ok
