"""
schedule.py — Default pipeline wiring and cadences.

    Task        Runs                               Every
    ─────────   ────────────────────────────────   ─────────
    seismic     SeismicAdapter.run                 5 min
    wildfire    WildfireAdapter.run                15 min
    flood       FloodAdapter.run                   15 min
    tsunami     TsunamiAdapter.run                 15 min
    reference   caller-supplied refresh            24 h      (optional)
    alerts      AlertGenerator.run                 1 min
    push        ProximityNotifier.run_direct_pass  1 min
    geofence    ProximityNotifier.run_geofence_pass 1 min

Reference data (shelters, hospitals, fire stations) belongs to the CRUD
layer; it is only scheduled when that layer hands over a refresh callable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from guardian.app.alerts.channels.expo_push import ExpoPushGateway
from guardian.app.alerts.generator import AlertGenerator
from guardian.app.alerts.notifier import ProximityNotifier
from guardian.app.core.config import Settings, settings as default_settings
from guardian.app.hazards.store import HazardStore, UserDirectory
from guardian.app.ingestion.flood import FloodAdapter, FloodRiskService
from guardian.app.ingestion.http_client import FeedClient
from guardian.app.ingestion.seismic import SeismicAdapter
from guardian.app.ingestion.tsunami import TsunamiAdapter
from guardian.app.ingestion.wildfire import WildfireAdapter
from guardian.app.jobs.orchestrator import Orchestrator


@dataclass
class Pipeline:
    seismic: SeismicAdapter
    wildfire: WildfireAdapter
    flood_service: FloodRiskService
    flood: FloodAdapter
    tsunami: TsunamiAdapter
    alerts: AlertGenerator
    notifier: ProximityNotifier
    orchestrator: Orchestrator


def build_pipeline(
    store: HazardStore,
    directory: UserDirectory,
    client: FeedClient,
    gateway: ExpoPushGateway,
    *,
    reference_refresh: Optional[Callable[[], Awaitable[object]]] = None,
    config: Optional[Settings] = None,
) -> Pipeline:
    cfg = config or default_settings

    seismic = SeismicAdapter(
        store, client, feed_url=cfg.USGS_FEED_URL, batch_size=cfg.INGEST_BATCH_SIZE,
    )
    wildfire = WildfireAdapter(
        store, client,
        url=cfg.NIFC_FEATURE_SERVICE_URL,
        record_limit=cfg.WILDFIRE_RECORD_LIMIT,
        batch_size=cfg.INGEST_BATCH_SIZE,
    )
    flood_service = FloodRiskService(
        store, client,
        url=cfg.FLOOD_API_URL,
        forecast_days=cfg.FLOOD_FORECAST_DAYS,
        cache_ttl=cfg.FLOOD_OUTLOOK_TTL,
    )
    flood = FloodAdapter(
        flood_service, directory,
        sentinels=cfg.FLOOD_SENTINELS,
        active_hours=cfg.FLOOD_ACTIVE_USER_HOURS,
        spacing_seconds=cfg.FLOOD_REQUEST_SPACING_SECONDS,
    )
    tsunami = TsunamiAdapter(
        store, client, feeds=cfg.TSUNAMI_FEEDS, batch_size=cfg.INGEST_BATCH_SIZE,
    )
    alerts = AlertGenerator(
        store, directory,
        lookback_minutes=cfg.ALERT_LOOKBACK_MINUTES,
        match_radius_km=cfg.ALERT_MATCH_RADIUS_KM,
        radius_mode=cfg.ALERT_RADIUS_MODE,
        ttl_hours=cfg.ALERT_TTL_HOURS,
    )
    notifier = ProximityNotifier(
        store, directory, gateway,
        push_window_minutes=cfg.PUSH_WINDOW_MINUTES,
        push_radius_km=cfg.PUSH_RADIUS_KM,
        geofence_window_hours=cfg.GEOFENCE_WINDOW_HOURS,
        critical_severity=cfg.GEOFENCE_CRITICAL_SEVERITY,
        critical_radius_km=cfg.GEOFENCE_CRITICAL_RADIUS_KM,
        high_severity=cfg.GEOFENCE_HIGH_SEVERITY,
        high_radius_km=cfg.GEOFENCE_HIGH_RADIUS_KM,
    )

    orch = Orchestrator()
    orch.add_task("seismic", seismic.run, timedelta(minutes=cfg.SEISMIC_INTERVAL_MINUTES))
    orch.add_task("wildfire", wildfire.run, timedelta(minutes=cfg.WILDFIRE_INTERVAL_MINUTES))
    orch.add_task("flood", flood.run, timedelta(minutes=cfg.FLOOD_INTERVAL_MINUTES))
    orch.add_task("tsunami", tsunami.run, timedelta(minutes=cfg.TSUNAMI_INTERVAL_MINUTES))
    if reference_refresh is not None:
        orch.add_task("reference", reference_refresh, timedelta(hours=cfg.REFERENCE_INTERVAL_HOURS))
    orch.add_task("alerts", alerts.run, timedelta(minutes=cfg.ALERTS_INTERVAL_MINUTES))
    orch.add_task("push", notifier.run_direct_pass, timedelta(minutes=cfg.PUSH_INTERVAL_MINUTES))
    orch.add_task(
        "geofence", notifier.run_geofence_pass, timedelta(minutes=cfg.GEOFENCE_INTERVAL_MINUTES),
    )

    return Pipeline(
        seismic=seismic,
        wildfire=wildfire,
        flood_service=flood_service,
        flood=flood,
        tsunami=tsunami,
        alerts=alerts,
        notifier=notifier,
        orchestrator=orch,
    )
