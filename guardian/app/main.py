"""
FastAPI application entry point.

Run with:
    uvicorn guardian.app.main:app --reload --port 8000

Startup builds the store, the shared feed client, the push gateway and the
pipeline, then starts the scheduler (unless SCHEDULER_ENABLED is false).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from guardian.app.core.cache import close_redis
from guardian.app.core.config import settings
from guardian.app.core.database import close_db, create_engine, create_session_factory, init_db
from guardian.app.core.errors import register_error_handlers
from guardian.app.core.health import HealthStatus, run_health_check
from guardian.app.core.logging_config import get_logger, setup_logging
from guardian.app.core.middleware import RequestLoggingMiddleware

# ── Pipeline ──
from guardian.app.alerts.channels.expo_push import ExpoPushGateway
from guardian.app.hazards.memory_store import InMemoryHazardStore, InMemoryUserDirectory
from guardian.app.hazards.store import HazardStore, SqlHazardStore, SqlUserDirectory, UserDirectory
from guardian.app.ingestion.http_client import FeedClient
from guardian.app.jobs.schedule import build_pipeline

# ── API routers ──
from guardian.app.api.v1.alerts import router as alert_router
from guardian.app.api.v1.flood import router as flood_router
from guardian.app.api.v1.hazards import router as hazard_router
from guardian.app.api.v1.jobs import router as jobs_router

setup_logging()
logger = get_logger(__name__)


def create_app(
    *,
    store: Optional[HazardStore] = None,
    directory: Optional[UserDirectory] = None,
    feed_client: Optional[FeedClient] = None,
    gateway: Optional[ExpoPushGateway] = None,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application. Anything passed in is used as-is (tests inject
    in-memory stores and mock transports); the rest comes from settings.
    """
    scheduler_on = settings.SCHEDULER_ENABLED if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        engine = None
        hazard_store, user_directory = store, directory
        if hazard_store is None or user_directory is None:
            if settings.STORE_BACKEND == "memory":
                hazard_store = hazard_store or InMemoryHazardStore()
                user_directory = user_directory or InMemoryUserDirectory()
            else:
                engine = create_engine()
                if settings.DATABASE_CREATE_TABLES:
                    await init_db(engine)
                sessions = create_session_factory(engine)
                hazard_store = hazard_store or SqlHazardStore(sessions)
                user_directory = user_directory or SqlUserDirectory(sessions)

        client = feed_client or FeedClient()
        push = gateway or ExpoPushGateway()
        pipeline = build_pipeline(hazard_store, user_directory, client, push)

        app.state.store = hazard_store
        app.state.directory = user_directory
        app.state.flood_service = pipeline.flood_service
        app.state.orchestrator = pipeline.orchestrator

        if scheduler_on:
            pipeline.orchestrator.start()

        yield

        pipeline.orchestrator.shutdown()
        await client.aclose()
        await push.aclose()
        await close_redis()
        if engine is not None:
            await close_db(engine)
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Hazard aggregation and proximity alerting. Ingests USGS "
            "earthquakes, NIFC wildfires, GloFAS river flood outlooks and "
            "NOAA tsunami bulletins into one hazard store, materializes "
            "per-user alerts, and pushes proximity and family geofence "
            "notifications."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(hazard_router)
    app.include_router(alert_router)
    app.include_router(flood_router)
    app.include_router(jobs_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(
            getattr(app.state, "store", None), getattr(app.state, "orchestrator", None),
        )
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(
            getattr(app.state, "store", None), getattr(app.state, "orchestrator", None),
        )
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
