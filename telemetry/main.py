"""Application factory wiring the telemetry components together."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from telemetry.application.use_cases import (
    ActivityAggregationService,
    ActivityRecorder,
    DataRetentionService,
    EndpointPolicy,
    RecordingOptions,
    RetentionScheduler,
    RetentionWindows,
)
from telemetry.config import Settings, get_settings
from telemetry.infrastructure.archive import ArchiveSink, JsonLinesArchiveSink
from telemetry.infrastructure.database import (
    build_engine,
    build_session_factory,
    initialize_database,
)
from telemetry.infrastructure.geolocation import StaticLocationResolver
from telemetry.infrastructure.repositories import (
    ActivityRecordRepository,
    RetentionAuditRepository,
)
from telemetry.infrastructure.security import TokenActorResolver
from telemetry.interfaces.api.middleware import ActivityTrackingMiddleware
from telemetry.interfaces.api.routes import register_routes
from telemetry.utils import resolve_timezone

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the tables and start the scheduler; drain pending writes on shutdown."""

    state = app.state
    initialize_database(state.engine)
    if state.settings.scheduler_enabled:
        state.scheduler.start()
    try:
        yield
    finally:
        await state.scheduler.stop()
        await state.recorder.drain()
        state.engine.dispose()


def create_app(
    settings: Settings | None = None,
    *,
    archive_sink: ArchiveSink | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    logging.getLogger("telemetry").setLevel(settings.log_level.upper())
    tz = resolve_timezone(settings.app_timezone)

    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    activity_repository = ActivityRecordRepository(session_factory)
    audit_repository = RetentionAuditRepository(session_factory)

    recorder = ActivityRecorder(
        activity_repository,
        policy=EndpointPolicy.from_settings(settings),
        options=RecordingOptions.from_settings(settings),
        location_resolver=StaticLocationResolver(
            settings.location_table, enabled=settings.track_location
        ),
    )
    aggregation_service = ActivityAggregationService(
        activity_repository, tz=tz, page_size=settings.aggregation_page_size
    )
    retention_service = DataRetentionService(
        activity_repository,
        aggregation_service,
        archive_sink=archive_sink or JsonLinesArchiveSink(settings.archive_directory),
        audit_repository=audit_repository,
        windows=RetentionWindows.from_settings(settings),
        batch_size=settings.retention_batch_size,
        tz=tz,
    )
    scheduler = RetentionScheduler.for_service(retention_service, settings, tz=tz)

    app = FastAPI(title="Storefront telemetry", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.activity_repository = activity_repository
    app.state.audit_repository = audit_repository
    app.state.recorder = recorder
    app.state.aggregation_service = aggregation_service
    app.state.retention_service = retention_service
    app.state.scheduler = scheduler

    app.add_middleware(
        ActivityTrackingMiddleware,
        recorder=recorder,
        actor_resolver=TokenActorResolver(settings.secret_key),
    )
    register_routes(app)
    logger.debug("Telemetry application created for %s", settings.database_url.split("@")[-1])
    return app


__all__ = ["create_app", "lifespan"]
