"""
FastAPI application factory and configuration.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from chatserver.core.config import Settings, get_settings
from chatserver.core.database import get_session_factory, init_db
from chatserver.core.errors import IngestionInProgressError, StoreUnavailableError
from chatserver.core.logging import setup_logging, get_logger
from chatserver.api import conversations, payloads, webhook, realtime, health, metrics
from chatserver.api.deps import ingestion_lock
from chatserver.api.metrics import MetricsMiddleware, record_ingestion, set_startup_time
from chatserver.ingest.orchestrator import IngestionOrchestrator
from chatserver.ingest.reader import PayloadReader
from chatserver.schemas.ingest import IngestionReport
from chatserver.services.message_store import MessageStore


def run_startup_ingestion(settings: Settings, session_factory: sessionmaker) -> Optional[IngestionReport]:
    """Process the payload directory once, when `ingest_on_startup` is set."""
    if not settings.ingest_on_startup:
        return None

    session = session_factory()
    orchestrator = IngestionOrchestrator(MessageStore(session), PayloadReader(settings.payload_dir), lock=ingestion_lock)
    try:
        return orchestrator.run()
    finally:
        if orchestrator.report is not None:
            record_ingestion(orchestrator.report)
        session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger = get_logger(__name__)
    logger.info("Starting application...")

    init_db()
    logger.info("Database initialized")

    set_startup_time()
    run_startup_ingestion(get_settings(), get_session_factory())

    yield

    logger.info("Shutting down application...")


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Message store unavailable"})


async def ingestion_in_progress_handler(request: Request, exc: IngestionInProgressError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    setup_logging(settings)
    logger = get_logger(__name__)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Chat backend storing WhatsApp webhook messages and relaying updates in real time",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.add_exception_handler(IngestionInProgressError, ingestion_in_progress_handler)

    app.include_router(conversations.router)
    app.include_router(payloads.router)
    app.include_router(webhook.router)
    app.include_router(realtime.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    logger.info(
        "Application created",
        extra={
            "extra_data": {
                "app_name": settings.app_name,
                "version": settings.app_version,
                "debug": settings.debug,
            }
        }
    )

    return app


# Create the application instance
app = create_app()
