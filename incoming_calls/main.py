from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from incoming_calls.auth import WebhookAuthenticator
from incoming_calls.config import Settings, settings as default_settings
from incoming_calls.db import build_engine, build_session_factory
from incoming_calls.logging_config import setup_logging
from incoming_calls.middleware.correlation import CorrelationIdMiddleware
from incoming_calls.routers import health, incoming_calls
from incoming_calls.services.call_feed import CallFeedService
from incoming_calls.services.directory import DirectoryLookup, SqlDirectoryLookup

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, json_logs=settings.environment != "development")
    logger.info("incoming_calls_starting", environment=settings.environment)
    yield
    app.state.call_feed.shutdown()
    if app.state.db_engine is not None:
        await app.state.db_engine.dispose()
    logger.info("incoming_calls_shutting_down")


def create_app(
    settings: Settings | None = None,
    directory: DirectoryLookup | None = None,
) -> FastAPI:
    settings = settings or default_settings

    engine = None
    if directory is None and settings.database_url:
        engine = build_engine(settings.database_url)
        directory = SqlDirectoryLookup(build_session_factory(engine))

    app = FastAPI(
        title="Incoming Calls Feed API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_engine = engine
    app.state.call_feed = CallFeedService(settings, directory=directory)
    app.state.webhook_authenticator = WebhookAuthenticator(settings.pbx_webhook_secret)

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(incoming_calls.router)
    return app


app = create_app()
