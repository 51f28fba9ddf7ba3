"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and service wiring, and the v1
API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.teamclock.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.teamclock.api.v1.router import router as v1_router
from src.teamclock.config import get_settings
from src.teamclock.core.database import close_db, get_session, init_db
from src.teamclock.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.teamclock.crm.client import DirectoryClient
from src.teamclock.identity.credentials import CredentialResolver
from src.teamclock.identity.repository import CredentialRepository, IdentityRepository
from src.teamclock.identity.session import SessionResolver
from src.teamclock.identity.sync import ReconciliationEngine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # A database that is down at startup leaves the services unset; their
    # endpoints answer 503 and /health/ready reports the failure.
    try:
        await init_db()

        identity_repository = IdentityRepository(session_factory=get_session)
        credential_resolver = CredentialResolver(
            CredentialRepository(session_factory=get_session)
        )
        app.state.identity_repository = identity_repository
        app.state.credential_resolver = credential_resolver
        app.state.session_resolver = SessionResolver(identity_repository)
        app.state.sync_engine = ReconciliationEngine(
            identities=identity_repository,
            resolver=credential_resolver,
            directory=DirectoryClient.from_settings(settings),
            email_heuristic=settings.PLACEHOLDER_EMAIL_HEURISTIC,
        )
        log.info("identity.services_initialized", environment=settings.ENVIRONMENT.value)
    except Exception:
        log.warning("identity.services_init_failed", exc_info=True)
        app.state.identity_repository = None
        app.state.credential_resolver = None
        app.state.session_resolver = None
        app.state.sync_engine = None

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Teamclock Identity API",
        version="0.1.0",
        description="Local user directory synchronized from the CRM",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware (the dashboard runs inside a CRM iframe)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins() or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
