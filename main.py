"""FastAPI application entry point.

Wires together: middleware, exception handlers, routes, metrics.
Config is validated at import; missing Fitbit credentials are reported at startup.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from shared.config import settings
from shared.exceptions import ProblemDetailError, ProviderNotConfiguredError
from shared.logging import configure_logging
from shared.metrics import create_metrics_app
from shared.middleware import (
    RequestIdMiddleware,
    http_exception_handler,
    problem_detail_handler,
    request_validation_handler,
)
from integrations.adapters.fitbit_oauth import FitbitOAuthClient
from integrations.api import router as integrations_router
from integrations.scheduler import scheduler

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    configure_logging(json_output=True)
    logger.info(
        "app_starting",
        database_url=settings.database_url.split("@")[-1],  # hide credentials
        sync_interval_minutes=settings.sync_interval_minutes,
    )
    try:
        FitbitOAuthClient().ensure_configured()
    except ProviderNotConfiguredError as exc:
        # The API still serves status and sync; only new connections are refused
        logger.warning("fitbit_not_configured", detail=exc.detail)
    if settings.session_secret == "change-me":
        logger.warning("session_secret_is_default")
    yield
    await scheduler.stop_all()
    logger.info("app_shutting_down")


app = FastAPI(
    title="Health Journal Integrations API",
    description=(
        "Connects health-journal users to Fitbit over OAuth2 and synchronizes "
        "daily activity, weight, food and sleep into canonical records."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Outermost last: the session cookie is loaded before the request id is bound
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    max_age=settings.session_max_age_seconds,
    same_site="lax",
)

# All errors emit application/problem+json (RFC 9457)
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

app.include_router(integrations_router)

metrics_app = create_metrics_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "ok"}
