from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from minerpay import db
from minerpay.config import AppInfo, Settings, get_settings
from minerpay.core.exceptions import (
    ConfigurationError,
    GatewayError,
    PaymentError,
    PersistenceError,
)
from minerpay.core.logging import get_logger, setup_logging
from minerpay.core.runtime_state import set_scheduler_active
import minerpay.models  # noqa: F401  registers tables
from minerpay.routers import get_api_router
from minerpay.services.reconciliation import reconcile_once
from minerpay.utils.errors import error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}

# Shown to buyers in place of internal detail; retrying is always safe.
CHECKOUT_RETRY_MESSAGE = "We couldn't start your checkout. Please try again in a moment."


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Stripe-Signature"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_webhook_secrets(settings: Settings) -> None:
    """Fail fast when webhook secrets are missing outside dev."""

    env_lower = settings.app_env.lower()
    if not settings.webhook_secrets:
        if env_lower != "dev":
            logger.error(
                "Stripe webhook secrets are missing; configure STRIPE_WEBHOOK_SECRET before startup.",
                extra={"env": settings.app_env},
            )
            raise RuntimeError("Missing Stripe webhook secrets in non-dev environment.")
        logger.warning("Stripe webhook secrets are not configured; allowed in dev only.", extra={"env": settings.app_env})
    elif settings.STRIPE_WEBHOOK_SECRET is None:
        logger.warning(
            "Primary webhook secret unset; relying on STRIPE_WEBHOOK_SECRET_NEXT only.",
            extra={"env": settings.app_env},
        )


def _start_scheduler(settings: Settings) -> None:
    global scheduler
    scheduler = AsyncIOScheduler()
    scheduler.start()
    scheduler.add_job(
        reconcile_once,
        "interval",
        minutes=settings.RECONCILIATION_INTERVAL_MINUTES,
        id="settlement-reconciliation",
        replace_existing=True,
    )
    set_scheduler_active(True)
    if settings.app_env.lower() != "dev":
        logger.warning(
            "APScheduler enabled; ensure only one runner has SCHEDULER_ENABLED=1 in production.",
            extra={"env": settings.app_env},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_webhook_secrets(settings)

    db.init_engine()
    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    set_scheduler_active(False)
    if settings.SCHEDULER_ENABLED:
        _start_scheduler(settings)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


def _is_checkout_request(request: Request) -> bool:
    return request.url.path in {"/checkout-sessions", "/rental-payment-intents"}


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    details: dict[str, Any] = dict(exc.details)
    if isinstance(exc, PersistenceError):
        logger.error(
            "Persistence failure after gateway success",
            extra={"reconciliation_candidate": True, "path": request.url.path, **exc.external_ids},
        )
        details = {}
    message = exc.message
    if isinstance(exc, (GatewayError, PersistenceError, ConfigurationError)):
        message = exc.public_message
        if _is_checkout_request(request):
            message = CHECKOUT_RETRY_MESSAGE
        details = {"retryable": exc.retryable} if isinstance(exc, GatewayError) else {}
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.code, message, details or None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=error_response("VALIDATION_ERROR", "Invalid request data.", {"errors": errors}),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    return JSONResponse(
        status_code=500, content=error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    )


__all__ = ["app"]
