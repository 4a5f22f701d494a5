"""
League payments HTTP application.

Serves payment intent creation, the Stripe webhook, payment lookup and the
health/metrics probes. Payment errors are rendered as
``{"error": {code, message, type, retryable}}`` with the status code the
error class declares.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from league_payments import __version__
from league_payments.config import get_settings
from league_payments.database.connection import close_db, init_db
from league_payments.exceptions import PaymentError
from league_payments.monitoring.logging import setup_logging

from .routes import monitoring_router, payment_router

REQUEST_ID_HEADER = "X-Request-ID"

# Seconds a client should wait before retrying a retryable payment error
RETRY_AFTER_SECONDS = 2

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup; dispose of the engine on shutdown."""
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
        version=__version__,
    )

    try:
        await init_db()
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise
    logger.info("database_initialized")

    yield

    await close_db()
    logger.info("application_shutdown")


app = FastAPI(
    title="League Payments",
    description=(
        "Payment lifecycle service for league and team fees: Stripe payment intents, "
        "webhook reconciliation and payment outcome events."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """
    Bind request id and caller to the logging context.

    An upstream ``X-Request-ID`` is kept so gateway and service logs line up.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    started = time.perf_counter()

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        principal=request.headers.get(settings.principal_header),
    )

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.perf_counter() - started,
        )
        raise
    finally:
        elapsed = time.perf_counter() - started

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info("request_completed", status_code=response.status_code, duration_seconds=elapsed)
    return response


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """Render a payment error; retryable errors carry ``Retry-After``."""
    log = logger.error if exc.http_status >= 500 else logger.warning
    log("payment_error", error_code=exc.error_code, error=exc.message, **exc.context)

    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
                "type": "InternalServerError",
                "retryable": True,
            }
        },
    )


app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    return {
        "service": settings.app_name,
        "version": __version__,
        "environment": settings.app_env,
        "test_mode": settings.is_test_mode,
        "endpoints": {
            "create_intent": "/api/v1/payments/intent",
            "webhook": "/api/v1/payments/webhook",
            "health": "/health",
            "metrics": "/metrics",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "league_payments.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )
