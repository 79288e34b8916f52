"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from civic_rewards.api.admin_routes import router as admin_router
from civic_rewards.api.routes import router
from civic_rewards.clients.ai_backend import AIBackendClient
from civic_rewards.config import settings
from civic_rewards.db.seed import seed_admin
from civic_rewards.db.session import close_engines, get_write_engine, get_write_session
from civic_rewards.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from civic_rewards.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from civic_rewards.services.ai_enrichment import AIEnrichmentService
from civic_rewards.services.notifications import LoggingNotifier

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        ai_provider=settings.ai_provider,
        ai_configured=bool(settings.ai_api_key),
    )

    instrument_sqlalchemy(get_write_engine())

    if settings.admin_email:
        async with get_write_session() as session:
            await seed_admin(session, settings.admin_email, settings.admin_display_name)

    ai_client = AIBackendClient()
    enrichment = AIEnrichmentService(ai_client)
    app.state.notifier = LoggingNotifier()
    app.state.enrichment = enrichment

    yield

    # Shutdown
    logger.info("application_shutting_down", pending_enrichments=enrichment.pending)
    await enrichment.drain()
    await ai_client.aclose()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors and return them in a JSON-safe shape."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold non-serializable objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time

            metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration = time.perf_counter() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(router)  # Citizen API routes
app.include_router(admin_router)  # Admin API routes


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "civic_rewards.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
