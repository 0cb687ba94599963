"""
Main Application - FastAPI application setup.
"""

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from vidgro.api.realtime_routes import router as realtime_router
from vidgro.api.routes import router
from vidgro.config import settings
from vidgro.db.session import close_engines, get_engine
from vidgro.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from vidgro.observability.metrics import track_http_request
from vidgro.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from vidgro.services.events import listener
from vidgro.services.metadata import close_metadata_resolver

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        queue_ordering=settings.queue_ordering.value,
        hold_minutes=settings.hold_minutes,
    )
    instrument_sqlalchemy(get_engine("write"))
    if settings.realtime_enabled:
        await listener.start()

    yield

    logger.info("application_shutting_down")
    if settings.realtime_enabled:
        await listener.stop()
    await close_metadata_resolver()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Log validation errors and return them in a JSON-safe shape."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may hold exception objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(status_code=422, content={"detail": sanitized_errors})


setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Bind a request id, time the request and record metrics."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    endpoint = request.url.path
    start_time = time.perf_counter()

    with log_context(request_id=request_id), track_http_request(endpoint, request.method) as tracker:
        try:
            response = await call_next(request)
        except Exception as exc:
            metrics.record_error(type(exc).__name__, "http_request")
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                exc_info=True,
            )
            raise
        tracker.set_status_code(response.status_code)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=round(time.perf_counter() - start_time, 6),
        )
        response.headers["X-Request-ID"] = request_id
        return response


app.include_router(router)
app.include_router(realtime_router)


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
    """Prometheus metrics endpoint."""
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "vidgro.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
