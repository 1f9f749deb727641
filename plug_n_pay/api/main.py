"""
Main FastAPI application.

Pay-per-call API marketplace with:
- CORS configuration
- Uniform {"error": ...} error bodies
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, List

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from plug_n_pay import __version__
from plug_n_pay.config import get_settings
from plug_n_pay.database.connection import check_connection, close_db
from plug_n_pay.monitoring.logging import setup_logging

from .routes import (
    developer_router,
    monitoring_router,
    payment_router,
    subscription_router,
    x402_service,
)

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Connect to the database on startup; release the RPC client and engine on shutdown.

    The API still starts when the database is down so the docs and health
    endpoints stay reachable.
    """
    logger.info(
        "plug_n_pay_starting",
        version=__version__,
        env=settings.app_env,
        rpc_url=settings.avalanche_rpc_url,
        callback_url=settings.payment_callback_url,
    )

    if not await check_connection():
        logger.warning("starting_in_demo_mode", reason="database unavailable")

    yield

    logger.info("plug_n_pay_stopping")
    try:
        await x402_service.rpc_client.close()
        await close_db()
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


app = FastAPI(
    title="Plug-n-Pay API",
    description=(
        "Pay-per-call API marketplace. Developers publish plans priced in AVAX; "
        "consumers pay each call on the Avalanche C-Chain via x402 payment intents."
    ),
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", settings.api_key_header, REQUEST_ID_HEADER],
    expose_headers=[REQUEST_ID_HEADER],
)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Any) -> Response:
    """
    Bind a request id to every log line of the request and echo it back.

    A caller-supplied X-Request-ID is reused so traces can span services.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    started = time.perf_counter()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    logger.info("request_received", client_host=request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("request_failed", error=str(e), duration_ms=_elapsed_ms(started))
        raise

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "request_handled",
        status_code=response.status_code,
        duration_ms=_elapsed_ms(started),
    )
    return response


def _join_fields(fields: List[str]) -> str:
    if len(fields) == 1:
        return fields[0]
    if len(fields) == 2:
        return f"{fields[0]} and {fields[1]}"
    return f"{', '.join(fields[:-1])}, and {fields[-1]}"


def validation_error_message(exc: RequestValidationError) -> str:
    """Summarize request validation errors in one sentence."""
    missing: List[str] = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "header")]
        field = loc[-1] if loc else "request body"
        if error.get("type") in ("missing", "string_too_short"):
            if field not in missing:
                missing.append(field)
        else:
            return f"Invalid {field}: {error.get('msg', 'invalid value')}"

    if not missing:
        return "Invalid request"
    verb = "is" if len(missing) == 1 else "are"
    return f"{_join_fields(missing)} {verb} required"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = validation_error_message(exc)
    logger.warning("request_validation_failed", error=message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as {"error": ...}."""
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Endpoint not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.debug else "Something went wrong",
        },
    )


app.include_router(developer_router)
app.include_router(subscription_router)
app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "plug_n_pay.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
