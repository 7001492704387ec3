"""FastAPI application factory and route setup for the streamstore gateway."""

import email.utils
import json
import logging
import secrets
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from streamstore.config import StreamStoreConfig
from streamstore.errors import ObjectStoreError
from streamstore.handlers.bucket import BucketHandler
from streamstore.handlers.object import ObjectHandler
from streamstore.objects.client import ObjectStoreClient
from streamstore.transport import create_transport

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


def error_body(code: str, message: str, request_id: str = "", extra: dict | None = None) -> dict:
    """Build the JSON error document returned for every failed request."""
    error = {"code": code, "message": message}
    if extra:
        error.update(extra)
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: StreamStoreConfig) -> FastAPI:
    """Create and configure the streamstore FastAPI application.

    The lifespan context manager connects the configured transport and builds
    the object store client on startup, and closes the transport on shutdown.

    Args:
        config: The loaded streamstore configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transport = create_transport(config.transport)
        await transport.connect()
        app.state.transport = transport
        app.state.client = ObjectStoreClient.from_config(transport, config.objects)
        logger.info("Transport initialized: %s", config.transport.engine)

        yield

        await transport.close()
        logger.info("Transport closed")

    app = FastAPI(
        title="streamstore",
        version="0.1.0",
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    # /metrics must be registered before the /{bucket} catch-all.
    if config.observability.metrics:
        import streamstore.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="streamstore").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(ObjectStoreError)
    async def object_store_error_handler(request: Request, exc: ObjectStoreError) -> Response:
        """Render ObjectStoreError as a JSON error document.

        HEAD requests must not have a body.
        """
        if request.method == "HEAD":
            return Response(status_code=exc.http_status)
        request_id = getattr(request.state, "request_id", "")
        return JSONResponse(
            error_body(exc.code, exc.message, request_id, exc.extra_fields),
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to an InvalidArgument error document."""
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"

        if request.method == "HEAD":
            return Response(status_code=400)
        request_id = getattr(request.state, "request_id", "")
        return JSONResponse(
            error_body("InvalidArgument", combined, request_id), status_code=400
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        if request.method == "HEAD":
            return Response(status_code=500)
        request_id = getattr(request.state, "request_id", "")
        return JSONResponse(
            error_body("InternalError", "Internal server error.", request_id),
            status_code=500,
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register middleware on the FastAPI app."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health", "/healthz", "/readyz"}

    @app.middleware("http")
    async def common_headers_middleware(request: Request, call_next) -> Response:
        """Add request id, Date and Server headers to every response.

        Stores request_id on request.state so exception handlers can use it.
        """
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)

        response.headers["x-request-id"] = request_id
        response.headers["Date"] = email.utils.formatdate(usegmt=True)
        response.headers["Server"] = "streamstore"

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Health check helpers
# ---------------------------------------------------------------------------


async def _check_transport(app: FastAPI) -> dict:
    """Probe the transport with a flush round trip.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    transport = getattr(app.state, "transport", None)
    if transport is None:
        return {"status": "error", "error": "transport not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await transport.flush()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: StreamStoreConfig) -> None:
    """Register the probe, bucket and object routes on the application.

    Args:
        app: The FastAPI application to attach routes to.
        config: The streamstore configuration.
    """
    bucket_handler = BucketHandler(app)
    object_handler = ObjectHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check(request: Request) -> Response:
        """Return health status.

        When health_check is enabled, probe the transport and report its
        latency; otherwise return a static ``{"status": "ok"}``.
        """
        if not health_check_enabled:
            return Response(content='{"status":"ok"}', media_type="application/json")

        transport_check = await _check_transport(app)
        ok = transport_check["status"] == "ok"
        body = json.dumps(
            {"status": "ok" if ok else "degraded", "checks": {"transport": transport_check}}
        )
        return Response(
            content=body,
            status_code=200 if ok else 503,
            media_type="application/json",
        )

    if health_check_enabled:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness probe. Returns 200 with empty body."""
            return Response(status_code=200)

        @app.get("/readyz")
        async def readyz() -> Response:
            """Readiness probe. 200 if the transport answers, 503 otherwise."""
            transport_check = await _check_transport(app)
            return Response(status_code=200 if transport_check["status"] == "ok" else 503)

    # Bucket-level routes
    @app.put("/{bucket}")
    async def handle_bucket_put(bucket: str, request: Request) -> Response:
        return await bucket_handler.create_bucket(request, bucket)

    @app.delete("/{bucket}")
    async def handle_bucket_delete(bucket: str, request: Request) -> Response:
        return await bucket_handler.delete_bucket(request, bucket)

    @app.head("/{bucket}")
    async def handle_bucket_head(bucket: str, request: Request) -> Response:
        return await bucket_handler.head_bucket(request, bucket)

    @app.get("/{bucket}")
    async def handle_bucket_get(bucket: str, request: Request) -> Response:
        return await bucket_handler.get_bucket(request, bucket)

    # Object-level routes (key can contain slashes via {key:path})
    @app.put("/{bucket}/{key:path}")
    async def handle_object_put(bucket: str, key: str, request: Request) -> Response:
        return await object_handler.put_object(request, bucket, key)

    @app.head("/{bucket}/{key:path}")
    async def handle_object_head(bucket: str, key: str, request: Request) -> Response:
        return await object_handler.head_object(request, bucket, key)

    @app.get("/{bucket}/{key:path}")
    async def handle_object_get(bucket: str, key: str, request: Request) -> Response:
        return await object_handler.get_object(request, bucket, key)
