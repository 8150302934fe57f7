"""FastAPI application factory and route setup for Hiraeth."""

import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hiraeth import __version__
from hiraeth.auth import BasicAuthenticator, hash_secret
from hiraeth.config import HiraethConfig
from hiraeth.errors import HiraethError
from hiraeth.handlers.files import FileHandler
from hiraeth.lifecycle.manager import LifecycleManager
from hiraeth.metadata import create_object_store
from hiraeth.metadata.store import ObjectStore
from hiraeth.storage.local import LocalBlobStore

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus metrics in the global registry.
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


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


async def ensure_default_user(store: ObjectStore, name: str, rounds: int = 12) -> int:
    """Return the id of ``name``, creating the user if missing.

    The created user gets a random password, so it cannot log in over
    Basic auth; it only owns files while authentication is disabled.
    """
    user = await store.get_user_by_name(name)
    if user is not None:
        return user.id
    password_hash = await asyncio.to_thread(hash_secret, secrets.token_urlsafe(32), rounds)
    user_id = await store.create_user(name, password_hash)
    logger.info("Created default user %s", name)
    return user_id


def create_app(config: HiraethConfig) -> FastAPI:
    """Create and configure the Hiraeth FastAPI application.

    The lifespan context manager opens the object store and blob store,
    builds the lifecycle manager and runs startup recovery before the first
    request is served. Every startup is a recovery: pending uploads are
    reclaimed, orphans removed and expiry timers re-armed from the database.

    Args:
        config: The loaded Hiraeth configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan hook: open stores, recover timers, close on shutdown."""
        store = create_object_store(config.metadata)
        await store.init_db()
        app.state.store = store

        blobs = LocalBlobStore(config.storage.data_dir)
        await blobs.init()
        app.state.blobs = blobs

        if not config.auth.enabled:
            app.state.default_owner_id = await ensure_default_user(
                store, config.auth.default_user, config.auth.bcrypt_rounds
            )
        app.state.authenticator = BasicAuthenticator(store, realm=config.auth.realm)

        manager = LifecycleManager.from_config(config.uploads, store, blobs)
        await manager.recover()
        app.state.manager = manager

        logger.info(
            "%s ready: %s object store, blobs in %s",
            config.server.name,
            config.metadata.engine,
            blobs.root,
        )

        yield

        # Timers are cancelled, not fired; the next startup re-derives them.
        await manager.close()
        await blobs.close()
        await store.close()
        logger.info("Object store and blob store closed")

    app = FastAPI(
        title=config.server.name,
        version=__version__,
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app, config)

    if config.observability.metrics:
        import hiraeth.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="hiraeth").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def error_response(app: FastAPI, exc: HiraethError) -> JSONResponse:
    """Render a HiraethError as ``{"error": {"code", "message"}}``.

    401 responses carry a Basic ``WWW-Authenticate`` challenge.
    """
    headers = {}
    if exc.http_status == 401:
        authenticator = getattr(app.state, "authenticator", None)
        realm = app.state.config.auth.realm
        headers["WWW-Authenticate"] = (
            authenticator.challenge if authenticator is not None else f'Basic realm="{realm}"'
        )
    return JSONResponse(
        {"error": {"code": exc.code, "message": exc.message}},
        status_code=exc.http_status,
        headers=headers,
    )


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(HiraethError)
    async def hiraeth_error_handler(request: Request, exc: HiraethError) -> Response:
        """Render lifecycle and API errors as JSON with the error's status."""
        if exc.http_status >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return error_response(app, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to an ``InvalidArgument`` JSON error."""
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"
        return JSONResponse(
            {"error": {"code": "InvalidArgument", "message": combined}},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return JSONResponse(
            {"error": {"code": "InternalError", "message": "We encountered an internal error."}},
            status_code=500,
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI, config: HiraethConfig) -> None:
    """Register middleware on the FastAPI app.

    Middleware runs in reverse registration order, so the execution order
    is: request_log -> auth -> handler.
    """

    # Paths that skip auth entirely
    AUTH_SKIP_PATHS = {"/health", "/healthz", "/readyz", "/metrics"}

    # Paths where credentials are optional (downloads by link)
    AUTH_OPTIONAL_PREFIXES = ("/downloads/",)

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health", "/healthz", "/readyz"}

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Assign a request id and log every request with its latency."""
        request_id = secrets.token_hex(8)
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

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

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next) -> Response:
        """HTTP Basic authentication middleware.

        Stores the resolved principal id on ``request.state.owner_id``.
        When auth is disabled every request is attributed to the default
        user. On download paths credentials are optional; a request without
        them proceeds anonymously.

        Errors are rendered here because FastAPI exception handlers do not
        catch exceptions raised in middleware.
        """
        cfg: HiraethConfig = app.state.config
        path = request.url.path
        request.state.owner_id = None

        if path in AUTH_SKIP_PATHS:
            return await call_next(request)

        optional = path.startswith(AUTH_OPTIONAL_PREFIXES)

        # Without authentication there is no real caller identity, so
        # downloads stay anonymous and object passwords still apply.
        if not cfg.auth.enabled:
            if not optional:
                request.state.owner_id = getattr(app.state, "default_owner_id", None)
            return await call_next(request)

        authenticator = getattr(app.state, "authenticator", None)
        if authenticator is None:
            return await call_next(request)

        if optional and "authorization" not in request.headers:
            return await call_next(request)

        try:
            user = await authenticator.verify_request(request)
        except HiraethError as exc:
            return error_response(app, exc)

        request.state.owner_id = user.id
        return await call_next(request)


# ---------------------------------------------------------------------------
# Health check helpers
# ---------------------------------------------------------------------------


async def _check_store(app: FastAPI) -> dict:
    """Probe the object store with a cheap lookup.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    store = getattr(app.state, "store", None)
    if store is None:
        return {"status": "error", "error": "object store not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        await store.get_user(0)
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


async def _check_blobs(app: FastAPI) -> dict:
    """Probe the blob store (check the data directory exists).

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    blobs = getattr(app.state, "blobs", None)
    if blobs is None:
        return {"status": "error", "error": "blob store not initialized", "latency_ms": 0}
    start = time.monotonic()
    if not Path(blobs.root).is_dir():
        return {
            "status": "error",
            "error": "data directory not found",
            "latency_ms": round((time.monotonic() - start) * 1000, 1),
        }
    latency = round((time.monotonic() - start) * 1000, 1)
    return {"status": "ok", "latency_ms": latency}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: HiraethConfig) -> None:
    """Register health and file routes on the application.

    Args:
        app: The FastAPI application to attach routes to.
        config: The Hiraeth configuration.
    """
    file_handler = FileHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check(request: Request) -> Response:
        """Return health status.

        When health_check is enabled: deep-probe the object store and blob
        store, return JSON with component checks and latency_ms.
        When disabled: return static ``{"status": "ok"}``.
        """
        if not health_check_enabled:
            return JSONResponse({"status": "ok"})

        store_check = await _check_store(app)
        blob_check = await _check_blobs(app)
        all_ok = store_check["status"] == "ok" and blob_check["status"] == "ok"

        manager = getattr(app.state, "manager", None)
        body = {
            "status": "ok" if all_ok else "degraded",
            "checks": {"metadata": store_check, "storage": blob_check},
        }
        if manager is not None:
            body["timers"] = {
                "pending_uploads": manager.assembler.pending_count(),
                "armed_expiries": manager.scheduler.armed_count(),
            }
        return JSONResponse(body, status_code=200 if all_ok else 503)

    if health_check_enabled:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness probe. Returns 200 with empty body."""
            return Response(status_code=200)

        @app.get("/readyz")
        async def readyz() -> Response:
            """Readiness probe. Probes the object store and blob store.

            Returns 200 (empty) if all pass, 503 (empty) if any fail.
            """
            store_check = await _check_store(app)
            blob_check = await _check_blobs(app)
            all_ok = store_check["status"] == "ok" and blob_check["status"] == "ok"
            return Response(status_code=200 if all_ok else 503)

    # Chunked uploads
    @app.post("/prepare")
    async def handle_prepare(request: Request) -> Response:
        """Handle POST /prepare -- begin a chunked upload."""
        return await file_handler.prepare(request)

    @app.post("/append/{object_id}")
    async def handle_append(object_id: str, request: Request) -> Response:
        """Handle POST /append/{id} -- append one chunk."""
        return await file_handler.append(request, object_id)

    @app.post("/finish/{object_id}")
    async def handle_finish(object_id: str, request: Request) -> Response:
        """Handle POST /finish/{id} -- commit a chunked upload."""
        return await file_handler.finish(request, object_id)

    # Single-shot upload
    @app.post("/upload")
    async def handle_upload(request: Request) -> Response:
        """Handle POST /upload -- store a whole file."""
        return await file_handler.upload(request)

    # Owner views
    @app.get("/files/")
    async def handle_list(request: Request) -> Response:
        """Handle GET /files/ -- list the caller's files."""
        return await file_handler.list_files(request)

    @app.get("/files/{object_id}")
    async def handle_describe(object_id: str, request: Request) -> Response:
        """Handle GET /files/{id} -- one file's metadata."""
        return await file_handler.describe(request, object_id)

    @app.post("/files/{object_id}/rename")
    async def handle_rename(object_id: str, request: Request) -> Response:
        """Handle POST /files/{id}/rename -- change the display name."""
        return await file_handler.rename(request, object_id)

    @app.delete("/files/{object_id}")
    async def handle_delete(object_id: str, request: Request) -> Response:
        """Handle DELETE /files/{id} -- delete now."""
        return await file_handler.delete(request, object_id)

    # Downloads
    @app.get("/downloads/{object_id}")
    async def handle_download_get(object_id: str, request: Request) -> Response:
        """Handle GET /downloads/{id} -- owner or unprotected download."""
        return await file_handler.download(request, object_id)

    @app.post("/downloads/{object_id}")
    async def handle_download_post(object_id: str, request: Request) -> Response:
        """Handle POST /downloads/{id} -- download with a password."""
        return await file_handler.download(request, object_id)
