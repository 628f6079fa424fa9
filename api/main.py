"""
api/main.py -- FastAPI application entry point for tokenward.

Exposes registration and login over HTTP and puts every request through the
authentication gate before it reaches a route.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests         -- method, path, status, latency
  2. authenticate_request -- the gate: 401 malformed, 403 rejected, else sets
                             request.state.user_id (None when no header)

Lifespan builds the AuthService (keys, store, hasher, issuer) on startup and
closes the store on shutdown. Nothing is constructed at import time, so
tests can swap the lifespan for one wired to throwaway stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.models import GateState
from auth.service import AuthService, build_auth_service
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokenward.api")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth stack on startup, dispose of it on shutdown.

    Key resolution happens here: a missing keypair is generated and written
    before the first request is accepted, never lazily inside one.
    """
    logger.info("tokenward API starting up")
    settings = get_settings()
    logging.getLogger("tokenward").setLevel(logging.DEBUG if settings.debug else logging.INFO)
    app.state.debug = settings.debug
    app.state.auth_service = build_auth_service(settings)
    logger.info(
        "Auth initialized (issuer=%s, identifier=%s, key=%s)",
        settings.issuer,
        settings.identifier_field,
        app.state.auth_service.issuer.fingerprint[:16],
    )

    yield

    app.state.auth_service.close()
    logger.info("tokenward API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tokenward API",
    description="Password login with RSA-signed tokens and rotating single-use session secrets.",
    version="0.1.0",
    lifespan=lifespan,
)


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _debug_detail(request: Request, err: AuthError) -> str | None:
    """Incident detail for the response body, in debug mode only."""
    return err.detail if getattr(request.app.state, "debug", False) else None


def _request_context(request: Request) -> str:
    """Identifying request details for the incident log. Never sent to clients."""
    host = request.client.host if request.client else "unknown"
    agent = request.headers.get("user-agent", "-")
    return f"{request.method} {request.url.path} from {host} ua={agent}"


# ---------------------------------------------------------------------------
# Authentication gate middleware
#
# Runs for every request. Registered before log_requests so that logging
# wraps it (Starlette makes the last-registered middleware the outermost).
# ---------------------------------------------------------------------------


@app.middleware("http")
async def authenticate_request(request: Request, call_next):
    """Admit, reject or pass through a request based on its Authorization header.

    No header: request.state.user_id = None and the route decides (public
    routes proceed, get_current_user_id answers 403).
    Malformed header: 401, route never runs.
    Rejected: 403, route never runs. The gate has already revoked the session
    if the rejection was a replay.
    Admitted: request.state.user_id = principal. The rotated session comes
    back in X-Session-Token / X-Session-Opaque for the client's next call.
    """
    service: AuthService = request.app.state.auth_service
    request.state.user_id = None
    outcome = await service.authenticate(request.headers.get("authorization"), context=_request_context(request))

    if outcome.state in (GateState.MALFORMED_HEADER, GateState.REJECTED):
        err = outcome.error
        if isinstance(err, AuthError):
            return _error_response(
                outcome.status_code, err.error_code, err.client_message, _debug_detail(request, err)
            )
        return _error_response(outcome.status_code, "forbidden", "Access denied.")

    if outcome.admitted:
        request.state.user_id = outcome.user_id

    response = await call_next(request)

    if outcome.admitted:
        response.headers["X-Session-Token"] = outcome.token
        response.headers["X-Session-Opaque"] = outcome.opaque
        response.headers["Cache-Control"] = "no-store"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError with its own status and code.

    Only client_message crosses the boundary; the service has already sent
    the detail to the incident log. With DEBUG=true the detail is echoed as
    error.detail for local development.
    """
    return _error_response(exc.status_code, exc.error_code, exc.client_message, _debug_detail(request, exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation."""
    return _error_response(422, "validation_error", "Request validation failed.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness and whether the credential store answers."""
    service: AuthService = request.app.state.auth_service
    db_ok = await asyncio.to_thread(service.store.ping)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
