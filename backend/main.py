# main.py — OpsDesk API Gateway
# Features:
# - Request correlation IDs
# - Security headers
# - Domain errors translated to HTTP status codes
# - Snapshot store opened/closed with the application lifespan
# - Admin account bootstrapped from the environment
# - All routers registered

import os
import uuid
import time
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from database import DATABASE_URL, create_engine
from errors import (
    ConcurrentModification, DuplicateEmail, InvalidReference, NotFound,
    OpsError, PersistenceError, ValidationError,
)
from operations import OpsService
from snapshot_store import SQLSnapshotRepository, SnapshotStore, STORAGE_ERRORS
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("opsdesk")

VERSION = "1.0.0"
ADMIN_EMAIL = os.getenv("OPSDESK_ADMIN_EMAIL", "")
ADMIN_PASSWORD = os.getenv("OPSDESK_ADMIN_PASSWORD", "")


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")

    if DATABASE_URL.startswith("sqlite") and os.getenv("ENVIRONMENT") == "production":
        warnings.append("Running production on SQLite; set DATABASE_URL to a server database")

    if not ADMIN_EMAIL:
        warnings.append("OPSDESK_ADMIN_EMAIL not set; no admin account will be bootstrapped")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


async def build_ops(url: str = DATABASE_URL) -> OpsService:
    """Open the snapshot store behind `url` and wrap it in an OpsService"""
    store = SnapshotStore(SQLSnapshotRepository(create_engine(url)))
    await store.open()
    return OpsService(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting OpsDesk v{VERSION}...")
    ops = await build_ops()
    app.state.ops = ops
    logger.info(f"Snapshot store opened (revision={ops.store.revision})")
    _check_startup_config()
    if ADMIN_EMAIL and ADMIN_PASSWORD:
        admin = await ops.ensure_admin_user(ADMIN_EMAIL, ADMIN_PASSWORD)
        logger.info(f"Admin account ready: {admin.email}")
    # Initialise OpenTelemetry (no-op if OTEL_EXPORTER_OTLP_ENDPOINT not set)
    setup_telemetry(app, ops.store.repository.engine)
    yield
    logger.info("Shutting down OpsDesk...")
    await ops.store.close()


app = FastAPI(
    title="OpsDesk",
    description="Ambassador operations platform: ambassadors, clients, commissions, appointments and dashboards",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

# First match wins, so subclasses precede their bases
ERROR_STATUS = (
    (NotFound, 404),
    (DuplicateEmail, 409),
    (InvalidReference, 400),
    (ValidationError, 422),
    (ConcurrentModification, 409),
    (PersistenceError, 503),
)


def status_for(exc: OpsError) -> int:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def _error_response(request: Request, status_code: int, body: dict) -> JSONResponse:
    """Uniform error envelope: {kind, detail, request_id}"""
    return JSONResponse(
        status_code=status_code,
        content={**body, "request_id": getattr(request.state, "request_id", None)},
    )


@app.exception_handler(OpsError)
async def ops_error_handler(request: Request, exc: OpsError):
    status_code = status_for(exc)
    if isinstance(exc, ConcurrentModification):
        logger.warning(f"Write conflict on {request.method} {request.url.path}: {exc.message}")
    elif status_code >= 500:
        logger.error(f"{exc.kind}: {exc.message}")
    return _error_response(request, status_code, exc.to_dict())


def _clean_validation_error(err: dict) -> dict:
    """Request validation error reduced to JSON-safe fields"""
    clean = {
        "type": str(err.get("type", "unknown")),
        "loc": list(err.get("loc", [])),
        "msg": str(err.get("msg", "")),
    }
    if "input" in err:
        try:
            json.dumps(err["input"])
            clean["input"] = err["input"]
        except (TypeError, ValueError):
            clean["input"] = str(err["input"])
    return clean


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [_clean_validation_error(err) for err in exc.errors()]
    return _error_response(request, 422, {"kind": ValidationError.kind, "detail": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _error_response(request, 500, {"kind": "InternalError", "detail": "Internal server error"})


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, ambassadors, applications, clients, commissions, appointments, dashboards, audit

app.include_router(auth.router)
app.include_router(ambassadors.router)
app.include_router(applications.router)
app.include_router(clients.router)
app.include_router(commissions.router)
app.include_router(appointments.router)
app.include_router(dashboards.router)
app.include_router(audit.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check(request: Request):
    """Health check with snapshot store verification"""
    ops = getattr(request.app.state, "ops", None)
    store_status = "not initialised"
    revision = None
    if ops is not None:
        try:
            stored = await ops.store.repository.read()
            store_status = "connected"
            revision = stored.revision if stored else 0
        except STORAGE_ERRORS as e:
            store_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if store_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "store": store_status,
        "revision": revision,
    }


@app.get("/")
async def root():
    return {
        "name": "OpsDesk",
        "version": VERSION,
        "description": "Ambassador operations platform",
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
