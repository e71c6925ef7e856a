# main.py — Workspace Hub API Gateway
# Features:
# - Request correlation IDs
# - Security headers
# - Tenancy errors mapped to HTTP status codes
# - Health check with DB verification
# - Quota governor and audit trail wired per application

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
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService
from database import Database
from tenancy import (
    AuditTrail, QuotaGovernor, TenancyError, ValidationError, Unauthorized,
    TenantInactive, LimitReached, NotFound, Conflict, TransientStoreError,
)

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("workspace-hub")

VERSION = "1.0.0"

ERROR_STATUS = {
    ValidationError: 400,
    Unauthorized: 403,
    TenantInactive: 403,
    LimitReached: 403,
    NotFound: 404,
    Conflict: 409,
    TransientStoreError: 503,
}


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")
    if not (os.getenv("SUPER_ADMIN_EMAIL") and os.getenv("SUPER_ADMIN_PASSWORD")):
        warnings.append("SUPER_ADMIN_EMAIL / SUPER_ADMIN_PASSWORD not set; no platform admin will be bootstrapped")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


async def start_services(app: FastAPI, database: Database) -> None:
    """Attach the store, quota governor and audit trail to the application"""
    app.state.database = database
    app.state.quota = QuotaGovernor()
    app.state.audit_trail = AuditTrail(database)
    await app.state.audit_trail.start()


async def stop_services(app: FastAPI) -> None:
    audit_trail = getattr(app.state, "audit_trail", None)
    if audit_trail is not None:
        await audit_trail.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Workspace Hub...")
    database = Database()
    await database.create_all()
    logger.info("Database initialized")
    _check_startup_config()
    await start_services(app, database)

    async with database.transaction() as db:
        await AuthService.ensure_super_admin(db)

    yield
    logger.info("Shutting down Workspace Hub...")
    await stop_services(app)
    await database.dispose()


app = FastAPI(
    title="Workspace Hub",
    description="Multi-tenant workspace manager with tenant isolation, plan quotas and audit trail",
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
        f"{request.method} {request.url.path} -> {response.status_code} "
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
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _error_response(request: Request, status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(TenancyError)
async def tenancy_exception_handler(request: Request, exc: TenancyError):
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return _error_response(request, status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = _error_response(request, exc.status_code, exc.detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return _error_response(request, 400, errors)


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    logger.error(f"Database unavailable: {exc}")
    return _error_response(request, 503, "Service temporarily unavailable")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(request, 500, "Internal server error")


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, tenants, users, projects, tasks  # noqa: E402

app.include_router(auth.router)
app.include_router(tenants.router)
app.include_router(users.router)
app.include_router(projects.router)
app.include_router(tasks.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/api/health")
async def health_check(request: Request):
    """Health check with database connectivity verification"""
    try:
        await request.app.state.database.ping()
        db_status = "connected"
    except OperationalError as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "audit": {
            "running": request.app.state.audit_trail.running,
            "dropped": request.app.state.audit_trail.dropped,
        },
    }


@app.get("/")
async def root():
    return {
        "name": "Workspace Hub",
        "version": VERSION,
        "docs": "/docs",
        "health": "/api/health",
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
