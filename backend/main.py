# main.py — Residency Desk API Gateway
# Features:
# - Request correlation IDs (stamped on every log record)
# - Security headers
# - DeskError envelope rendering
# - Health check with DB verification

import os
import json
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

import config
from database import check_database, close_db, init_db
from errors import DeskError
from logging_system import (
    RequestContext, install_request_filter, reset_current_context, set_current_context,
)
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s [rid=%(request_id)s] %(message)s",
)
install_request_filter()
logger = logging.getLogger("residency-desk")


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")

    if config.NOTIFY_GATEWAY_URL:
        logger.info(f"Notification gateway configured: {config.NOTIFY_GATEWAY_URL}")
    else:
        warnings.append("NOTIFY_GATEWAY_URL not set; only in-app notifications will be delivered")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Residency Desk v{config.SERVICE_VERSION}...")
    await init_db()
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)
    yield
    logger.info("Shutting down Residency Desk...")
    await close_db()


app = FastAPI(
    title="Residency Desk",
    description="Housing society maintenance desk: issues, technician assignments, recurring problems",
    version=config.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    ctx = RequestContext.create(
        request_id=request.headers.get("X-Request-ID"),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    request.state.request_id = ctx.request_id
    request.state.correlation_id = ctx.correlation_id
    token = set_current_context(ctx)

    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = ctx.request_id
        response.headers["X-Correlation-ID"] = ctx.correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration:.3f}s)"
        )
        return response
    finally:
        reset_current_context(token)


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
    response.headers["Permissions-Policy"] = "camera=(), microphone=()"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(DeskError)
async def desk_error_handler(request: Request, exc: DeskError):
    if exc.http_status >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.info(f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "success": False,
            "error": exc.to_dict(),
            "request_id": getattr(request.state, "request_id", None),
        },
    )


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

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {"code": "RD-VAL-001", "message": "Invalid input", "detail": errors},
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {"code": "RD-SYS-000", "message": "Internal server error"},
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import issues, assignments, recurring, notifications  # noqa: E402

app.include_router(issues.router)
app.include_router(assignments.router)
app.include_router(recurring.router)
app.include_router(notifications.router)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = await check_database()

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": config.SERVICE_VERSION,
        "environment": config.ENVIRONMENT,
        "database": db_status,
        "services": {
            "api": "operational",
            "notifications": "operational" if config.NOTIFY_GATEWAY_URL else "in-app only",
            "geocoding": "operational",
        },
    }


@app.get("/")
async def root():
    return {
        "name": "Residency Desk",
        "version": config.SERVICE_VERSION,
        "description": "Housing society maintenance desk",
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
        reload=config.ENVIRONMENT != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
