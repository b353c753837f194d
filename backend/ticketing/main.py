"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import settings
from .database import SessionLocal
from .domain_errors import DomainError
from .problem_details import build_problem_details_response
from .routers import approvals, cedar, tickets

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Maintenance Ticketing",
    version="1.0.0",
    description="Maintenance ticket lifecycle with Cedar CMMS work-order sync"
)

# Production safety checks.
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and settings.CEDAR_SYNC_MODE != "off" and not settings.CEDAR_DATABASE_URL:
    raise RuntimeError("CEDAR_DATABASE_URL must be set in production unless CEDAR_SYNC_MODE=off.")

# CORS
cors_methods = ["GET", "POST", "DELETE", "OPTIONS"]
cors_headers = ["Content-Type", "X-Person-Id"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)


@app.exception_handler(DomainError)
async def handle_domain_error(request: Request, exc: DomainError):
    if exc.http_status >= 500:
        logger.warning("domain error %s on %s: %s", exc.code, request.url.path, exc.message)
    return build_problem_details_response(exc, instance=request.url.path)


# Include routers
app.include_router(tickets.router, prefix="/api/v1")
app.include_router(approvals.router, prefix="/api/v1")
app.include_router(cedar.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint (local database only; Cedar has /api/v1/cedar/health)."""
    database = "ok"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "unavailable"
    finally:
        db.close()
    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": "1.0.0",
        "database": database,
        "cedar_sync_mode": settings.CEDAR_SYNC_MODE,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Maintenance Ticketing API",
        "version": "1.0.0",
        "docs": "/docs"
    }
