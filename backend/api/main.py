"""
Main FastAPI application entry point.

Responsibilities:
- Initialize FastAPI app
- Configure CORS
- Map errors to {"success": false, "error": ...} bodies
- Include routers
- Setup startup/shutdown events
"""
from __future__ import annotations

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.routes import brightlocal, gbp, hubspot, pipedream, store, sync
from config import log_missing_env_vars, settings
from models.database import close_db, get_pool_status

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(title="Agency Hub API", version="1.0.0")


def _normalize_origin(origin: str) -> str:
    """Normalize origin values for robust CORS/CSRF checks."""
    return origin.strip().rstrip("/")


cors_origins: list[str] = [
    "http://localhost:3000",  # Next.js dev server
    "http://localhost:5173",
]
if settings.FRONTEND_URL:
    cors_origins.append(settings.FRONTEND_URL)

allowed_origins = {_normalize_origin(origin) for origin in cors_origins}


def get_cors_headers(origin: str | None) -> dict[str, str]:
    """Return CORS headers if origin is allowed."""
    normalized_origin = _normalize_origin(origin) if origin else None
    if normalized_origin and normalized_origin in allowed_origins:
        return {
            "Access-Control-Allow-Origin": normalized_origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS, PATCH",
            "Access-Control-Allow-Headers": "*",
        }
    return {}


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def csrf_protection_middleware(request: Request, call_next):
    """Block unsafe cross-site cookie requests."""
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        origin = request.headers.get("origin")
        if origin and "cookie" in request.headers:
            if _normalize_origin(origin) not in allowed_origins:
                logging.warning(
                    "Blocked potential CSRF request",
                    extra={"method": request.method, "path": request.url.path, "origin": origin},
                )
                return JSONResponse(
                    status_code=403,
                    content={"success": False, "error": "CSRF validation failed"},
                )
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP errors as {success: false, error}; dict details are sent as-is."""
    if isinstance(exc.detail, dict):
        content = {"success": False, **exc.detail}
    else:
        content = {"success": False, "error": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers={**(exc.headers or {}), **get_cors_headers(request.headers.get("origin"))},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "details": exc.errors()},
        headers=get_cors_headers(request.headers.get("origin")),
    )


# Global exception handler to ensure CORS headers on all errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions with CORS headers."""
    logging.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
        headers=get_cors_headers(request.headers.get("origin")),
    )


# Routes
app.include_router(hubspot.router, prefix="/api/hubspot", tags=["hubspot"])
app.include_router(store.router, prefix="/api/store", tags=["store"])
app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
app.include_router(gbp.router, prefix="/api/gbp", tags=["gbp"])
app.include_router(pipedream.router, prefix="/api/pipedream", tags=["pipedream"])
app.include_router(brightlocal.router, prefix="/api/brightlocal", tags=["brightlocal"])


@app.on_event("startup")
async def startup() -> None:
    # Note: schema is managed by Alembic
    log_missing_env_vars(logging.getLogger("config"))
    logging.info("Database connection pool ready")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Clean up database connections on shutdown."""
    logging.info("Shutting down, closing database connections...")
    await close_db()
    logging.info("Database connections closed")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    logging.info("Health check requested")
    return {"status": "ok"}


@app.get("/api/health")
async def api_health_check() -> dict[str, object]:
    """Health check with database pool status."""
    try:
        pool_status = get_pool_status()
    except Exception as e:
        return {"status": "degraded", "error": str(e)}
    return {"status": "ok", "environment": settings.ENVIRONMENT, "pool": pool_status}
