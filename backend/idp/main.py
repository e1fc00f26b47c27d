"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from datetime import datetime
from pathlib import Path
import logging
import traceback
import time
import uuid

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

from idp.config import settings
from idp.core.database import init_db, SessionLocal
from idp.core.exceptions import BaseAPIException, OAuthError, OAuthRedirectError
from idp.api import well_known
from idp.api.v1 import applications, auth, auth_logs, consents, oauth
from idp.api.v1 import settings as settings_routes
from idp.services.key_manager import KeyManager
from idp.services.oauth_service import build_redirect_url
from idp.services.rate_limiter import InMemoryRateLimiter

# Configure logging - ensure log directory exists
_log_dir = Path(settings.get_log_file()).parent
_log_dir.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "sso_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "sso_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
OAUTH_ERRORS = Counter(
    "sso_oauth_errors_total",
    "OAuth protocol errors returned to clients",
    ["error"],
)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None
)

# Process-wide collaborators, injected into routes through api.deps
app.state.key_manager = KeyManager.from_settings(settings)
app.state.rate_limiter = InMemoryRateLimiter(
    max_buckets=settings.RATE_LIMIT_MAX_BUCKETS,
    cleanup_interval=settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
)

# GZip compression for large responses
app.add_middleware(GZipMiddleware, minimum_size=500)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Security headers + request timing middleware
@app.middleware("http")
async def add_headers_and_timing(request: Request, call_next):
    """Add security headers and log slow requests"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start = time.time()
    response = await call_next(request)
    duration = time.time() - start

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["X-Request-ID"] = request_id

    REQUEST_COUNT.labels(request.method, request.url.path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, request.url.path).observe(duration)

    if duration > 1.0:
        logger.warning(
            "Slow request: %s %s took %.2fs request_id=%s",
            request.method,
            request.url.path,
            duration,
            request_id,
        )

    return response


# Exception handlers
@app.exception_handler(OAuthRedirectError)
async def oauth_redirect_exception_handler(request: Request, exc: OAuthRedirectError):
    """Deliver an OAuth error to the client's (already verified) callback"""
    OAUTH_ERRORS.labels(exc.error).inc()
    logger.info(f"OAuth error redirected to client: {exc.error} ({exc.description})")
    location = build_redirect_url(
        exc.redirect_uri,
        {"error": exc.error, "error_description": exc.description, "state": exc.state},
    )
    return RedirectResponse(location, status_code=status.HTTP_302_FOUND, headers=exc.headers)


@app.exception_handler(OAuthError)
async def oauth_exception_handler(request: Request, exc: OAuthError):
    """Render RFC 6749 error bodies with no-cache headers"""
    OAUTH_ERRORS.labels(exc.error).inc()
    logger.warning(
        f"OAuth error: {exc.error} ({exc.description})",
        extra={"path": request.url.path, "method": request.method}
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Handle custom API exceptions"""
    logger.error(
        f"API Exception: {exc.message}",
        extra={
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method
        }
    )

    headers = None
    if "retry_after" in exc.details:
        headers = {"Retry-After": str(exc.details["retry_after"])}

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "details": exc.details,
            "path": request.url.path,
            "timestamp": datetime.utcnow().isoformat()
        },
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        f"Validation error: {errors}",
        extra={"path": request.url.path, "method": request.method}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": "Validation failed",
            "details": errors,
            "path": request.url.path,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors"""
    logger.error(
        f"Database error: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "A database error occurred. Please try again later.",
            "path": request.url.path,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.critical(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred. Our team has been notified.",
            "path": request.url.path,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


def bootstrap_admin(db) -> None:
    """Create the configured admin account if it does not exist yet"""
    from idp.services.user_service import user_service
    from idp.schemas.user import UserCreate, UserRole

    if user_service.get_user_by_username(db, settings.ADMIN_USERNAME):
        return
    user_service.create_user(
        db,
        UserCreate(
            username=settings.ADMIN_USERNAME,
            email=settings.ADMIN_EMAIL,
            password=settings.ADMIN_PASSWORD,
            role=UserRole.ADMIN
        )
    )
    logger.info(f"Created admin user: {settings.ADMIN_USERNAME}")


def purge_expired(db) -> dict:
    """Delete expired codes, tokens and login sessions"""
    from idp.services.session_service import session_service
    from idp.services.token_service import token_service

    counts = token_service.purge_expired(db)
    counts["sessions"] = session_service.purge_expired(db)
    return counts


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    settings.validate_security_settings()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Issuer: {settings.issuer}")

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    db = SessionLocal()
    try:
        try:
            bootstrap_admin(db)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to create admin user: {e}")

        try:
            logger.info(f"Startup purge: {purge_expired(db)}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to purge expired credentials: {e}")
    finally:
        db.close()

    # Load (or create) the signing key before the first token request
    logger.info(f"Active signing key: kid={app.state.key_manager.kid}")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    logger.info(f"Shutting down {settings.APP_NAME}")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    db_ok = True
    db_error = None
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        db_ok = False
        db_error = str(exc)
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "readiness": {
            "database": {"ok": db_ok, "error": db_error},
            "rate_limit_buckets": app.state.rate_limiter.bucket_count(),
        },
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "issuer": settings.issuer,
        "status": "running",
        "docs": "/api/docs" if settings.DEBUG else "disabled"
    }


# Include routers
app.include_router(well_known.router, prefix="/.well-known", tags=["Discovery"])
app.include_router(oauth.router, prefix="/api/v1/oauth", tags=["OAuth"])
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(applications.router, prefix="/api/v1/applications", tags=["Applications"])
app.include_router(consents.router, prefix="/api/v1/user/consents", tags=["Consents"])
app.include_router(auth_logs.router, prefix="/api/v1/auth-logs", tags=["Audit"])
app.include_router(settings_routes.router, prefix="/api/v1", tags=["Settings"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "idp.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
