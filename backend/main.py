import logging
import sys
from contextlib import asynccontextmanager

from api.error_handling import install_exception_handlers
from api.routes import auth
from config import AppMode, get_settings
from db.database import close_db, init_db
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from middleware.rate_limit import RateLimitMiddleware
from middleware.security import SecurityHeadersMiddleware

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Silence noisy loggers
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""

    # === STARTUP ===
    logger.info("Starting Icon Store auth service in %s mode...", settings.APP_MODE.value)

    await init_db()
    logger.info("Database initialized")

    # Periodic ledger and audit cleanup (skip during pytest)
    if "pytest" not in sys.modules:
        auth.start_cleanup_task()

    yield

    # === SHUTDOWN ===
    if "pytest" not in sys.modules:
        auth.stop_cleanup_task()
    await close_db()
    logger.info("Shutting down Icon Store auth service...")


app = FastAPI(
    title="Icon Store Auth API",
    description="Accounts, sessions and token management for the icon pack store",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
)

install_exception_handlers(app)

# Middlewares (order matters - first added = last executed)
# 1. Security headers - adds security headers to all responses
app.add_middleware(SecurityHeadersMiddleware)

# 2. Rate limiting - the only brute-force protection on the auth endpoints
app.add_middleware(RateLimitMiddleware)

# 3. Request logging (development only)
if settings.APP_MODE == AppMode.DEV:
    from middleware.logging import RequestLoggingMiddleware, configure_request_logging

    configure_request_logging(settings.LOG_LEVEL)
    app.add_middleware(RequestLoggingMiddleware)

# 4. CORS middleware - must be last (first to process incoming requests)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=[
        "RateLimit-Limit",
        "RateLimit-Remaining",
        "RateLimit-Reset",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)

app.include_router(auth.router)


@app.get("/")
async def root():
    return {
        "name": "Icon Store Auth API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "mode": settings.APP_MODE.value,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=(settings.APP_MODE == AppMode.DEV),
    )
