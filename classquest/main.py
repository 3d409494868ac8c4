from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.limits import limiter, rate_limit_handler
from classquest.core.init_db import init_database
from classquest.core.error_handlers import setup_exception_handlers
from classquest.core.database import db_manager, get_session
from classquest.core.middleware import setup_middleware
from classquest.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)
from classquest.core.config import (
    validate_config,
    APP_NAME,
    APP_VERSION,
    CORS_ORIGINS,
    DEBUG,
    ENVIRONMENT,
    LOG_LEVEL,
    LOG_FORMAT,
)

from classquest.attendance.routers import sessions as attendance_sessions
from classquest.attendance.routers import checkins as attendance_checkins
from classquest.users.routers import students
from classquest.points.routers import points
from classquest.leaderboard.routers import leaderboard

setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup checks and shutdown cleanup"""

    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    try:
        validate_config()
        logger.info("✅ Configuration validated")

        await db_manager.check_connection()
        logger.info("✅ Database connection established")

        await init_database()
        logger.info("✅ Database initialized")

        log_business_event(
            "application_started",
            "system",
            0,
            {"version": APP_VERSION, "environment": ENVIRONMENT},
        )

        logger.info("🚀 Application startup completed")

    except Exception as e:
        logger.error(f"❌ Application startup failed: {str(e)}")
        error_tracker.track_error(
            "STARTUP_ERROR",
            str(e),
            {"component": "application_startup", "version": APP_VERSION},
        )
        raise

    yield

    logger.info("🛑 Shutting down application...")

    try:
        await db_manager.close_connections()
        logger.info("✅ Database connections closed")

    except Exception as e:
        logger.error(f"❌ Error during shutdown: {str(e)}")

    logger.info("👋 Application shutdown completed")


app = FastAPI(
    title=APP_NAME,
    description="Classroom attendance, points and leaderboard",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

setup_middleware(
    app,
    {
        "slow_request_threshold": 5.0,
        "exclude_paths": [
            "/health",
            "/docs",
            "/openapi.json",
            "/redoc",
            "/favicon.ico",
        ],
    },
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

app.include_router(attendance_sessions.router, prefix="/api/v1")
app.include_router(attendance_checkins.router, prefix="/api/v1")
app.include_router(students.router, prefix="/api/v1")
app.include_router(points.router, prefix="/api/v1")
app.include_router(leaderboard.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
async def health_check(db: AsyncSession = Depends(get_session)):
    """Liveness plus a round trip to the database"""
    await db.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "version": APP_VERSION,
        "total_errors": error_tracker.get_stats()["total_errors"],
    }
