import os

# PostgreSQL settings
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "classquest")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").lower()
DEBUG = ENVIRONMENT in ["development", "dev"]

# Database retry settings
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "1.0"))
DB_RETRY_BACKOFF_FACTOR = float(os.getenv("DB_RETRY_BACKOFF_FACTOR", "2.0"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if not DEBUG else "text")

# Application
APP_NAME = os.getenv("APP_NAME", "ClassQuest API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# Bearer tokens are issued by the identity provider, we only verify them
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Attendance & points
ATTENDANCE_AWARD_POINTS = int(os.getenv("ATTENDANCE_AWARD_POINTS", "30"))
ATTENDANCE_AWARD_REASON = os.getenv(
    "ATTENDANCE_AWARD_REASON", "Weekly attendance check-in"
)
LEADERBOARD_BUCKET_SIZE = int(os.getenv("LEADERBOARD_BUCKET_SIZE", "50"))
QR_CHECKIN_BASE_URL = os.getenv("QR_CHECKIN_BASE_URL", "http://localhost:3000")

# Admin account created on an empty database; skipped when unset
INITIAL_ADMIN_USERNAME = os.getenv("INITIAL_ADMIN_USERNAME")

# Rate limiting
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:8080"
    ).split(",")
    if origin.strip()
]


def validate_config():
    """Validate critical settings at startup"""
    errors = []

    if not JWT_SECRET_KEY:
        errors.append("JWT_SECRET_KEY is required")

    if not DATABASE_URL:
        errors.append("DATABASE_URL or POSTGRES_* settings are required")

    if DB_RETRY_ATTEMPTS < 1:
        errors.append("DB_RETRY_ATTEMPTS must be >= 1")

    if DB_RETRY_DELAY < 0:
        errors.append("DB_RETRY_DELAY must be >= 0")

    if ATTENDANCE_AWARD_POINTS <= 0:
        errors.append("ATTENDANCE_AWARD_POINTS must be > 0")

    if LEADERBOARD_BUCKET_SIZE <= 0:
        errors.append("LEADERBOARD_BUCKET_SIZE must be > 0")

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")


if os.getenv("VALIDATE_CONFIG_ON_IMPORT", "true").lower() == "true":
    try:
        validate_config()
    except ValueError as e:
        print(f"⚠️  Configuration warning: {e}")
