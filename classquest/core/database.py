import asyncio
import inspect
import logging
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.sql import text
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)

from .config import DATABASE_URL, DB_RETRY_ATTEMPTS, DB_RETRY_DELAY, DB_RETRY_BACKOFF_FACTOR
from .exceptions import BaseAppException, DatabaseConnectionError, DatabaseTimeoutError

logger = logging.getLogger(__name__)


def build_engine(url: str, **overrides):
    """Create an async engine; SQLite runs without a connection pool"""
    if url.startswith("sqlite"):
        engine_kwargs = {"poolclass": NullPool}
    else:
        engine_kwargs = {
            "pool_size": 20,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 3600,  # reconnect every hour
            "pool_pre_ping": True,
        }
    engine_kwargs.update(overrides)
    return create_async_engine(url, echo=False, **engine_kwargs)


def build_sessionmaker(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)
async_session = build_sessionmaker(engine)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_EXCEPTIONS = (
    OperationalError,
    DisconnectionError,
    TimeoutError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = None,
    exceptions: tuple = None,
) -> Callable[[F], F]:
    """
    Retry decorator for database operations

    Args:
        max_attempts: Maximum number of attempts (defaults to config)
        delay: Initial delay between attempts (defaults to config)
        backoff_factor: Delay multiplier applied after each attempt
        exceptions: Exceptions that trigger a retry
    """
    if max_attempts is None:
        max_attempts = DB_RETRY_ATTEMPTS

    if delay is None:
        delay = DB_RETRY_DELAY

    if backoff_factor is None:
        backoff_factor = DB_RETRY_BACKOFF_FACTOR

    if exceptions is None:
        exceptions = RETRYABLE_EXCEPTIONS

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts - 1:
                        break

                    logger.warning(
                        f"Database operation failed (attempt {attempt + 1}/{max_attempts}): {str(e)}",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "exception_type": type(e).__name__,
                        },
                    )

                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor

                except Exception as e:
                    logger.error(
                        f"Non-retryable database error in {func.__name__}: {str(e)}",
                        extra={
                            "function": func.__name__,
                            "exception_type": type(e).__name__,
                        },
                    )
                    raise

            logger.error(
                f"Database operation failed after {max_attempts} attempts: {str(last_exception)}",
                extra={
                    "function": func.__name__,
                    "max_attempts": max_attempts,
                    "final_exception": str(last_exception),
                },
            )

            if isinstance(
                last_exception,
                (
                    ConnectionFailureError,
                    ConnectionDoesNotExistError,
                    DisconnectionError,
                ),
            ):
                raise DatabaseConnectionError(
                    f"Database connection failed after {max_attempts} attempts"
                )
            elif isinstance(last_exception, TimeoutError):
                raise DatabaseTimeoutError(func.__name__, 30)
            else:
                raise last_exception

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one database session per request
    """
    session = None
    max_attempts = DB_RETRY_ATTEMPTS
    current_delay = DB_RETRY_DELAY

    for attempt in range(max_attempts):
        try:
            session = async_session()
            break
        except (
            OperationalError,
            DisconnectionError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
        ) as e:
            if attempt == max_attempts - 1:
                logger.error(
                    f"Failed to create session after {max_attempts} attempts: {str(e)}"
                )
                raise DatabaseConnectionError(
                    f"Database connection failed after {max_attempts} attempts"
                )

            logger.warning(
                f"Session creation failed (attempt {attempt + 1}/{max_attempts}): {str(e)}"
            )
            await asyncio.sleep(current_delay)
            current_delay *= DB_RETRY_BACKOFF_FACTOR

    if session is None:
        raise DatabaseConnectionError("Failed to create database session")

    try:
        yield session
    except Exception as e:
        await session.rollback()
        logger.error(f"Session error: {str(e)}")
        raise
    finally:
        await session.close()


class DatabaseManager:
    """Engine-level operations: schema creation, health checks, shutdown"""

    def __init__(self, bind=None):
        self._engine = bind

    @property
    def engine(self):
        return self._engine or engine

    @db_retry()
    async def create_tables(self):
        """Create all tables registered on Base.metadata"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {str(e)}")
            raise

    @db_retry()
    async def check_connection(self):
        """Run SELECT 1 against the database"""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection check successful")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {str(e)}")
            raise DatabaseConnectionError("Database connection check failed")

    async def close_connections(self):
        """Dispose the connection pool"""
        try:
            await self.engine.dispose()
            logger.info("Database connections closed successfully")
        except Exception as e:
            logger.error(f"Error closing database connections: {str(e)}")


db_manager = DatabaseManager()


class TransactionManager:
    """Runs an operation and commits it, rolling back on any failure"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def execute(self, operation: Callable, *args, **kwargs):
        try:
            result = await operation(self.session, *args, **kwargs)
            await self.session.commit()
            return result
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Transaction failed: {str(e)}")
            raise


async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    """
    Execute an operation as one transaction
    """
    transaction_manager = TransactionManager(session)
    return await transaction_manager.execute(operation, *args, **kwargs)


def db_operation(func: F) -> F:
    """
    Decorator for CRUD operations: debug tracing and error logging
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        operation_name = func.__name__

        try:
            logger.debug(f"Starting database operation: {operation_name}")
            result = await func(*args, **kwargs)
            logger.debug(f"Database operation completed: {operation_name}")
            return result

        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {operation_name}: {str(e)}",
                extra={"operation": operation_name, "exception_type": type(e).__name__},
            )
            raise

        except BaseAppException:
            raise

        except Exception as e:
            logger.error(
                f"Unexpected error in {operation_name}: {str(e)}",
                extra={"operation": operation_name, "exception_type": type(e).__name__},
            )
            raise

    return wrapper
