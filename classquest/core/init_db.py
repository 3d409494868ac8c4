import asyncio
import logging

from sqlalchemy import select, func

from classquest.core.config import ENVIRONMENT, INITIAL_ADMIN_USERNAME
from classquest.core.database import async_session, db_manager, db_operation, engine, Base
from classquest.core.exceptions import DatabaseError, ConfigurationError

# Importing the models registers their tables on Base.metadata
from classquest.users.models.users import User, UserRole
from classquest.attendance.models.sessions import AttendanceSession
from classquest.attendance.models.records import AttendanceRecord
from classquest.points.models.transactions import PointsTransaction

logger = logging.getLogger(__name__)


@db_operation
async def create_initial_admin():
    """Create the first admin account if the user table is empty"""
    if not INITIAL_ADMIN_USERNAME:
        logger.info("INITIAL_ADMIN_USERNAME not set, skipping admin creation")
        return

    async with async_session() as session:
        try:
            result = await session.execute(select(func.count(User.id)))
            users_count = result.scalar() or 0

            if users_count == 0:
                logger.info(f"Creating initial admin '{INITIAL_ADMIN_USERNAME}'...")
                session.add(
                    User(username=INITIAL_ADMIN_USERNAME, role=UserRole.ADMIN)
                )
                await session.commit()
                logger.info("Initial admin created successfully")
            else:
                logger.info(
                    f"Users already exist ({users_count} found), skipping admin creation"
                )

        except Exception as e:
            logger.error(f"Failed to create initial admin: {e}")
            await session.rollback()
            raise DatabaseError(f"Failed to create initial admin: {str(e)}")


async def init_database():
    """Create tables and initial data"""
    try:
        logger.info("Starting database initialization...")

        await db_manager.check_connection()
        logger.info("✅ Database connection verified")

        await db_manager.create_tables()
        logger.info("✅ Database tables created/verified")

        await create_initial_admin()
        logger.info("✅ Initial data created/verified")

        logger.info("🎉 Database initialization completed successfully")

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def verify_database_setup():
    """Check that every table answers a count query"""
    try:
        logger.info("Verifying database setup...")

        async with async_session() as session:
            for model in (User, AttendanceSession, AttendanceRecord, PointsTransaction):
                result = await session.execute(select(func.count()).select_from(model))
                logger.info(f"✅ {model.__tablename__}: {result.scalar()} rows")

        logger.info("✅ Database verification passed")
        return True

    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        raise DatabaseError(f"Database verification failed: {str(e)}")


async def reset_database():
    """Drop and recreate every table (development/testing only)"""
    if ENVIRONMENT not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    try:
        logger.warning("🚨 RESETTING DATABASE - ALL DATA WILL BE LOST!")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.info("✅ All tables dropped")

        await init_database()

        logger.info("✅ Database reset completed")

    except Exception as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")


if __name__ == "__main__":
    import sys

    async def main():
        if len(sys.argv) > 1:
            command = sys.argv[1]

            if command == "init":
                await init_database()
            elif command == "verify":
                await verify_database_setup()
            elif command == "reset":
                await reset_database()
            else:
                print(f"Unknown command: {command}")
                print("Available commands: init, verify, reset")
                sys.exit(1)
        else:
            await init_database()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
