"""
Database service for Axis Sync
Async SQLite access through SQLAlchemy, table creation and health checks
"""

import logging
from pathlib import Path
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy import text

from axis_sync.core.models import Base

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/axis.db"
EXPECTED_TABLES = ('accounts', 'projects', 'tasks', 'task_mappings', 'connected_calendars', 'calendar_events')


class DatabaseService:
    """Async SQLite database service"""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.logger = logging.getLogger(__name__)
        self.engine = None
        self.SessionLocal = None
        self.configure(database_url)

    def configure(self, database_url: str):
        """(Re)bind the service to a database URL"""
        self.database_url = database_url

        engine_options = {"echo": False, "connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            # One shared connection keeps the in-memory database alive
            engine_options["poolclass"] = StaticPool
        elif database_url.startswith("sqlite"):
            db_file = database_url.split(":///", 1)[-1]
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)

        # File databases get a connection per session, so each session owns its transaction
        self.engine = create_async_engine(database_url, **engine_options)

        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self.logger.info(f"Database service initialized: {database_url}")

    async def create_tables(self):
        """Create tables using SQLAlchemy directly"""
        self.logger.info("Creating tables using SQLAlchemy...")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("All tables created successfully")
        except Exception as e:
            self.logger.error(f"Error creating tables: {e}")
            raise

    async def drop_tables(self):
        """Drop every table (used by tests and `init-db --reset`)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session"""
        async with self.SessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def health_check(self) -> bool:
        """Check database connection health"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))

                placeholders = ", ".join(f"'{name}'" for name in EXPECTED_TABLES)
                result = await session.execute(
                    text(f"SELECT name FROM sqlite_master WHERE type='table' AND name IN ({placeholders})")
                )
                tables = result.fetchall()

                if len(tables) < len(EXPECTED_TABLES):
                    self.logger.warning(f"Only {len(tables)}/{len(EXPECTED_TABLES)} expected tables found")
                    return False

                return True
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()
        self.logger.info("Database connections closed")


# Global database service instance
db_service = DatabaseService()
