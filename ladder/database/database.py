from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ladder.config import Config
from ladder.database.models import Base
from ladder.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        if self.database_url is None:
            database_url = Config.get_async_database_url()
        elif self.database_url.startswith('sqlite:///'):
            database_url = self.database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        else:
            database_url = self.database_url

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a read-only database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All repository calls made with the yielded session commit together on
        success, or roll back together on failure. This is what keeps a
        roster replace, the history append and the ladder version bump from
        being applied partially.

        Usage:
            async with db.transaction() as session:
                await members.replace_all(session, ladder_id, rows)
                await history.insert_history(session, record)
                await ladders.update(session, ladder_id, {}, expected_version=v)
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")
