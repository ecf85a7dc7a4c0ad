"""Database utilities for the Top Picks service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by the library, telemetry and config tables."""

    metadata = MetaData()


class Database:
    """Owns the async engine and the session factory handed to repositories."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create missing tables and columns for every ORM model."""

        from . import db_models  # noqa: F401 - registers the mapped tables

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on old tables."""

        inspector = inspect(sync_connection)
        table_names = inspector.get_table_names()
        if "top_picks_config" not in table_names:
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("top_picks_config")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "hybrid_local_weight",
            "ALTER TABLE top_picks_config ADD COLUMN hybrid_local_weight FLOAT DEFAULT 0.5",
            (
                "UPDATE top_picks_config SET hybrid_local_weight = 0.5 "
                "WHERE hybrid_local_weight IS NULL"
            ),
        )
        _ensure_column(
            "hybrid_external_weight",
            "ALTER TABLE top_picks_config ADD COLUMN hybrid_external_weight FLOAT DEFAULT 0.5",
            (
                "UPDATE top_picks_config SET hybrid_external_weight = 0.5 "
                "WHERE hybrid_external_weight IS NULL"
            ),
        )
        for media in ("movies", "series"):
            _ensure_column(
                f"{media}_languages",
                f"ALTER TABLE top_picks_config ADD COLUMN {media}_languages JSON",
                f"UPDATE top_picks_config SET {media}_languages = '[]' "
                f"WHERE {media}_languages IS NULL",
            )
            _ensure_column(
                f"{media}_include_unknown_language",
                (
                    f"ALTER TABLE top_picks_config ADD COLUMN "
                    f"{media}_include_unknown_language BOOLEAN DEFAULT TRUE"
                ),
                f"UPDATE top_picks_config SET {media}_include_unknown_language = TRUE "
                f"WHERE {media}_include_unknown_language IS NULL",
            )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session
