"""Database utilities for the movie catalog service."""

from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData, inspect, make_url, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by the ORM models."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        engine_options: dict[str, Any] = {"future": True}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            # SQLite allows a single writer; queue sessions on one connection.
            engine_options.update(pool_size=1, max_overflow=0)
        self._engine: AsyncEngine = create_async_engine(database_url, **engine_options)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the ORM tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(self._apply_schema_migrations)
            await connection.run_sync(Base.metadata.create_all)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure columns added after the first release exist on old tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())
        is_postgres = sync_connection.dialect.name == "postgresql"
        timestamp_type = "TIMESTAMP" if is_postgres else "DATETIME"
        false_literal = "false" if is_postgres else "0"

        def _ensure_column(
            table: str, name: str, ddl: str, init_sql: str | None = None
        ) -> None:
            if table not in table_names:
                return
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

        _ensure_column(
            "movies",
            "poster",
            "ALTER TABLE movies ADD COLUMN poster VARCHAR(1024)",
        )
        _ensure_column(
            "movies",
            "is_deleted",
            f"ALTER TABLE movies ADD COLUMN is_deleted BOOLEAN DEFAULT {false_literal}",
            f"UPDATE movies SET is_deleted = {false_literal} WHERE is_deleted IS NULL",
        )
        _ensure_column(
            "movies",
            "deleted_at",
            f"ALTER TABLE movies ADD COLUMN deleted_at {timestamp_type}",
        )
        _ensure_column(
            "user_movies",
            "deleted_at",
            f"ALTER TABLE user_movies ADD COLUMN deleted_at {timestamp_type}",
        )
        if "user_movies" in table_names:
            sync_connection.execute(
                text(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_user_movies_effective_title "
                    "ON user_movies (user_id, lower(effective_normalized_title)) "
                    f"WHERE is_deleted = {false_literal}"
                )
            )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
