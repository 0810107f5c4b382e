"""Async database manager for the credit ledger (single-DB)."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_ledger.common.config import LedgerSettings, get_settings
from credit_ledger.common.exceptions import StorageError
from credit_ledger.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import credit_ledger.credits.models  # noqa: F401
import credit_ledger.quota.models  # noqa: F401
import credit_ledger.payments.models  # noqa: F401


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: LedgerSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["timeout"] = self._settings.db_timeout
        elif url.startswith("postgresql+asyncpg"):
            connect_args["command_timeout"] = self._settings.db_timeout
        self.engine = create_async_engine(url, echo=False, connect_args=connect_args)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    @property
    def dialect_name(self) -> str:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized, call init() first")
        return self.engine.dialect.name

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error.

        Connectivity failures (locked, timed out, unreachable) surface as
        StorageError so callers can retry without inspecting driver errors.
        """
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized, call init() first")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except (OperationalError, InterfaceError) as exc:
                await session.rollback()
                raise StorageError(f"Datastore unavailable: {exc.orig or exc}") from exc
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized, call init() first")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None


def dialect_insert(session: AsyncSession, model):
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    name = session.bind.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported dialect for upserts: {name}")
    return insert(model)
