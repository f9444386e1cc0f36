"""
Database connection, session management and the unit of work.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import sqlalchemy as sa
import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, select

from provisioning.core.dialect import Dialect
from provisioning.core.events import EventBus
from provisioning.core.exceptions import StorageError
from provisioning.schemas.events import DomainEvent

log = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=SQLModel)
CommitCallback = Callable[[], Union[None, Awaitable[None]]]


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(database_url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


def _configure_sqlite(engine: AsyncEngine) -> None:
    # pysqlite issues its own BEGIN, which breaks SAVEPOINT; let SQLAlchemy emit it.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (development only, use migrations in production)."""
    import provisioning.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


class UnitOfWork:
    """
    One database transaction plus the callbacks to run once it commits.

    Storage failures surface as ``StorageError`` with the SQLAlchemy error
    chained, so callers can still ask ``is_unique_constraint_violation``.
    Callbacks fire in registration order after a successful commit and are
    dropped on rollback.
    """

    def __init__(self, session: AsyncSession, bus: Optional[EventBus] = None):
        self.session = session
        self.bus = bus
        self.dialect = Dialect(session.bind.dialect)
        self._after_commit: list[CommitCallback] = []

    # -- reads -------------------------------------------------------------

    async def get(self, model: type[ModelT], *criteria: Any) -> Optional[ModelT]:
        try:
            result = await self.session.execute(select(model).where(*criteria).limit(1))
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to read {model.__tablename__}", exc) from exc
        return result.scalars().first()

    async def count(self, model: type[ModelT], *criteria: Any) -> int:
        stmt = sa.select(sa.func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to count {model.__tablename__}", exc) from exc
        return result.scalar_one()

    async def refresh(self, row: ModelT) -> ModelT:
        try:
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to reload {row.__tablename__}", exc) from exc
        return row

    # -- writes ------------------------------------------------------------

    async def insert(self, row: ModelT) -> ModelT:
        self.session.add(row)
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to insert into {row.__tablename__}", exc) from exc
        return row

    async def insert_with_explicit_id(self, row: ModelT) -> ModelT:
        """Insert a row that carries its own id, inside a SAVEPOINT."""
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
            await self.dialect.post_insert_id(self.session, row.__tablename__)
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to insert into {row.__tablename__} with id {row.id}", exc
            ) from exc
        return row

    async def update(self, model: type[ModelT], values: dict[str, Any], *criteria: Any) -> int:
        stmt = (
            sa.update(model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to update {model.__tablename__}", exc) from exc
        return result.rowcount

    def is_unique_constraint_violation(self, err: BaseException) -> bool:
        return self.dialect.is_unique_constraint_violation(err)

    # -- commit-deferred side effects ---------------------------------------

    def on_commit(self, callback: CommitCallback) -> None:
        self._after_commit.append(callback)

    def publish_after_commit(self, evt: DomainEvent) -> None:
        if self.bus is None:
            log.debug("uow.event_dropped", event_type=evt.event_type)
            return
        bus = self.bus
        self.on_commit(lambda: bus.publish(evt))

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            self._after_commit.clear()
            raise StorageError("failed to commit transaction", exc) from exc

        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # The data is already durable; one bad subscriber must not hide it.
                log.exception("uow.after_commit_failed")

    async def rollback(self) -> None:
        self._after_commit.clear()
        await self.session.rollback()


@asynccontextmanager
async def unit_of_work(
    session_factory: sessionmaker, bus: Optional[EventBus] = None
) -> AsyncIterator[UnitOfWork]:
    """Commit on clean exit, roll back and re-raise on any exception."""
    async with session_factory() as session:
        uow = UnitOfWork(session, bus)
        try:
            yield uow
            await uow.commit()
        except Exception:
            await uow.rollback()
            raise
