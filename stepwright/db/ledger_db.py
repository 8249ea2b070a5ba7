from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..errors import PersistenceError
from ..usage.models import UsageLimits, UsageRecord
from .models import UsageLog, UserUsageLimits


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class UsageLedgerDB:
    """Async usage ledger backed by SQLModel tables.

    Timestamps are stored as naive UTC so that SQLite and Postgres compare
    them the same way.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine) as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                raise PersistenceError(str(exc)) from exc

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    async def append_usage(self, record: UsageRecord) -> None:
        row = UsageLog(
            **record.model_dump(exclude={"created_at"}),
            created_at=_naive_utc(record.created_at),
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()

    async def list_usage(
        self, user_id: str, start: datetime, end: Optional[datetime] = None
    ) -> list[UsageRecord]:
        stmt = select(UsageLog).where(
            UsageLog.user_id == user_id, UsageLog.created_at >= _naive_utc(start)
        )
        if end is not None:
            stmt = stmt.where(UsageLog.created_at < _naive_utc(end))
        stmt = stmt.order_by(UsageLog.created_at, UsageLog.id)
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            UsageRecord(
                **row.model_dump(exclude={"id", "created_at"}),
                created_at=_aware(row.created_at),
            )
            for row in rows
        ]

    async def get_limits(self, user_id: str) -> UsageLimits | None:
        async with self.session() as session:
            row = await session.get(UserUsageLimits, user_id)
            if row is None:
                return None
            return UsageLimits(**row.model_dump(exclude={"user_id", "updated_at"}))

    async def upsert_limits(self, user_id: str, limits: UsageLimits) -> None:
        row = UserUsageLimits(user_id=user_id, **limits.model_dump())
        async with self.session() as session:
            await session.merge(row)
            await session.commit()
