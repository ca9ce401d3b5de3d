from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import case, delete, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from statement_converter.core.config import settings
from statement_converter.core.db import SessionLocal
from statement_converter.core.logging import get_logger, log_event, log_exception
from statement_converter.core.models import utcnow
from statement_converter.modules.usage.models import UsageRecord

logger = get_logger(__name__)

WINDOW_SECONDS = 24 * 60 * 60
WINDOW_MS = WINDOW_SECONDS * 1000

Clock = Callable[[], float]


class QuotaStoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    count: int


class QuotaStore:
    """Atomic per-identifier daily counter.

    ``check_and_increment`` admits and counts one use, or denies without touching
    the counter once ``daily_limit`` uses happened inside the current window.
    """

    def check_and_increment(
        self, *, identifier_hash: str, daily_limit: int
    ) -> QuotaDecision:  # pragma: no cover
        raise NotImplementedError

    def peek(self, *, identifier_hash: str) -> int:  # pragma: no cover
        raise NotImplementedError

    def purge_expired(self) -> int:  # pragma: no cover
        raise NotImplementedError


@dataclass
class _Entry:
    count: int
    reset_at_ms: int


class InMemoryQuotaStore(QuotaStore):
    """Process-local store. Only correct for a single server instance."""

    def __init__(self, *, max_entries: int = 10000, clock: Clock = time.time):
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._max_entries = max(1, max_entries)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check_and_increment(self, *, identifier_hash: str, daily_limit: int) -> QuotaDecision:
        if daily_limit < 1:
            return QuotaDecision(allowed=False, remaining=0, count=0)
        now_ms = self._now_ms()
        with self._lock:
            entry = self._entries.get(identifier_hash)
            if entry is None or now_ms >= entry.reset_at_ms:
                if entry is None:
                    self._make_room(now_ms)
                self._entries[identifier_hash] = _Entry(count=1, reset_at_ms=now_ms + WINDOW_MS)
                return QuotaDecision(allowed=True, remaining=daily_limit - 1, count=1)
            if entry.count >= daily_limit:
                return QuotaDecision(allowed=False, remaining=0, count=entry.count)
            entry.count += 1
            return QuotaDecision(
                allowed=True, remaining=daily_limit - entry.count, count=entry.count
            )

    def peek(self, *, identifier_hash: str) -> int:
        now_ms = self._now_ms()
        with self._lock:
            entry = self._entries.get(identifier_hash)
            if entry is None or now_ms >= entry.reset_at_ms:
                return 0
            return entry.count

    def purge_expired(self) -> int:
        now_ms = self._now_ms()
        with self._lock:
            return self._purge_expired_locked(now_ms)

    def _purge_expired_locked(self, now_ms: int) -> int:
        expired = [k for k, v in self._entries.items() if now_ms >= v.reset_at_ms]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _make_room(self, now_ms: int) -> None:
        if len(self._entries) < self._max_entries:
            return
        evicted = self._purge_expired_locked(now_ms)
        while len(self._entries) >= self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].reset_at_ms)
            del self._entries[oldest]
            evicted += 1
        log_event(logger, "usage.memory.evicted", evicted=evicted, size=len(self._entries))


class SqlQuotaStore(QuotaStore):
    """Durable store; one upsert statement per admission on PostgreSQL and SQLite."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] = SessionLocal,
        clock: Clock = time.time,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check_and_increment(self, *, identifier_hash: str, daily_limit: int) -> QuotaDecision:
        if daily_limit < 1:
            return QuotaDecision(allowed=False, remaining=0, count=0)
        now_ms = self._now_ms()
        try:
            with self._session_factory() as session, session.begin():
                dialect = session.get_bind().dialect.name
                if dialect in {"postgresql", "sqlite"}:
                    count = self._upsert(
                        session,
                        dialect=dialect,
                        identifier_hash=identifier_hash,
                        daily_limit=daily_limit,
                        now_ms=now_ms,
                    )
                else:
                    count = self._locked_increment(
                        session,
                        identifier_hash=identifier_hash,
                        daily_limit=daily_limit,
                        now_ms=now_ms,
                    )
        except SQLAlchemyError as e:
            log_exception(logger, "usage.store.failure", backend="sql")
            raise QuotaStoreError("Usage counter store unavailable") from e

        if count is None:
            return QuotaDecision(allowed=False, remaining=0, count=daily_limit)
        return QuotaDecision(allowed=True, remaining=max(daily_limit - count, 0), count=count)

    def _upsert(
        self,
        session: Session,
        *,
        dialect: str,
        identifier_hash: str,
        daily_limit: int,
        now_ms: int,
    ) -> int | None:
        table = UsageRecord.__table__
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        now = utcnow()
        expired = table.c.reset_at_ms <= now_ms
        stmt = insert_fn(table).values(
            identifier_hash=identifier_hash,
            used_count=1,
            reset_at_ms=now_ms + WINDOW_MS,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.identifier_hash],
            set_={
                "used_count": case((expired, 1), else_=table.c.used_count + 1),
                "reset_at_ms": case((expired, now_ms + WINDOW_MS), else_=table.c.reset_at_ms),
                "updated_at": now,
            },
            where=or_(expired, table.c.used_count < daily_limit),
        ).returning(table.c.used_count)
        return session.execute(stmt).scalar_one_or_none()

    def _locked_increment(
        self,
        session: Session,
        *,
        identifier_hash: str,
        daily_limit: int,
        now_ms: int,
    ) -> int | None:
        record = session.scalar(
            select(UsageRecord)
            .where(UsageRecord.identifier_hash == identifier_hash)
            .with_for_update()
        )
        if record is None:
            session.add(
                UsageRecord(
                    identifier_hash=identifier_hash,
                    used_count=1,
                    reset_at_ms=now_ms + WINDOW_MS,
                )
            )
            return 1
        if record.reset_at_ms <= now_ms:
            record.used_count = 1
            record.reset_at_ms = now_ms + WINDOW_MS
            return 1
        if record.used_count >= daily_limit:
            return None
        record.used_count += 1
        return record.used_count

    def peek(self, *, identifier_hash: str) -> int:
        now_ms = self._now_ms()
        with self._session_factory() as session:
            record = session.get(UsageRecord, identifier_hash)
            if record is None or record.reset_at_ms <= now_ms:
                return 0
            return record.used_count

    def purge_expired(self) -> int:
        now_ms = self._now_ms()
        with self._session_factory() as session, session.begin():
            result = session.execute(delete(UsageRecord).where(UsageRecord.reset_at_ms <= now_ms))
        return int(result.rowcount or 0)


_store: QuotaStore | None = None


def get_quota_store() -> QuotaStore:
    global _store  # noqa: PLW0603
    if _store is not None:
        return _store

    if settings.quota_backend == "memory":
        _store = InMemoryQuotaStore(max_entries=settings.quota_memory_max_entries)
    else:
        _store = SqlQuotaStore()
    return _store
