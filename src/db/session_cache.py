from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import DateTime, String, Text, create_engine, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from services.cache import Clock, TtlCache, utc_now

logger = logging.getLogger(__name__)


class SessionCacheBase(DeclarativeBase):
    pass


class CacheEntryOrm(SessionCacheBase):
    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    stored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SqliteSessionCache(TtlCache):
    """Key/value cache of JSON documents with their write time, kept in SQLite.

    Values must be JSON serializable; callers convert models to plain data first.
    """

    def __init__(self, session: Session, *, clock: Clock = utc_now) -> None:
        self.session = session
        self._clock = clock

    def get(self, key: str, max_age: timedelta) -> Any | None:
        row = self.session.get(CacheEntryOrm, key)
        if row is None:
            return None
        if self._clock() - self._as_utc(row.stored_at) >= max_age:
            return None
        return self._decode(row)

    def get_stale(self, key: str) -> Any | None:
        row = self.session.get(CacheEntryOrm, key)
        if row is None:
            return None
        return self._decode(row)

    def set(self, key: str, value: Any) -> None:
        record = {"key": key, "payload": json.dumps(value), "stored_at": self._clock()}
        stmt = sqlite_insert(CacheEntryOrm).values(record)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"payload": stmt.excluded.payload, "stored_at": stmt.excluded.stored_at},
        )
        self.session.execute(stmt)
        self.session.commit()
        self.session.expire_all()

    def delete(self, key: str) -> None:
        self.session.execute(delete(CacheEntryOrm).where(CacheEntryOrm.key == key))
        self.session.commit()

    def keys(self) -> list[str]:
        return list(self.session.scalars(select(CacheEntryOrm.key).order_by(CacheEntryOrm.key)))

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        # SQLite drops tzinfo on the way back
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @staticmethod
    def _decode(row: CacheEntryOrm) -> Any | None:
        try:
            return json.loads(row.payload)
        except ValueError:
            logger.warning("Error parsing cached entry %s; treating as missing", row.key)
            return None


def init_session_cache_db(db_file: str | Path, *, echo: bool = False, reset: bool = False) -> Session:
    path = Path(db_file)
    if reset and path.exists():
        path.unlink()
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(f"sqlite:///{path}", echo=echo)
    SessionCacheBase.metadata.create_all(engine)
    return sessionmaker(engine)()


__all__ = ["CacheEntryOrm", "SessionCacheBase", "SqliteSessionCache", "init_session_cache_db"]
