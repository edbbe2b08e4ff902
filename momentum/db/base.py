"""
Momentum Database Base — SQLAlchemy declarative base, mixins, column types
and engine registry.

Provides:
- Base: declarative base for all Momentum models
- TimestampMixin: created_at, updated_at
- UTCDateTime: timezone-aware UTC timestamps on every backend
- DateList: sorted, de-duplicated list of calendar dates stored as JSON
- EngineRegistry: named engines + session factories
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import JSON, Column, DateTime, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all Momentum models."""
    pass


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC, returns aware UTC.

    SQLite drops tzinfo on the way back; normalizing here keeps
    comparisons against ``datetime.now(timezone.utc)`` valid everywhere.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class DateList(TypeDecorator):
    """List of calendar dates, persisted as a sorted JSON array of ISO strings."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Optional[Iterable[date]], dialect: Any) -> List[str]:
        return [d.isoformat() for d in normalize_days(value or [])]

    def process_result_value(self, value: Optional[List[str]], dialect: Any) -> List[date]:
        return normalize_days(value or [])


def normalize_days(values: Iterable[Any]) -> List[date]:
    """Coerce dates / datetimes / ISO strings to a sorted list of unique dates."""
    days = set()
    for v in values:
        if isinstance(v, datetime):
            if v.tzinfo is not None:
                v = v.astimezone(timezone.utc)
            days.add(v.date())
        elif isinstance(v, date):
            days.add(v)
        else:
            days.add(date.fromisoformat(str(v)[:10]))
    return sorted(days)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Adds created_at / updated_at columns."""
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class EngineRegistry:
    """
    Named SQLAlchemy engines and their session factories.

    Usage:
        registry = EngineRegistry()
        registry.register("momentum", "postgresql://...")
        factory = registry.get_session_factory("momentum")
    """

    def __init__(self) -> None:
        self._engines: Dict[str, Any] = {}
        self._session_factories: Dict[str, sessionmaker] = {}

    def register(
        self,
        name: str,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Create (or replace) an engine under *name*."""
        if url.startswith("sqlite"):
            # In-memory SQLite must share one connection across threads
            kwargs.setdefault("connect_args", {"check_same_thread": False})
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                kwargs.setdefault("poolclass", StaticPool)
            engine = create_engine(url, **kwargs)
            _enable_sqlite_savepoints(engine)
        else:
            engine = create_engine(
                url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=pool_pre_ping,
                **kwargs,
            )
        if name in self._engines:
            self._engines[name].dispose()
        self._engines[name] = engine
        self._session_factories[name] = sessionmaker(bind=engine, expire_on_commit=False)
        return engine

    def get(self, name: str) -> Any:
        if name not in self._engines:
            raise KeyError(f"Engine '{name}' not registered. Available: {list(self._engines.keys())}")
        return self._engines[name]

    def get_session_factory(self, name: str) -> sessionmaker:
        if name not in self._session_factories:
            raise KeyError(f"Session factory '{name}' not found. Available: {list(self._session_factories.keys())}")
        return self._session_factories[name]

    def dispose_all(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
        self._session_factories.clear()

    @property
    def registered_names(self) -> list:
        return list(self._engines.keys())

    def health_check(self, name: str) -> bool:
        """Check if an engine can connect."""
        try:
            from sqlalchemy import text
            with self.get(name).connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False


def _enable_sqlite_savepoints(engine: Any) -> None:
    """
    pysqlite opens transactions lazily and breaks SAVEPOINT; emit BEGIN
    ourselves so ``Session.begin_nested()`` works as it does on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine_registry = EngineRegistry()
