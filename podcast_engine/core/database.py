"""Async SQLAlchemy engine for the Postgres job and credit stores."""

from __future__ import annotations

from podcast_engine.config import get_database_settings
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
  pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

_ASYNC_SCHEMES = {"postgresql://": "postgresql+asyncpg://", "postgres://": "postgresql+asyncpg://"}


def _database_url() -> str | None:
  """Return PODCAST_PG_DSN rewritten for the asyncpg driver."""
  dsn = get_database_settings().pg_dsn
  if not dsn:
    return None
  for prefix, replacement in _ASYNC_SCHEMES.items():
    if dsn.startswith(prefix):
      return replacement + dsn[len(prefix) :]
  return dsn


def get_db_engine() -> AsyncEngine | None:
  global _engine
  if _engine is None:
    database_url = _database_url()
    if database_url:
      settings = get_database_settings()
      # Pooled connections are pinged before each job transaction.
      _engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
  """Sessionmaker bound to the engine; raises when no DSN is configured."""
  global _session_factory
  if _session_factory is None:
    engine = get_db_engine()
    if engine is None:
      raise RuntimeError("Database not initialized: set PODCAST_PG_DSN or choose PODCAST_JOB_STORE=memory|firestore.")
    _session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
  return _session_factory


async def dispose_db_engine() -> None:
  """Close pooled connections and forget the engine."""
  global _engine, _session_factory
  if _engine is not None:
    await _engine.dispose()
  _engine = None
  _session_factory = None
