"""Engine and session factory for the billing database."""

from __future__ import annotations

from pathlib import Path

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import sessionmaker

from app.backend.src.core.config import get_settings

LOGGER = structlog.get_logger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[4]


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def resolve_database_url(raw_url: str) -> URL:
    """Anchor relative SQLite files at the project root so scripts and tests share one file."""

    url = make_url(raw_url)
    if not _is_sqlite(url) or url.database in (None, "", ":memory:"):
        return url

    path = Path(url.database)
    if path.is_absolute():
        return url
    resolved = (PROJECT_ROOT / path).resolve()
    LOGGER.info("database_path_normalized", original=str(path), resolved=str(resolved))
    return url.set(database=str(resolved))


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(raw_url: str) -> Engine:
    """Create an engine; SQLite connections enforce foreign keys and allow cross-thread use."""

    url = resolve_database_url(raw_url)
    sqlite = _is_sqlite(url)
    built = create_engine(
        url,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if sqlite else {},
    )
    if sqlite:
        event.listen(built, "connect", _enable_sqlite_foreign_keys)
    LOGGER.info(
        "database_engine_initialized",
        url=url.render_as_string(hide_password=True),
    )
    return built


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
)

__all__ = ["SessionLocal", "build_engine", "engine", "resolve_database_url"]
