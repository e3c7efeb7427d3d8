"""Dialect helpers for statements that differ between PostgreSQL and SQLite."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_for(db: Session, table):
    """Return a dialect-specific INSERT that supports on_conflict_do_nothing."""
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
