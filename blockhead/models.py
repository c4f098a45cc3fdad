"""
Database models for BlockHead.

Uses Peewee ORM with SQLite. Holds the diagnostics stream: per-domain log
entries written by lifecycle operations, dependency installs and process
exits. Site records themselves live in the JSON site store.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from peewee import (
    AutoField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    Model,
    SqliteDatabase,
    TextField,
)

from .config import config

logger = logging.getLogger(__name__)

database = DatabaseProxy()


def initialize_db(db_path: Path = None):
    """Initialize database connection and create tables."""
    db_path = Path(db_path or config.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = SqliteDatabase(
        str(db_path),
        pragmas={
            "journal_mode": "wal",
            "cache_size": -64 * 1000,
            "busy_timeout": 5000,
        },
        check_same_thread=False,
    )
    database.initialize(db)
    database.create_tables([LogEntry], safe=True)


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class LogEntry(BaseModel):
    """A diagnostics line for one site."""

    id = AutoField()
    domain = CharField(index=True)
    level = CharField(default="info")  # info, warning, error
    message = TextField()
    timestamp = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = "log_entries"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "domain": self.domain,
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def record(domain: str, level: str, message: str):
    """Append to the diagnostics stream. Never raises."""
    if database.obj is None:
        return
    try:
        LogEntry.create(domain=domain, level=level, message=message[:4000])
    except Exception as e:
        logger.error(f"Could not record diagnostics for {domain}: {e}")


def recent(domain: str, limit: int = 100, level: str = None) -> list[LogEntry]:
    query = LogEntry.select().where(LogEntry.domain == domain)
    if level:
        query = query.where(LogEntry.level == level)
    return list(query.order_by(LogEntry.timestamp.desc(), LogEntry.id.desc()).limit(limit))


def prune(days: int = None) -> int:
    """Remove diagnostics older than the retention window."""
    cutoff = datetime.now() - timedelta(days=days if days is not None else config.log_retention_days)
    deleted = LogEntry.delete().where(LogEntry.timestamp < cutoff).execute()
    if deleted:
        logger.debug(f"Cleaned up {deleted} old log entries")
    return deleted
