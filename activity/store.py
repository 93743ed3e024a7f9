"""
activity/store.py -- SQLAlchemy Core persistence for the activity log.

Pattern: Repository + Data Mapper (same as auth/store.py).

log_activity() is fire-and-forget: it is called after a role or user
mutation has already succeeded, so a failure to record the audit line is
logged and swallowed rather than reported as a failed mutation.

DB path: activity/itam_activity.db unless ACTIVITY_DB_URL is set.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from activity.models import Activity

logger = logging.getLogger("itam.activity")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'itam_activity.db'}"

_metadata = MetaData()

_activities = Table(
    "activities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(30), nullable=False),
    Column("item_type", String(30), nullable=False),
    Column("item_id", Integer, nullable=False),
    Column("user_id", Integer),
    Column("timestamp", String(32), nullable=False),
    Column("notes", Text),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class ActivityStore:
    """Repository for Activity entries.

    Usage:
        activities = ActivityStore()
        activities.log_activity("create", "role", 5, user_id=1, notes='Role "Auditor" created')
        activities.list_recent(20)
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def log_activity(
        self,
        action: str,
        item_type: str,
        item_id: int,
        user_id: Optional[int] = None,
        notes: str = "",
    ) -> Optional[int]:
        """Append one entry. Returns its id, or None if the write failed."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _activities.insert().values(
                        action=action,
                        item_type=item_type,
                        item_id=item_id,
                        user_id=user_id,
                        timestamp=datetime.now(timezone.utc).isoformat(),
                        notes=notes,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except SQLAlchemyError:
            logger.warning("Failed to log %s of %s %s", action, item_type, item_id, exc_info=True)
            return None

    def list_recent(self, limit: int = 50, item_type: Optional[str] = None) -> list[Activity]:
        """Return the newest entries first, optionally filtered by item_type."""
        query = _activities.select()
        if item_type is not None:
            query = query.where(_activities.c.item_type == item_type)
        query = query.order_by(_activities.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_activity(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_activity(row) -> Activity:
    return Activity(
        id=row.id,
        action=row.action,
        item_type=row.item_type,
        item_id=row.item_id,
        user_id=row.user_id,
        timestamp=row.timestamp,
        notes=row.notes or "",
    )
