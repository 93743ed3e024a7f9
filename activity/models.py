"""
activity/models.py -- Domain dataclass for activity log entries.

Entries are append-only: written once by ActivityStore.log_activity(),
never updated or deleted.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Activity:
    """One audit line: who did what to which item.

    item_type is "role" or "user". user_id is the acting user (None for
    system actions such as CLI bootstrap).
    """

    action: str  # "create" | "update" | "delete"
    item_type: str
    item_id: int
    timestamp: str  # ISO 8601
    user_id: Optional[int] = None
    notes: str = ""
    id: Optional[int] = None
