"""
api/routes/v1/activities.py -- Read access to the activity log.

Routes:
  GET /api/v1/activities    -- newest entries first (reports.view)

Query parameters:
  limit      1-500, default 50
  item_type  optional filter, e.g. "role" or "user"
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from activity.store import ActivityStore
from api.models import ActivityResponse
from auth.dependencies import check_permission
from rbac.models import Principal

router = APIRouter()


@router.get("/activities", response_model=list[ActivityResponse])
async def list_activities(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    item_type: Optional[str] = Query(default=None, max_length=30),
    principal: Principal = Depends(check_permission("reports", "view")),
) -> list[ActivityResponse]:
    activities: ActivityStore = request.app.state.activity_store
    return [
        ActivityResponse(
            id=a.id,
            action=a.action,
            item_type=a.item_type,
            item_id=a.item_id,
            user_id=a.user_id,
            timestamp=a.timestamp,
            notes=a.notes,
        )
        for a in activities.list_recent(limit=limit, item_type=item_type)
    ]
