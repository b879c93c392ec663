"""
services/notification/router.py
Admin view over the notification audit log.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import TokenData, require_admin
from shared.models.models import NotificationLog, NotificationStatus
from shared.schemas.schemas import NotificationLogResponse, PaginatedResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/logs", response_model=PaginatedResponse)
async def notification_logs(
    kind: Optional[str] = None,
    status: Optional[NotificationStatus] = None,
    recipient: Optional[str] = None,
    day: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Most recent first. `kind` matches exactly; `recipient` is case-insensitive."""
    query = select(NotificationLog)
    if kind:
        query = query.where(NotificationLog.kind == kind)
    if status:
        query = query.where(NotificationLog.status == status)
    if recipient:
        query = query.where(func.lower(NotificationLog.recipient) == recipient.lower())
    if day:
        query = query.where(
            NotificationLog.created_at >= datetime.combine(day, time.min, tzinfo=timezone.utc),
            NotificationLog.created_at <= datetime.combine(day, time.max, tzinfo=timezone.utc),
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(NotificationLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [NotificationLogResponse.model_validate(n) for n in result.scalars().all()]
    return PaginatedResponse.build(items, total, page, page_size)
