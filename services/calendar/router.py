"""
services/calendar/router.py
Calendar endpoints: public availability views and admin per-date overrides.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.catalog import DEFAULT_TIME_SLOTS
from config.database import get_db
from services.calendar.policy import CalendarPolicy
from shared.middleware.auth import TokenData, require_admin
from shared.schemas.schemas import (
    AvailabilityRangeResponse,
    CalendarBulkRequest,
    CalendarBulkResponse,
    CalendarResolutionResponse,
    CalendarSettingResponse,
    CalendarSettingUpdate,
    PaginatedResponse,
)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


# ── Public ────────────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityRangeResponse)
async def availability_range(
    start: date = Query(...),
    end: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Per-day resolution for a date range, both ends inclusive."""
    days = await CalendarPolicy(db).resolve_range(start, end)
    return AvailabilityRangeResponse(
        start=start,
        end=end,
        default_hours=list(DEFAULT_TIME_SLOTS),
        days=[CalendarResolutionResponse(**d.to_dict()) for d in days],
    )


# ── Admin ─────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_settings(
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await CalendarPolicy(db).list_settings(start, end, page, page_size)
    return PaginatedResponse.build(
        [CalendarSettingResponse.model_validate(s) for s in rows], total, page, page_size
    )


@router.post("/bulk", response_model=CalendarBulkResponse)
async def bulk_update(
    data: CalendarBulkRequest,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Upsert many dates at once. Invalid items are reported, valid ones saved."""
    result = await CalendarPolicy(db).bulk_upsert(data.items)
    await db.commit()
    return CalendarBulkResponse(
        updated=[CalendarSettingResponse.model_validate(s) for s in result["updated"]],
        errors=result["errors"],
        total_updated=result["total_updated"],
    )


@router.get("/{day}", response_model=CalendarResolutionResponse)
async def get_day(day: date, db: AsyncSession = Depends(get_db)):
    resolution = await CalendarPolicy(db).resolve(day)
    return CalendarResolutionResponse(**resolution.to_dict())


@router.put("/{day}", response_model=CalendarSettingResponse)
async def update_day(
    day: date,
    data: CalendarSettingUpdate,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    setting = await CalendarPolicy(db).upsert(day, data)
    await db.commit()
    return CalendarSettingResponse.model_validate(setting)
