"""
services/calendar/policy.py
Per-date booking policy: explicit admin overrides layered over the
default weekday rules (Mon–Fri open, weekends closed).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.exceptions import ValidationError
from shared.models.models import CalendarSetting
from shared.schemas.schemas import CalendarBulkItem, CalendarSettingUpdate

logger = logging.getLogger(__name__)

WEEKEND = {5, 6}  # date.weekday(): Saturday, Sunday
MAX_RANGE_DAYS = 366

# Dialect-specific INSERT constructs that support ON CONFLICT DO UPDATE
UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class CalendarResolution:
    day: date
    is_available: bool
    reason: Optional[str]
    hour_ranges: tuple = field(default_factory=tuple)
    max_appointments: int = 8
    has_override: bool = False

    def to_dict(self) -> dict:
        return {
            "date": self.day,
            "is_available": self.is_available,
            "reason": self.reason,
            "hour_ranges": [dict(r) for r in self.hour_ranges],
            "max_appointments": self.max_appointments,
            "has_override": self.has_override,
        }


# ── Pure helpers ──────────────────────────────────────────────

def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def is_slot_within_hours(time: str, hour_ranges: Iterable[dict]) -> bool:
    """
    A time is valid when no custom hours are defined, or when it falls in
    [start, end) of at least one range.
    """
    ranges = list(hour_ranges or ())
    if not ranges:
        return True
    minute = to_minutes(time)
    return any(to_minutes(r["start"]) <= minute < to_minutes(r["end"]) for r in ranges)


def default_resolution(day: date) -> CalendarResolution:
    weekend = day.weekday() in WEEKEND
    return CalendarResolution(
        day=day,
        is_available=not weekend,
        reason="Weekend" if weekend else "Default weekday",
        hour_ranges=(),
        max_appointments=settings.DEFAULT_MAX_APPOINTMENTS,
        has_override=False,
    )


def resolution_from_setting(setting: CalendarSetting) -> CalendarResolution:
    return CalendarResolution(
        day=setting.day,
        is_available=setting.is_available,
        reason=setting.reason,
        hour_ranges=tuple(dict(r) for r in (setting.custom_hours or [])),
        max_appointments=setting.max_appointments,
        has_override=True,
    )


# ── Policy ────────────────────────────────────────────────────

class CalendarPolicy:
    """Resolves and maintains per-date calendar settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_setting(self, day: date) -> Optional[CalendarSetting]:
        result = await self.db.execute(select(CalendarSetting).where(CalendarSetting.day == day))
        return result.scalar_one_or_none()

    async def resolve(self, day: date) -> CalendarResolution:
        setting = await self.get_setting(day)
        if setting:
            return resolution_from_setting(setting)
        return default_resolution(day)

    async def resolve_range(self, start: date, end: date) -> list[CalendarResolution]:
        if start > end:
            raise ValidationError(
                "start date must not be after end date",
                field="start",
                start=start.isoformat(),
                end=end.isoformat(),
            )
        span = (end - start).days + 1
        if span > MAX_RANGE_DAYS:
            raise ValidationError(
                f"Date range may not exceed {MAX_RANGE_DAYS} days", field="end", days=span
            )

        result = await self.db.execute(
            select(CalendarSetting).where(
                CalendarSetting.day >= start,
                CalendarSetting.day <= end,
            )
        )
        overrides = {s.day: s for s in result.scalars().all()}

        days = []
        for offset in range(span):
            day = start + timedelta(days=offset)
            setting = overrides.get(day)
            days.append(resolution_from_setting(setting) if setting else default_resolution(day))
        return days

    # ── Admin writes ──────────────────────────────────────────

    async def upsert(self, day: date, data: CalendarSettingUpdate) -> CalendarSetting:
        """
        Create or replace the override for `day`. One record per date.

        Written as one INSERT ... ON CONFLICT statement so concurrent writers
        for the same new date all succeed; the last one wins.
        """
        values = {
            "is_available": data.is_available,
            "reason": data.reason,
            "custom_hours": [r.model_dump() for r in data.custom_hours],
            "max_appointments": data.max_appointments,
        }
        insert = UPSERT_INSERTS[self.db.get_bind().dialect.name]
        stmt = (
            insert(CalendarSetting)
            .values({CalendarSetting.day: day, **{getattr(CalendarSetting, k): v for k, v in values.items()}})
            .on_conflict_do_update(
                index_elements=["date"],
                set_={**values, "updated_at": datetime.now(timezone.utc)},
            )
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(CalendarSetting)
            .where(CalendarSetting.day == day)
            .execution_options(populate_existing=True)
        )
        logger.info(f"Calendar override saved for {day.isoformat()} (available={data.is_available})")
        return result.scalar_one()

    async def bulk_upsert(self, items: list[dict[str, Any]]) -> dict:
        """
        Apply many overrides. Invalid items are reported and skipped;
        valid ones are still saved.
        """
        updated: list[CalendarSetting] = []
        errors: list[dict] = []
        seen: set[date] = set()

        for raw in items:
            try:
                item = CalendarBulkItem.model_validate(raw)
            except PydanticValidationError as e:
                first = e.errors()[0]
                location = ".".join(str(p) for p in first.get("loc", ()))
                errors.append({
                    "date": str(raw["date"]) if isinstance(raw, dict) and raw.get("date") else None,
                    "error": f"{location}: {first.get('msg')}" if location else first.get("msg"),
                })
                continue

            if item.date in seen:
                errors.append({"date": item.date.isoformat(), "error": "Duplicate date in request"})
                continue
            seen.add(item.date)

            update = CalendarSettingUpdate.model_validate(item.model_dump(exclude={"date"}))
            updated.append(await self.upsert(item.date, update))

        return {"updated": updated, "errors": errors, "total_updated": len(updated)}

    async def list_settings(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[CalendarSetting], int]:
        query = select(CalendarSetting)
        if start:
            query = query.where(CalendarSetting.day >= start)
        if end:
            query = query.where(CalendarSetting.day <= end)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(CalendarSetting.day.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0
