"""
services/appointment/availability.py
Slot availability for a calendar day: which default slots are open,
which are booked, and whether a specific (date, time) may be booked.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.catalog import DEFAULT_TIME_SLOTS
from services.calendar.policy import CalendarPolicy, CalendarResolution, is_slot_within_hours
from shared.exceptions import (
    BookingPolicyError,
    CapacityExceeded,
    SlotOutsideHours,
    SlotTaken,
    SlotUnavailable,
)
from shared.models.models import Appointment, AppointmentStatus


@dataclass(frozen=True)
class Bookability:
    ok: bool
    reason: Optional[str] = None
    error: Optional[type[BookingPolicyError]] = None

    def raise_for_error(self, day: date, time: str) -> None:
        if not self.ok and self.error:
            raise self.error(self.reason, date=day.isoformat(), time=time)


def _active(existing: Iterable[Appointment]) -> list[Appointment]:
    return [a for a in existing if a.status != AppointmentStatus.CANCELLED]


def candidate_slots(resolution: CalendarResolution) -> list[str]:
    """Default slots, narrowed to the override's custom hours when it defines any."""
    if not resolution.is_available:
        return []
    return [s for s in DEFAULT_TIME_SLOTS if is_slot_within_hours(s, resolution.hour_ranges)]


def compute_available_slots(
    resolution: CalendarResolution, existing: Iterable[Appointment]
) -> list[str]:
    booked = {a.appointment_time for a in _active(existing)}
    return [s for s in candidate_slots(resolution) if s not in booked]


def evaluate_bookable(
    resolution: CalendarResolution, time: str, existing: Iterable[Appointment]
) -> Bookability:
    if not resolution.is_available:
        reason = resolution.reason or "Not available"
        return Bookability(False, f"Date is not available for booking: {reason}", SlotUnavailable)

    if not is_slot_within_hours(time, resolution.hour_ranges):
        return Bookability(False, "Outside custom working hours", SlotOutsideHours)

    active = _active(existing)
    if any(a.appointment_time == time for a in active):
        return Bookability(False, f"The {time} slot is already booked", SlotTaken)

    if len(active) >= resolution.max_appointments:
        return Bookability(
            False,
            f"Maximum of {resolution.max_appointments} appointments reached for this date",
            CapacityExceeded,
        )

    return Bookability(True)


class SlotAvailability:
    """Database-backed slot queries for a single calendar day."""

    def __init__(self, db: AsyncSession, policy: Optional[CalendarPolicy] = None):
        self.db = db
        self.policy = policy or CalendarPolicy(db)

    async def appointments_on(self, day: date) -> list[Appointment]:
        result = await self.db.execute(
            select(Appointment).where(
                Appointment.appointment_date == day,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
        )
        return list(result.scalars().all())

    async def available_slots(self, day: date) -> list[str]:
        resolution = await self.policy.resolve(day)
        return compute_available_slots(resolution, await self.appointments_on(day))

    async def is_bookable(self, day: date, time: str) -> Bookability:
        resolution = await self.policy.resolve(day)
        return evaluate_bookable(resolution, time, await self.appointments_on(day))

    async def check_bookable(self, day: date, time: str) -> None:
        """Raise the matching booking-policy error if (day, time) cannot be booked."""
        verdict = await self.is_bookable(day, time)
        verdict.raise_for_error(day, time)

    async def check(self, day: date, time: str) -> dict:
        resolution = await self.policy.resolve(day)
        verdict = evaluate_bookable(resolution, time, await self.appointments_on(day))
        reason = verdict.reason
        if verdict.ok:
            reason = None
        elif not resolution.has_override and not resolution.is_available:
            reason = "Weekend (no custom settings)"
        return {
            "date": day,
            "time": time,
            "is_available": verdict.ok,
            "reason": reason,
            "has_custom_settings": resolution.has_override,
        }

    async def date_availability(self, day: date) -> dict:
        resolution = await self.policy.resolve(day)
        existing = await self.appointments_on(day)
        booked = sorted(
            {a.appointment_time for a in existing},
            key=lambda s: DEFAULT_TIME_SLOTS.index(s) if s in DEFAULT_TIME_SLOTS else len(DEFAULT_TIME_SLOTS),
        )
        return {
            "date": day,
            "is_available": resolution.is_available,
            "reason": resolution.reason,
            "available_slots": compute_available_slots(resolution, existing),
            "booked_slots": booked,
            "max_appointments": resolution.max_appointments,
            "has_custom_settings": resolution.has_override,
        }
