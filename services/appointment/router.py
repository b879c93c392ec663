"""
services/appointment/router.py
Appointment endpoints: public booking and slot lookup, admin management.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.appointment.availability import SlotAvailability
from services.appointment.lifecycle import AppointmentLifecycle
from services.notification.notifier import Notifier, get_notifier
from shared.middleware.auth import TokenData, require_admin
from shared.schemas.schemas import (
    AppointmentCreateRequest,
    AppointmentResponse,
    AppointmentUpdateRequest,
    DateAvailabilityResponse,
    ErrorResponse,
    MessageResponse,
    PaginatedResponse,
    SlotCheckResponse,
)
from shared.utils.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

STATUS_FILTER = r"^(all|pending|confirmed|cancelled|completed)$"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ── Public ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_appointment(
    data: AppointmentCreateRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Book a slot. Fails with 409 when the date is closed, the time is outside
    custom hours, the slot is taken, or the day is full.
    """
    appointment = await AppointmentLifecycle(db, notifier).create(data)
    return AppointmentResponse.model_validate(appointment)


@router.get("/available-slots", response_model=DateAvailabilityResponse)
async def available_slots(
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
):
    return DateAvailabilityResponse(**await SlotAvailability(db).date_availability(day))


@router.get("/check", response_model=SlotCheckResponse)
async def check_slot(
    day: date = Query(..., alias="date"),
    time: str = Query(..., pattern=TIME_PATTERN),
    db: AsyncSession = Depends(get_db),
):
    return SlotCheckResponse(**await SlotAvailability(db).check(day, time))


# ── Admin ─────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_appointments(
    status_filter: Optional[str] = Query(None, alias="status", pattern=STATUS_FILTER),
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    items, total = await AppointmentLifecycle(db, notifier).list(status_filter, start, end, page, page_size)
    return PaginatedResponse.build(
        [AppointmentResponse.model_validate(a) for a in items], total, page, page_size
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: UUID,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return AppointmentResponse.model_validate(await AppointmentLifecycle(db, notifier).get(appointment_id))


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdateRequest,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    lifecycle = AppointmentLifecycle(db, notifier)
    appointment = await lifecycle.update(await lifecycle.get(appointment_id), data)
    return AppointmentResponse.model_validate(appointment)


@router.delete("/{appointment_id}", response_model=MessageResponse)
async def delete_appointment(
    appointment_id: UUID,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    store: ObjectStore = Depends(get_object_store),
):
    lifecycle = AppointmentLifecycle(db, notifier)
    handle = await lifecycle.delete(await lifecycle.get(appointment_id))
    if handle:
        try:
            await store.delete(handle)
        except Exception:
            logger.exception(f"Could not delete receipt {handle} for appointment {appointment_id}")
    return MessageResponse(message="Appointment deleted")
