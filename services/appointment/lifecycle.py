"""
services/appointment/lifecycle.py
Appointment state machine.

    status:          pending → confirmed | cancelled   (completed via admin update)
    payment_status:  pending → paid → verified | failed

Slot uniqueness among non-cancelled appointments is enforced by the
uq_appointment_active_slot index; a violation surfaces as SlotConflict.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.appointment.availability import SlotAvailability
from services.notification.notifier import ADMIN_RECIPIENT, NotificationKind, Notifier
from shared.exceptions import (
    AlreadyVerified,
    AppointmentNotFound,
    DuplicatePayment,
    SlotConflict,
    ValidationError,
)
from shared.models.models import (
    Appointment,
    AppointmentPaymentStatus,
    AppointmentStatus,
    Payment,
    PaymentStatus,
)
from shared.schemas.schemas import AppointmentCreateRequest, AppointmentUpdateRequest

logger = logging.getLogger(__name__)

MIN_REJECT_REASON_LENGTH = 5


def appointment_context(appointment: Appointment) -> dict:
    """Template variables describing an appointment."""
    return {
        "appointment_id": str(appointment.id),
        "client_name": appointment.client_name,
        "email": appointment.email,
        "phone": appointment.phone,
        "appointment_date": appointment.appointment_date.isoformat(),
        "appointment_time": appointment.appointment_time,
        "service_type": appointment.service_type,
        "amount": appointment.amount,
        "message": appointment.message or "",
    }


class AppointmentLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier,
        availability: Optional[SlotAvailability] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.availability = availability or SlotAvailability(db)

    # ── Reads ─────────────────────────────────────────────────

    async def get(self, appointment_id: UUID) -> Appointment:
        appointment = await self.db.get(Appointment, appointment_id)
        if not appointment:
            raise AppointmentNotFound(appointment_id=str(appointment_id))
        return appointment

    async def list(
        self,
        status: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Appointment], int]:
        query = select(Appointment)
        if status and status != "all":
            query = query.where(Appointment.status == AppointmentStatus(status))
        if start:
            query = query.where(Appointment.appointment_date >= start)
        if end:
            query = query.where(Appointment.appointment_date <= end)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    # ── Create ────────────────────────────────────────────────

    async def create(self, data: AppointmentCreateRequest) -> Appointment:
        day, time = data.appointment_date, data.appointment_time
        await self.availability.check_bookable(day, time)

        appointment = Appointment(
            client_name=data.client_name.strip(),
            email=str(data.email).lower(),
            phone=data.phone.strip(),
            appointment_date=day,
            appointment_time=time,
            service_type=data.service_type,
            message=data.message,
            status=AppointmentStatus.PENDING,
            payment_status=AppointmentPaymentStatus.PENDING,
            amount=settings.DEFAULT_APPOINTMENT_AMOUNT,
        )
        self.db.add(appointment)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(f"Slot race lost for {day.isoformat()} {time}")
            raise SlotConflict(date=day.isoformat(), time=time) from e

        await self.db.commit()
        logger.info(f"Appointment {appointment.id} created for {day.isoformat()} {time}")

        context = appointment_context(appointment)
        await self.notifier.notify(appointment.email, NotificationKind.APPOINTMENT_CREATED_CLIENT, context)
        await self.notifier.notify(ADMIN_RECIPIENT, NotificationKind.APPOINTMENT_CREATED_ADMIN, context)
        return appointment

    # ── Payment transitions ───────────────────────────────────
    # These do not commit; the caller owns the transaction.

    async def attach_payment(self, appointment: Appointment, payment: Payment) -> None:
        result = await self.db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.payment_status == AppointmentPaymentStatus.PENDING,
                Appointment.payment_id.is_(None),
            )
            .values(payment_status=AppointmentPaymentStatus.PAID, payment_id=payment.id)
        )
        if result.rowcount == 0:
            raise DuplicatePayment(appointment_id=str(appointment.id))
        await self.db.refresh(appointment)

    async def verify_payment(
        self,
        appointment: Appointment,
        payment: Payment,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> None:
        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status != PaymentStatus.VERIFIED)
            .values(
                status=PaymentStatus.VERIFIED,
                verified_by=actor,
                verified_at=datetime.now(timezone.utc),
                verification_notes=notes,
            )
        )
        if result.rowcount == 0:
            raise AlreadyVerified(payment_id=str(payment.id))

        day, time = appointment.appointment_date, appointment.appointment_time
        appointment.payment_status = AppointmentPaymentStatus.VERIFIED
        appointment.status = AppointmentStatus.CONFIRMED
        try:
            await self.db.flush()
        except IntegrityError as e:
            # A rejected payment re-verified after its slot was rebooked
            await self.db.rollback()
            raise SlotConflict(date=day.isoformat(), time=time) from e
        await self.db.refresh(payment)

    async def reject_payment(
        self,
        appointment: Appointment,
        payment: Payment,
        reason: str,
        actor: Optional[str] = None,
    ) -> None:
        reason = (reason or "").strip()
        if len(reason) < MIN_REJECT_REASON_LENGTH:
            raise ValidationError(
                f"Rejection reason must be at least {MIN_REJECT_REASON_LENGTH} characters",
                field="reason",
            )

        payment.status = PaymentStatus.REJECTED
        payment.rejected_reason = reason
        payment.verified_by = actor
        payment.verified_at = datetime.now(timezone.utc)
        appointment.payment_status = AppointmentPaymentStatus.FAILED
        appointment.status = AppointmentStatus.CANCELLED
        await self.db.flush()

    # ── Admin edits ───────────────────────────────────────────

    async def update(self, appointment: Appointment, data: AppointmentUpdateRequest) -> Appointment:
        changes = data.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if value is None and key not in ("admin_notes",):
                continue
            setattr(appointment, key, value)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise SlotConflict(
                "Another active appointment already holds this slot",
                date=str(changes.get("appointment_date") or ""),
                time=changes.get("appointment_time") or "",
            ) from e
        await self.db.commit()
        logger.info(f"Appointment {appointment.id} updated: {sorted(changes)}")
        return appointment

    async def delete(self, appointment: Appointment) -> Optional[str]:
        """Delete an appointment and its payment. Returns the receipt handle, if any."""
        result = await self.db.execute(
            select(Payment.receipt_handle).where(Payment.appointment_id == appointment.id)
        )
        handle = result.scalar_one_or_none()
        await self.db.execute(delete(Payment).where(Payment.appointment_id == appointment.id))
        await self.db.delete(appointment)
        await self.db.commit()
        logger.info(f"Appointment {appointment.id} deleted")
        return handle
