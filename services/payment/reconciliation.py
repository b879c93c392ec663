"""
services/payment/reconciliation.py
Receipt-backed payments and their effect on the owning appointment.

One payment per appointment: checked up front for a clean error, and
guaranteed by the unique payments.appointment_id constraint plus the
conditional update in AppointmentLifecycle.attach_payment.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.catalog import RECEIPT_CONTENT_TYPES
from config.settings import settings
from services.appointment.lifecycle import AppointmentLifecycle, appointment_context
from services.notification.notifier import ADMIN_RECIPIENT, NotificationKind, Notifier
from shared.exceptions import (
    DuplicatePayment,
    InvalidReceipt,
    PaymentNotFound,
    ReceiptStoreFailure,
    ReceiptTooLarge,
)
from shared.models.models import (
    Appointment,
    AppointmentPaymentStatus,
    Currency,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from shared.utils.storage import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

# Strong references to in-flight deletions of late-arriving receipts
_late_cleanups: set[asyncio.Task] = set()


@dataclass
class Receipt:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_receipt(receipt: Receipt) -> None:
    content_type = (receipt.content_type or "").split(";")[0].strip().lower()
    if content_type not in RECEIPT_CONTENT_TYPES:
        raise InvalidReceipt(field="receipt", content_type=content_type or None)
    if receipt.size == 0:
        raise InvalidReceipt("Receipt file is empty", field="receipt")
    if receipt.size > settings.RECEIPT_MAX_BYTES:
        raise ReceiptTooLarge(
            f"Receipt exceeds {settings.RECEIPT_MAX_BYTES // (1024 * 1024)} MB",
            field="receipt",
            size=receipt.size,
            max_size=settings.RECEIPT_MAX_BYTES,
        )


def payment_context(payment: Payment, appointment: Appointment) -> dict:
    return {
        **appointment_context(appointment),
        "payment_id": str(payment.id),
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "transaction_id": payment.transaction_id,
        "receipt_url": payment.receipt_url,
    }


class PaymentReconciliation:
    def __init__(
        self,
        db: AsyncSession,
        store: ObjectStore,
        notifier: Notifier,
        lifecycle: Optional[AppointmentLifecycle] = None,
    ):
        self.db = db
        self.store = store
        self.notifier = notifier
        self.lifecycle = lifecycle or AppointmentLifecycle(db, notifier)

    # ── Reads ─────────────────────────────────────────────────

    async def get(self, payment_id: UUID) -> Payment:
        payment = await self.db.get(Payment, payment_id)
        if not payment:
            raise PaymentNotFound(payment_id=str(payment_id))
        return payment

    async def list(
        self,
        status: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Payment], int]:
        query = select(Payment)
        if status and status != "all":
            query = query.where(Payment.status == PaymentStatus(status))
        if start:
            query = query.where(Payment.created_at >= datetime.combine(start, time.min, tzinfo=timezone.utc))
        if end:
            query = query.where(Payment.created_at <= datetime.combine(end, time.max, tzinfo=timezone.utc))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Payment.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    # ── Submit ────────────────────────────────────────────────

    async def submit(
        self,
        appointment_id: UUID,
        method: PaymentMethod,
        transaction_id: str,
        transaction_date: date,
        amount: Optional[Decimal],
        receipt: Receipt,
        currency: Currency = Currency.PKR,
    ) -> tuple[Payment, Appointment]:
        appointment = await self.lifecycle.get(appointment_id)

        existing = await self.db.scalar(select(Payment.id).where(Payment.appointment_id == appointment.id))
        if (
            existing
            or appointment.payment_id is not None
            or appointment.payment_status != AppointmentPaymentStatus.PENDING
        ):
            raise DuplicatePayment(appointment_id=str(appointment.id))

        validate_receipt(receipt)
        stored = await self._store_receipt(receipt)

        payment = Payment(
            appointment_id=appointment.id,
            client_name=appointment.client_name,
            client_email=appointment.email,
            client_phone=appointment.phone,
            amount=amount or appointment.amount or settings.DEFAULT_APPOINTMENT_AMOUNT,
            currency=currency,
            payment_method=method,
            transaction_id=transaction_id.strip(),
            transaction_date=transaction_date,
            receipt_url=stored.url,
            receipt_handle=stored.handle,
            status=PaymentStatus.PENDING,
        )
        self.db.add(payment)
        try:
            await self.db.flush()
            await self.lifecycle.attach_payment(appointment, payment)
        except (IntegrityError, DuplicatePayment) as e:
            await self.db.rollback()
            await self._discard_receipt(stored)
            logger.info(f"Duplicate payment submission for appointment {appointment_id}")
            raise DuplicatePayment(appointment_id=str(appointment_id)) from e

        await self.db.commit()
        logger.info(f"Payment {payment.id} submitted for appointment {appointment.id}")

        context = payment_context(payment, appointment)
        await self.notifier.notify(appointment.email, NotificationKind.PAYMENT_SUBMITTED_CLIENT, context)
        await self.notifier.notify(ADMIN_RECIPIENT, NotificationKind.PAYMENT_SUBMITTED_ADMIN, context)
        return payment, appointment

    async def _store_receipt(self, receipt: Receipt) -> StoredObject:
        # Shielded so a timed-out upload keeps running and can be cleaned up
        upload = asyncio.ensure_future(
            self.store.upload(receipt.data, receipt.content_type, settings.RECEIPT_FOLDER)
        )
        try:
            return await asyncio.wait_for(asyncio.shield(upload), timeout=settings.RECEIPT_UPLOAD_TIMEOUT_SECONDS)
        except ReceiptStoreFailure:
            raise
        except asyncio.TimeoutError as e:
            upload.add_done_callback(self._discard_late_receipt)
            logger.error(f"Receipt upload timed out after {settings.RECEIPT_UPLOAD_TIMEOUT_SECONDS}s")
            raise ReceiptStoreFailure("Receipt upload timed out, please try again") from e
        except Exception as e:
            logger.error(f"Receipt upload failed: {e}")
            raise ReceiptStoreFailure() from e

    def _discard_late_receipt(self, upload: asyncio.Future) -> None:
        """Delete an object whose upload finished after the request gave up on it."""
        if upload.cancelled() or upload.exception() is not None:
            return
        stored = upload.result()
        logger.warning(f"Receipt {stored.handle} landed after the upload deadline, deleting it")
        cleanup = asyncio.ensure_future(self._discard_receipt(stored))
        _late_cleanups.add(cleanup)
        cleanup.add_done_callback(_late_cleanups.discard)

    async def _discard_receipt(self, stored: StoredObject) -> None:
        try:
            await self.store.delete(stored.handle)
        except Exception:
            logger.exception(f"Could not delete orphaned receipt {stored.handle}")

    # ── Admin decisions ───────────────────────────────────────

    async def verify(self, payment_id: UUID, notes: Optional[str], actor: str) -> tuple[Payment, Appointment]:
        payment = await self.get(payment_id)
        appointment = await self.lifecycle.get(payment.appointment_id)

        await self.lifecycle.verify_payment(appointment, payment, notes=notes, actor=actor)
        await self.db.commit()
        logger.info(f"Payment {payment.id} verified by {actor}")

        context = {**payment_context(payment, appointment), "actor": actor, "notes": notes or ""}
        await self.notifier.notify(appointment.email, NotificationKind.PAYMENT_VERIFIED_CLIENT, context)
        await self.notifier.notify(ADMIN_RECIPIENT, NotificationKind.PAYMENT_VERIFIED_ADMIN, context)
        return payment, appointment

    async def reject(self, payment_id: UUID, reason: str, actor: str) -> tuple[Payment, Appointment]:
        payment = await self.get(payment_id)
        appointment = await self.lifecycle.get(payment.appointment_id)

        await self.lifecycle.reject_payment(appointment, payment, reason, actor=actor)
        await self.db.commit()
        logger.info(f"Payment {payment.id} rejected by {actor}")

        context = {**payment_context(payment, appointment), "actor": actor, "reason": payment.rejected_reason}
        await self.notifier.notify(appointment.email, NotificationKind.PAYMENT_REJECTED_CLIENT, context)
        await self.notifier.notify(ADMIN_RECIPIENT, NotificationKind.PAYMENT_REJECTED_ADMIN, context)
        return payment, appointment
