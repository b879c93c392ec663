"""
services/payment/router.py
Receipt-based payment endpoints: submission by clients, verification
and rejection by the admin, and the static payment-method directory.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.catalog import payment_methods_payload
from config.database import get_db
from config.settings import settings
from services.notification.notifier import Notifier, get_notifier
from services.payment.reconciliation import PaymentReconciliation, Receipt
from shared.middleware.auth import TokenData, require_admin
from shared.models.models import Currency, PaymentMethod
from shared.schemas.schemas import (
    AppointmentResponse,
    ErrorResponse,
    PaginatedResponse,
    PaymentActionResponse,
    PaymentDetailResponse,
    PaymentRejectRequest,
    PaymentResponse,
    PaymentSubmitResponse,
    PaymentVerifyRequest,
)
from shared.utils.storage import ObjectStore, get_object_store

router = APIRouter(prefix="/payments", tags=["Payments"])

STATUS_FILTER = r"^(all|pending|verified|rejected|cancelled)$"


def get_reconciliation(
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentReconciliation:
    return PaymentReconciliation(db, store, notifier)


# ── Public ────────────────────────────────────────────────────

@router.get("/methods")
async def payment_methods():
    """Accounts and instructions for each accepted payment method."""
    return payment_methods_payload()


@router.post(
    "",
    response_model=PaymentSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def submit_payment(
    appointment_id: UUID = Form(...),
    payment_method: PaymentMethod = Form(...),
    transaction_id: str = Form(..., min_length=1, max_length=100),
    transaction_date: date = Form(...),
    amount: Optional[Decimal] = Form(None, gt=0),
    currency: Currency = Form(Currency.PKR),
    receipt: UploadFile = File(...),
    reconciliation: PaymentReconciliation = Depends(get_reconciliation),
):
    """
    Upload a payment receipt for an appointment.
    The spooled upload is closed (and its temp file removed) whatever the outcome.
    """
    try:
        # One byte over the limit is enough to reject oversize files
        data = await receipt.read(settings.RECEIPT_MAX_BYTES + 1)
        payment, appointment = await reconciliation.submit(
            appointment_id=appointment_id,
            method=payment_method,
            transaction_id=transaction_id,
            transaction_date=transaction_date,
            amount=amount,
            receipt=Receipt(
                filename=receipt.filename or "receipt",
                content_type=receipt.content_type or "",
                data=data,
            ),
            currency=currency,
        )
    finally:
        await receipt.close()

    return PaymentSubmitResponse(
        message="Payment submitted successfully. It will be verified shortly.",
        payment=PaymentResponse.model_validate(payment),
        appointment=AppointmentResponse.model_validate(appointment),
    )


# ── Admin ─────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_payments(
    status_filter: Optional[str] = Query(None, alias="status", pattern=STATUS_FILTER),
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _: TokenData = Depends(require_admin),
    reconciliation: PaymentReconciliation = Depends(get_reconciliation),
):
    items, total = await reconciliation.list(status_filter, start, end, page, page_size)
    return PaginatedResponse.build(
        [PaymentResponse.model_validate(p) for p in items], total, page, page_size
    )


@router.get("/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_id: UUID,
    _: TokenData = Depends(require_admin),
    reconciliation: PaymentReconciliation = Depends(get_reconciliation),
):
    return PaymentDetailResponse.model_validate(await reconciliation.get(payment_id))


@router.post("/{payment_id}/verify", response_model=PaymentActionResponse, responses={409: {"model": ErrorResponse}})
async def verify_payment(
    payment_id: UUID,
    data: PaymentVerifyRequest,
    admin: TokenData = Depends(require_admin),
    reconciliation: PaymentReconciliation = Depends(get_reconciliation),
):
    """Verify the receipt. Confirms the appointment."""
    payment, appointment = await reconciliation.verify(payment_id, data.notes, actor=admin.email)
    return PaymentActionResponse(
        message="Payment verified and appointment confirmed",
        payment=PaymentResponse.model_validate(payment),
        appointment=AppointmentResponse.model_validate(appointment),
    )


@router.post("/{payment_id}/reject", response_model=PaymentActionResponse)
async def reject_payment(
    payment_id: UUID,
    data: PaymentRejectRequest,
    admin: TokenData = Depends(require_admin),
    reconciliation: PaymentReconciliation = Depends(get_reconciliation),
):
    """Reject the receipt. Cancels the appointment and frees its slot."""
    payment, appointment = await reconciliation.reject(payment_id, data.reason, actor=admin.email)
    return PaymentActionResponse(
        message="Payment rejected and appointment cancelled",
        payment=PaymentResponse.model_validate(payment),
        appointment=AppointmentResponse.model_validate(appointment),
    )
