"""
tests/test_payments.py
Tests for receipt submission, admin verification/rejection, and the
one-payment-per-appointment guarantee.
"""

import asyncio
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal
from config.settings import settings
from services.appointment.lifecycle import AppointmentLifecycle
from services.payment.reconciliation import PaymentReconciliation, Receipt, validate_receipt
from shared.exceptions import (
    AlreadyVerified,
    InvalidReceipt,
    ReceiptStoreFailure,
    ReceiptTooLarge,
    ValidationError,
)
from shared.models.models import Appointment, Payment, PaymentMethod
from tests.conftest import MONDAY, PNG_BYTES, booking_payload, receipt_form, reload


async def submit_receipt(
    client: AsyncClient,
    appointment_id,
    content: bytes = PNG_BYTES,
    content_type: str = "image/png",
    **form,
):
    data = receipt_form(appointment_id, **form)
    return await client.post(
        "/payments",
        data=data,
        files={"receipt": ("receipt.png", content, content_type)},
    )


async def payment_count(db: AsyncSession) -> int:
    return await db.scalar(select(func.count(Payment.id)))


# ── Receipt validation ─────────────────────────────────────────────────────────

def test_validate_receipt_accepts_supported_types():
    for content_type in ("image/jpeg", "image/jpg", "image/png", "application/pdf"):
        validate_receipt(Receipt("r", content_type, b"data"))


def test_validate_receipt_rejects_other_types():
    with pytest.raises(InvalidReceipt):
        validate_receipt(Receipt("r.gif", "image/gif", b"GIF89a"))


def test_validate_receipt_rejects_empty_file():
    with pytest.raises(InvalidReceipt):
        validate_receipt(Receipt("r.png", "image/png", b""))


def test_validate_receipt_size_limit(monkeypatch):
    monkeypatch.setattr(settings, "RECEIPT_MAX_BYTES", 10)
    validate_receipt(Receipt("r.png", "image/png", b"x" * 10))
    with pytest.raises(ReceiptTooLarge):
        validate_receipt(Receipt("r.png", "image/png", b"x" * 11))


# ── Methods ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_payment_methods_directory(client: AsyncClient):
    response = await client.get("/payments/methods")
    assert response.status_code == 200
    methods = response.json()["methods"]
    assert {"easypaisa", "jazzcash", "bank_transfer", "cash"} <= set(methods)


# ── Submission ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_payment_success(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, notifier
):
    response = await submit_receipt(client, appointment.id)
    assert response.status_code == 201
    body = response.json()
    assert body["payment"]["status"] == "pending"
    assert body["payment"]["amount"] == 3000
    assert body["payment"]["currency"] == "PKR"
    assert body["payment"]["client_email"] == appointment.email
    assert body["appointment"]["payment_status"] == "paid"
    assert body["appointment"]["payment_id"] == body["payment"]["id"]

    assert len(store.objects) == 1
    handle = next(iter(store.objects))
    assert handle.startswith(settings.RECEIPT_FOLDER)
    assert body["payment"]["receipt_url"].endswith(handle)

    assert notifier.kinds() == ["payment_submitted_client", "payment_submitted_admin"]
    assert notifier.sent[1][2]["transaction_id"] == "TXN-10001"

    refreshed = await reload(db, Appointment, appointment.id)
    assert str(refreshed.payment_id) == body["payment"]["id"]


@pytest.mark.asyncio
async def test_submit_payment_unknown_appointment(client: AsyncClient, store):
    response = await submit_receipt(client, uuid.uuid4())
    assert response.status_code == 404
    assert response.json()["code"] == "appointment_not_found"
    assert store.objects == {}


@pytest.mark.asyncio
async def test_submit_payment_invalid_file_type(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store
):
    response = await submit_receipt(client, appointment.id, content=b"hello", content_type="text/plain")
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_receipt"
    assert store.objects == {}
    assert await payment_count(db) == 0
    assert (await reload(db, Appointment, appointment.id)).payment_status == "pending"


@pytest.mark.asyncio
async def test_submit_payment_file_too_large(
    client: AsyncClient, appointment: Appointment, store, monkeypatch
):
    monkeypatch.setattr(settings, "RECEIPT_MAX_BYTES", 100)
    response = await submit_receipt(client, appointment.id)
    assert response.status_code == 413
    assert response.json()["code"] == "receipt_too_large"
    assert store.objects == {}


@pytest.mark.asyncio
async def test_submit_payment_store_failure(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, notifier
):
    store.error = RuntimeError("S3 unavailable")
    response = await submit_receipt(client, appointment.id)
    assert response.status_code == 502
    assert response.json()["code"] == "receipt_store_failure"
    assert await payment_count(db) == 0
    assert (await reload(db, Appointment, appointment.id)).payment_status == "pending"
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_submit_payment_store_timeout(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, monkeypatch
):
    monkeypatch.setattr(settings, "RECEIPT_UPLOAD_TIMEOUT_SECONDS", 0.05)
    store.delay = 0.2
    response = await submit_receipt(client, appointment.id)
    assert response.status_code == 502
    assert await payment_count(db) == 0

    # The upload finishes after the deadline; its object must not be left behind
    await asyncio.sleep(0.4)
    assert store.objects == {}
    assert store.deleted == [f"{settings.RECEIPT_FOLDER}/receipt-1"]


@pytest.mark.asyncio
async def test_late_upload_failure_needs_no_cleanup(
    db: AsyncSession, appointment: Appointment, store, notifier, monkeypatch
):
    monkeypatch.setattr(settings, "RECEIPT_UPLOAD_TIMEOUT_SECONDS", 0.05)
    store.delay = 0.2
    store.error = ConnectionError("store unreachable")

    with pytest.raises(ReceiptStoreFailure):
        await PaymentReconciliation(db, store, notifier).submit(
            appointment.id, PaymentMethod.BANK_TRANSFER, "TX-LATE", MONDAY, None,
            Receipt("r.png", "image/png", PNG_BYTES),
        )

    await asyncio.sleep(0.4)
    assert store.deleted == []


@pytest.mark.asyncio
async def test_submit_payment_uses_given_amount(client: AsyncClient, appointment: Appointment):
    response = await submit_receipt(client, appointment.id, method="jazzcash", amount="2500.50")
    assert response.status_code == 201
    assert response.json()["payment"]["amount"] == 2500.5
    assert response.json()["payment"]["payment_method"] == "jazzcash"


@pytest.mark.asyncio
async def test_second_submission_is_duplicate(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store
):
    first = await submit_receipt(client, appointment.id)
    assert first.status_code == 201

    second = await submit_receipt(client, appointment.id)
    assert second.status_code == 409
    assert second.json()["code"] == "duplicate_payment"
    assert len(store.objects) == 1
    assert await payment_count(db) == 1


@pytest.mark.asyncio
async def test_concurrent_submission_loses_and_discards_receipt(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, notifier
):
    """A payment committed while our receipt uploads makes ours a duplicate."""

    async def competing_submission():
        async with AsyncSessionLocal() as other:
            other.add(Payment(
                appointment_id=appointment.id,
                client_name=appointment.client_name,
                client_email=appointment.email,
                client_phone=appointment.phone,
                amount=3000,
                payment_method=PaymentMethod.EASYPAISA,
                transaction_id="EP-WINNER",
                transaction_date=MONDAY,
                receipt_url="https://files.test/winner",
                receipt_handle="winner",
            ))
            await other.commit()

    store.on_upload = competing_submission

    response = await submit_receipt(client, appointment.id)
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_payment"

    assert len(store.deleted) == 1
    assert store.objects == {}
    assert notifier.sent == []

    payments = (await db.execute(select(Payment))).scalars().all()
    assert [p.transaction_id for p in payments] == ["EP-WINNER"]


# ── Verification ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_verify_requires_admin(client: AsyncClient, appointment: Appointment):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    response = await client.post(f"/payments/{payment_id}/verify", json={})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_verify_payment_confirms_appointment(
    client: AsyncClient, appointment: Appointment, admin_headers: dict, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    notifier.sent.clear()

    response = await client.post(
        f"/payments/{payment_id}/verify",
        headers=admin_headers,
        json={"notes": "Matched bank statement"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["payment"]["status"] == "verified"
    assert body["payment"]["verified_by"] == settings.ADMIN_EMAIL
    assert body["payment"]["verified_at"] is not None
    assert body["payment"]["verification_notes"] == "Matched bank statement"
    assert body["appointment"]["status"] == "confirmed"
    assert body["appointment"]["payment_status"] == "verified"

    assert notifier.kinds() == ["payment_verified_client", "payment_verified_admin"]
    assert notifier.sent[0][2]["actor"] == settings.ADMIN_EMAIL


@pytest.mark.asyncio
async def test_verify_twice_is_rejected_without_changes(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, admin_headers: dict, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    first = await client.post(f"/payments/{payment_id}/verify", headers=admin_headers, json={"notes": "ok"})
    verified_at = first.json()["payment"]["verified_at"]
    notifier.sent.clear()

    second = await client.post(f"/payments/{payment_id}/verify", headers=admin_headers, json={"notes": "again"})
    assert second.status_code == 409
    assert second.json()["code"] == "already_verified"
    assert notifier.sent == []

    response = await client.get(f"/payments/{payment_id}", headers=admin_headers)
    assert response.json()["verified_at"] == verified_at
    assert response.json()["verification_notes"] == "ok"


@pytest.mark.asyncio
async def test_verify_unknown_payment(client: AsyncClient, admin_headers: dict):
    response = await client.post(f"/payments/{uuid.uuid4()}/verify", headers=admin_headers, json={})
    assert response.status_code == 404
    assert response.json()["code"] == "payment_not_found"


@pytest.mark.asyncio
async def test_lifecycle_verify_raises_already_verified(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    reconciliation = PaymentReconciliation(db, store, notifier)
    await reconciliation.verify(uuid.UUID(payment_id), None, actor="admin@mindwell.com")

    payment = await reconciliation.get(uuid.UUID(payment_id))
    with pytest.raises(AlreadyVerified):
        await AppointmentLifecycle(db, notifier).verify_payment(payment.appointment, payment)


# ── Rejection ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reject_payment_cancels_appointment_and_frees_slot(
    client: AsyncClient, appointment: Appointment, admin_headers: dict, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    notifier.sent.clear()

    response = await client.post(
        f"/payments/{payment_id}/reject",
        headers=admin_headers,
        json={"reason": "  Transaction not found  "},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["payment"]["status"] == "rejected"
    assert body["payment"]["rejected_reason"] == "Transaction not found"
    assert body["appointment"]["status"] == "cancelled"
    assert body["appointment"]["payment_status"] == "failed"
    assert notifier.kinds() == ["payment_rejected_client", "payment_rejected_admin"]
    assert notifier.sent[0][2]["reason"] == "Transaction not found"

    slots = await client.get("/appointments/available-slots", params={"date": MONDAY.isoformat()})
    assert "10:00" in slots.json()["available_slots"]


@pytest.mark.asyncio
async def test_reject_with_short_reason_changes_nothing(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, admin_headers: dict, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    notifier.sent.clear()

    response = await client.post(f"/payments/{payment_id}/reject", headers=admin_headers, json={"reason": "nope"})
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert notifier.sent == []

    payment = await reload(db, Payment, uuid.UUID(payment_id))
    assert payment.status == "pending"
    assert payment.rejected_reason is None
    refreshed = await reload(db, Appointment, appointment.id)
    assert refreshed.status == "pending"
    assert refreshed.payment_status == "paid"


@pytest.mark.asyncio
async def test_lifecycle_reject_validates_before_mutating(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, store, notifier
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    payment = await PaymentReconciliation(db, store, notifier).get(uuid.UUID(payment_id))

    with pytest.raises(ValidationError):
        await AppointmentLifecycle(db, notifier).reject_payment(payment.appointment, payment, "abcd")
    assert payment.status == "pending"
    assert payment.appointment.status == "pending"


@pytest.mark.asyncio
async def test_reverify_rejected_payment_after_slot_rebooked(
    client: AsyncClient, db: AsyncSession, appointment: Appointment, admin_headers: dict
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    await client.post(f"/payments/{payment_id}/reject", headers=admin_headers, json={"reason": "Blurry receipt"})

    rebooked = await client.post("/appointments", json=booking_payload(time="10:00"))
    assert rebooked.status_code == 201

    response = await client.post(f"/payments/{payment_id}/verify", headers=admin_headers, json={})
    assert response.status_code == 409
    assert response.json()["code"] == "slot_conflict"

    payment = await reload(db, Payment, uuid.UUID(payment_id))
    assert payment.status == "rejected"


@pytest.mark.asyncio
async def test_reverify_rejected_payment_with_free_slot(
    client: AsyncClient, appointment: Appointment, admin_headers: dict
):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]
    await client.post(f"/payments/{payment_id}/reject", headers=admin_headers, json={"reason": "Blurry receipt"})

    response = await client.post(f"/payments/{payment_id}/verify", headers=admin_headers, json={})
    assert response.status_code == 200
    assert response.json()["appointment"]["status"] == "confirmed"


# ── Admin reads ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_and_get_payments(client: AsyncClient, appointment: Appointment, admin_headers: dict):
    payment_id = (await submit_receipt(client, appointment.id)).json()["payment"]["id"]

    response = await client.get("/payments", headers=admin_headers, params={"status": "pending"})
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.get("/payments", headers=admin_headers, params={"status": "verified"})
    assert response.json()["total"] == 0

    response = await client.get(f"/payments/{payment_id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["appointment"]["id"] == str(appointment.id)


@pytest.mark.asyncio
async def test_list_payments_requires_admin(client: AsyncClient):
    response = await client.get("/payments")
    assert response.status_code == 401
