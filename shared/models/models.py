"""
shared/models/models.py
All SQLAlchemy ORM models for the clinic booking service.
UUID primary keys throughout; calendar days are stored as DATE keys.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Enumerations ──────────────────────────────────────────────

class AppointmentStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AppointmentPaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    VERIFIED = "verified"
    FAILED = "failed"


class ServiceType(str, PyEnum):
    INDIVIDUAL = "individual"
    COUPLE = "couple"
    FAMILY = "family"
    ADOLESCENT = "adolescent"
    ASSESSMENT = "assessment"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, PyEnum):
    EASYPAISA = "easypaisa"
    JAZZCASH = "jazzcash"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class Currency(str, PyEnum):
    PKR = "PKR"
    USD = "USD"


class NotificationStatus(str, PyEnum):
    QUEUED = "queued"
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"
    DISPATCH_FAILED = "dispatch_failed"


def _enum(enum_cls: type[PyEnum]) -> Enum:
    """Store enum values (not member names) as plain strings."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=20,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class Appointment(TimestampMixin, Base):
    """
    A client's booking request for one (date, time) slot.
    At most one non-cancelled appointment may hold a slot; the partial
    unique index below enforces this in the database.
    """
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(5), nullable=False)
    service_type: Mapped[ServiceType] = mapped_column(_enum(ServiceType), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        _enum(AppointmentStatus), default=AppointmentStatus.PENDING, nullable=False
    )
    payment_status: Mapped[AppointmentPaymentStatus] = mapped_column(
        _enum(AppointmentPaymentStatus), default=AppointmentPaymentStatus.PENDING, nullable=False
    )
    # Forward reference only; the owning side of the 1:1 is payments.appointment_id
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("3000"), nullable=False)
    admin_notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    __table_args__ = (
        Index(
            "uq_appointment_active_slot",
            "appointment_date",
            "appointment_time",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
        Index("ix_appointments_status", "status"),
        Index("ix_appointments_date", "appointment_date"),
    )


class CalendarSetting(TimestampMixin, Base):
    """Admin override for a single calendar day. Absence means default policy."""
    __tablename__ = "calendar_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    day: Mapped[date] = mapped_column("date", Date, unique=True, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # Ordered list of {"start": "HH:MM", "end": "HH:MM"}, end exclusive
    custom_hours: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    max_appointments: Mapped[int] = mapped_column(Integer, default=8, nullable=False)

    __table_args__ = (
        CheckConstraint("max_appointments >= 1", name="ck_calendar_max_appointments"),
    )


class Payment(TimestampMixin, Base):
    """Receipt-backed payment. Linked 1-to-1 with an appointment."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    # Client snapshot at submission time
    client_name: Mapped[str] = mapped_column(String(120), nullable=False)
    client_email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_phone: Mapped[str] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[Currency] = mapped_column(_enum(Currency), default=Currency.PKR, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    receipt_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    receipt_handle: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    verified_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    rejected_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    appointment: Mapped["Appointment"] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_created_at", "created_at"),
    )


class ContactMessage(Base):
    """Inbound message from the public contact form."""
    __tablename__ = "contact_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(2000), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    replied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    replied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reply_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_contact_messages_is_read", "is_read"),)


class NotificationLog(Base):
    """Immutable record of every notification attempt and its outcome."""
    __tablename__ = "notification_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[NotificationStatus] = mapped_column(_enum(NotificationStatus), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notification_logs_kind", "kind"),
        Index("ix_notification_logs_created_at", "created_at"),
    )
