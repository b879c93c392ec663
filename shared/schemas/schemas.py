"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the clinic API.
"""

import datetime as dt
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from config.catalog import DEFAULT_TIME_SLOTS
from shared.models.models import (
    AppointmentPaymentStatus,
    AppointmentStatus,
    Currency,
    PaymentMethod,
    ServiceType,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
PHONE_PATTERN = r"^\+?[0-9][0-9\- ]{6,19}$"


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int

    @classmethod
    def build(cls, items: List[Any], total: int, page: int, page_size: int) -> "PaginatedResponse":
        return cls(items=items, total=total, page=page, page_size=page_size, pages=-(-total // page_size))


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None


# ── Auth ──────────────────────────────────────────────────────

class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class TokenVerifyResponse(BaseSchema):
    valid: bool = True
    email: str
    role: str
    expires_at: datetime


# ── Calendar ──────────────────────────────────────────────────

class HourRange(BaseSchema):
    start: str = Field(..., pattern=HHMM_PATTERN)
    end: str = Field(..., pattern=HHMM_PATTERN)

    @model_validator(mode="after")
    def validate_order(self) -> "HourRange":
        if self.start >= self.end:
            raise ValueError("start must be earlier than end")
        return self


class CalendarSettingUpdate(BaseSchema):
    is_available: bool = True
    reason: Optional[str] = Field(None, max_length=200)
    custom_hours: List[HourRange] = Field(default_factory=list)
    max_appointments: int = Field(8, ge=1)


class CalendarBulkItem(CalendarSettingUpdate):
    date: date


class CalendarBulkRequest(BaseSchema):
    # Items are validated one by one so a bad entry does not reject the batch
    items: List[Dict[str, Any]] = Field(..., min_length=1, max_length=366)


class CalendarSettingResponse(BaseSchema):
    id: uuid.UUID
    date: dt.date = Field(validation_alias="day")
    is_available: bool
    reason: Optional[str]
    custom_hours: List[HourRange]
    max_appointments: int
    created_at: datetime
    updated_at: datetime


class CalendarBulkError(BaseSchema):
    date: Optional[str] = None
    error: str


class CalendarBulkResponse(BaseSchema):
    updated: List[CalendarSettingResponse]
    errors: List[CalendarBulkError]
    total_updated: int


class CalendarResolutionResponse(BaseSchema):
    date: date
    is_available: bool
    reason: Optional[str]
    hour_ranges: List[HourRange]
    max_appointments: int
    has_override: bool


class AvailabilityRangeResponse(BaseSchema):
    start: date
    end: date
    default_hours: List[str]
    days: List[CalendarResolutionResponse]


# ── Availability ──────────────────────────────────────────────

class DateAvailabilityResponse(BaseSchema):
    date: date
    is_available: bool
    reason: Optional[str]
    available_slots: List[str]
    booked_slots: List[str]
    max_appointments: int
    has_custom_settings: bool


class SlotCheckResponse(BaseSchema):
    date: date
    time: str
    is_available: bool
    reason: Optional[str]
    has_custom_settings: bool


# ── Appointment ───────────────────────────────────────────────

class AppointmentCreateRequest(BaseSchema):
    client_name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    appointment_date: date
    appointment_time: str
    service_type: ServiceType
    message: Optional[str] = Field(None, max_length=500)

    @field_validator("appointment_time")
    @classmethod
    def validate_time_slot(cls, v: str) -> str:
        if v not in DEFAULT_TIME_SLOTS:
            raise ValueError(f"appointment_time must be one of {', '.join(DEFAULT_TIME_SLOTS)}")
        return v


class AppointmentUpdateRequest(BaseSchema):
    status: Optional[AppointmentStatus] = None
    payment_status: Optional[AppointmentPaymentStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=1000)
    amount: Optional[Decimal] = Field(None, gt=0)
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None

    @field_validator("appointment_time")
    @classmethod
    def validate_time_slot(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in DEFAULT_TIME_SLOTS:
            raise ValueError(f"appointment_time must be one of {', '.join(DEFAULT_TIME_SLOTS)}")
        return v


class AppointmentResponse(BaseSchema):
    id: uuid.UUID
    client_name: str
    email: str
    phone: str
    appointment_date: date
    appointment_time: str
    service_type: str
    message: Optional[str]
    status: str
    payment_status: str
    payment_id: Optional[uuid.UUID]
    amount: float
    admin_notes: Optional[str]
    created_at: datetime


# ── Payment ───────────────────────────────────────────────────

class PaymentVerifyRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=500)


class PaymentRejectRequest(BaseSchema):
    reason: str = Field(..., max_length=500)


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    appointment_id: uuid.UUID
    client_name: str
    client_email: str
    client_phone: str
    amount: float
    currency: Currency
    payment_method: PaymentMethod
    transaction_id: str
    transaction_date: date
    receipt_url: str
    status: str
    verified_by: Optional[str]
    verified_at: Optional[datetime]
    verification_notes: Optional[str]
    rejected_reason: Optional[str]
    created_at: datetime


class PaymentDetailResponse(PaymentResponse):
    appointment: Optional[AppointmentResponse] = None


class PaymentSubmitResponse(BaseSchema):
    message: str
    payment: PaymentResponse
    appointment: AppointmentResponse


class PaymentActionResponse(BaseSchema):
    message: str
    payment: PaymentResponse
    appointment: AppointmentResponse


# ── Contact ───────────────────────────────────────────────────

class ContactCreateRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    subject: str = Field(..., min_length=2, max_length=200)
    message: str = Field(..., min_length=5, max_length=2000)


class ContactResponse(BaseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str]
    subject: str
    message: str
    is_read: bool
    replied: bool
    replied_at: Optional[datetime]
    created_at: datetime


# ── Notification audit ────────────────────────────────────────

class NotificationLogResponse(BaseSchema):
    id: uuid.UUID
    recipient: str
    kind: str
    subject: Optional[str]
    status: str
    error: Optional[str]
    context: Optional[Dict[str, Any]]
    created_at: datetime
