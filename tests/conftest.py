"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, an HTTP client
bound to the app, and in-memory stand-ins for Redis, receipt storage
and the notifier.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="clinic-tests-")

# Settings are read at import time; configure before importing the app
os.environ.update({
    "APP_ENV": "test",
    "SECRET_KEY": "test-secret-key",
    "JWT_SECRET_KEY": "test-jwt-secret",
    "DATABASE_URL": f"sqlite+aiosqlite:///{_TMP_DIR}/clinic.db",
    "ADMIN_EMAIL": "admin@mindwell.com",
    "ADMIN_NOTIFY_EMAIL": "clinic-admin@mindwell.com",
    "RESEND_API_KEY": "",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
})

from datetime import date  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from config.database import AsyncSessionLocal, Base, engine  # noqa: E402
from config.redis_client import get_redis  # noqa: E402
from config.settings import settings  # noqa: E402
from main import app  # noqa: E402
from services.notification.notifier import Notifier, get_notifier  # noqa: E402
from shared.middleware.auth import ADMIN_ROLE  # noqa: E402
from shared.models.models import (  # noqa: E402
    Appointment,
    AppointmentPaymentStatus,
    AppointmentStatus,
    ServiceType,
)
from shared.utils.security import create_access_token  # noqa: E402
from shared.utils.storage import ObjectStore, StoredObject, get_object_store  # noqa: E402

MONDAY = date(2024, 6, 10)
SATURDAY = date(2024, 6, 15)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256


# ── Test doubles ──────────────────────────────────────────────

class RecordingNotifier(Notifier):
    """Captures notify() calls instead of queueing emails."""

    def __init__(self):
        super().__init__()
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, recipient, kind, context):
        self.sent.append((recipient, getattr(kind, "value", kind), context))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


class FakeObjectStore(ObjectStore):
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.error: Exception | None = None
        self.delay: float = 0
        self.on_upload = None

    async def upload(self, data, content_type, folder):
        if self.on_upload:
            await self.on_upload()
        if self.delay:
            import asyncio
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        handle = f"{folder}/receipt-{len(self.objects) + 1}"
        self.objects[handle] = data
        return StoredObject(url=f"https://files.test/{handle}", handle=handle)

    async def delete(self, handle):
        self.deleted.append(handle)
        self.objects.pop(handle, None)


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(email: str = None, role: str = ADMIN_ROLE) -> dict:
    email = email or settings.ADMIN_EMAIL
    token, _ = create_access_token(subject=email, role=role, email=email)
    return {"Authorization": f"Bearer {token}"}


def booking_payload(day: date = MONDAY, time: str = "10:00", **overrides) -> dict:
    payload = {
        "client_name": "Ayesha Khan",
        "email": "ayesha@example.com",
        "phone": "+923001234567",
        "appointment_date": day.isoformat(),
        "appointment_time": time,
        "service_type": "individual",
        "message": "First session",
    }
    payload.update(overrides)
    return payload


def receipt_form(appointment_id, method: str = "bank_transfer", amount: str = "3000") -> dict:
    return {
        "appointment_id": str(appointment_id),
        "payment_method": method,
        "transaction_id": "TXN-10001",
        "transaction_date": MONDAY.isoformat(),
        "amount": amount,
    }


def make_appointment(day: date = MONDAY, time: str = "10:00", **overrides) -> Appointment:
    values = {
        "client_name": "Bilal Ahmed",
        "email": "bilal@example.com",
        "phone": "+923331234567",
        "appointment_date": day,
        "appointment_time": time,
        "service_type": ServiceType.INDIVIDUAL,
        "status": AppointmentStatus.PENDING,
        "payment_status": AppointmentPaymentStatus.PENDING,
        "amount": 3000,
    }
    values.update(overrides)
    return Appointment(**values)


# ── Fixtures ──────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.exists.return_value = 0
    return redis


@pytest_asyncio.fixture
async def client(notifier, store, redis_mock):
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_redis] = lambda: redis_mock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers()


@pytest_asyncio.fixture
async def appointment(db) -> Appointment:
    appt = make_appointment()
    db.add(appt)
    await db.commit()
    return appt


async def reload(db, model, pk):
    """Fetch a row bypassing the identity map."""
    return await db.get(model, pk, populate_existing=True)
