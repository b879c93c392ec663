"""
services/notification/notifier.py
Fire-and-forget notification dispatch.

notify() returns immediately. The actual hand-off to the Celery email
queue runs in a detached asyncio task; its outcome is written to the
notification log and any failure is logged, never raised to the caller.
"""

import asyncio
import logging
from enum import Enum as PyEnum
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder

from config.settings import settings
from services.notification import audit
from shared.models.models import NotificationStatus

logger = logging.getLogger(__name__)

ADMIN_RECIPIENT = "admin"
DISPATCH_TIMEOUT_SECONDS = 10


class NotificationKind(str, PyEnum):
    APPOINTMENT_CREATED_CLIENT = "appointment_created_client"
    APPOINTMENT_CREATED_ADMIN = "appointment_created_admin"
    PAYMENT_SUBMITTED_CLIENT = "payment_submitted_client"
    PAYMENT_SUBMITTED_ADMIN = "payment_submitted_admin"
    PAYMENT_VERIFIED_CLIENT = "payment_verified_client"
    PAYMENT_VERIFIED_ADMIN = "payment_verified_admin"
    PAYMENT_REJECTED_CLIENT = "payment_rejected_client"
    PAYMENT_REJECTED_ADMIN = "payment_rejected_admin"
    CONTACT_RECEIVED_CLIENT = "contact_received_client"
    CONTACT_RECEIVED_ADMIN = "contact_received_admin"


class Notifier:
    def __init__(self):
        self._pending: set[asyncio.Task] = set()

    async def notify(self, recipient: str, kind: NotificationKind, context: dict[str, Any]) -> None:
        """Schedule delivery and return without waiting for it."""
        try:
            task = asyncio.create_task(self._dispatch(recipient, kind, context))
        except Exception:
            logger.exception(f"Could not schedule {kind} notification")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _dispatch(self, recipient: str, kind: NotificationKind, context: dict[str, Any]) -> None:
        from tasks.notification_tasks import send_notification_email

        address = settings.admin_notify_address if recipient == ADMIN_RECIPIENT else recipient
        kind_value = NotificationKind(kind).value
        payload = jsonable_encoder(context)
        error: Optional[str] = None
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    send_notification_email.apply_async,
                    kwargs={"recipient": address, "kind": kind_value, "context": payload},
                    retry=False,
                ),
                timeout=DISPATCH_TIMEOUT_SECONDS,
            )
            status = NotificationStatus.QUEUED
        except Exception as e:
            error = str(e) or e.__class__.__name__
            status = NotificationStatus.DISPATCH_FAILED
            logger.warning(f"Notification {kind_value} to {address} could not be queued: {error}")

        await audit.record(address, kind_value, status, error=error, context=payload)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait briefly for in-flight dispatches. Used on shutdown."""
        if not self._pending:
            return
        _, pending = await asyncio.wait(self._pending, timeout=timeout)
        for task in pending:
            task.cancel()


notifier = Notifier()


def get_notifier() -> Notifier:
    """FastAPI dependency for the process-wide notifier."""
    return notifier
