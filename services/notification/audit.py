"""
services/notification/audit.py
Append-only audit trail of notification attempts and outcomes.
Writes use their own session so they never share a transaction with
appointment or payment state.
"""

import logging
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from config.database import get_db_context
from shared.models.models import NotificationLog, NotificationStatus

logger = logging.getLogger(__name__)


def _entry(
    recipient: str,
    kind: str,
    status: NotificationStatus,
    subject: Optional[str],
    error: Optional[str],
    context: Optional[dict[str, Any]],
) -> NotificationLog:
    return NotificationLog(
        recipient=recipient,
        kind=kind,
        status=status,
        subject=subject,
        error=(error or None) and error[:2000],
        context=jsonable_encoder(context) if context else None,
    )


async def record(
    recipient: str,
    kind: str,
    status: NotificationStatus,
    subject: Optional[str] = None,
    error: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Record an event from the API process. Failures are logged, not raised."""
    try:
        async with get_db_context() as db:
            db.add(_entry(recipient, kind, status, subject, error, context))
    except Exception:
        logger.exception(f"Could not write notification log ({kind} -> {recipient})")


def record_sync(
    db: Session,
    recipient: str,
    kind: str,
    status: NotificationStatus,
    subject: Optional[str] = None,
    error: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Record an event from a Celery worker using its synchronous session."""
    try:
        db.add(_entry(recipient, kind, status, subject, error, context))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Could not write notification log ({kind} -> {recipient})")
