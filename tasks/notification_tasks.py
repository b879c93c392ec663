"""
tasks/notification_tasks.py
Celery task for transactional email delivery.

Every attempt ends in a notification_logs row (sent / skipped / failed).
Delivery failures are retried here with exponential backoff; the API
process never waits on this task.

Usage:
    from tasks.notification_tasks import send_notification_email
    send_notification_email.apply_async(kwargs={...})
"""

import html
import logging

from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from services.notification.audit import record_sync
from shared.models.models import NotificationStatus
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def sync_database_url(url: str) -> str:
    """Map the async driver URL used by the API onto a synchronous driver."""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker = None

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._sessionmaker is None:
            engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine)
        return DatabaseTask._sessionmaker()


# ── Delivery ───────────────────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        import resend
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


# ── Templates ──────────────────────────────────────────────────────────────────

TEMPLATES = {
    "appointment_created_client": {
        "subject": "Appointment request received – {appointment_date} at {appointment_time}",
        "html": (
            "<p>Dear {client_name},</p>"
            "<p>We have received your request for a {service_type} session on "
            "{appointment_date} at {appointment_time}. Please submit your payment of "
            "PKR {amount} to confirm the booking.</p>"
        ),
    },
    "appointment_created_admin": {
        "subject": "New appointment request – {client_name}",
        "html": (
            "<p>{client_name} ({email}, {phone}) requested a {service_type} session on "
            "{appointment_date} at {appointment_time}.</p><p>{message}</p>"
        ),
    },
    "payment_submitted_client": {
        "subject": "Payment received – awaiting verification",
        "html": (
            "<p>Dear {client_name},</p>"
            "<p>Your payment of {currency} {amount} via {payment_method} "
            "(transaction {transaction_id}) has been received and will be verified shortly.</p>"
        ),
    },
    "payment_submitted_admin": {
        "subject": "Payment submitted – {client_name}",
        "html": (
            "<p>{client_name} submitted {currency} {amount} via {payment_method} "
            "(transaction {transaction_id}) for {appointment_date} at {appointment_time}.</p>"
            "<p>Receipt: <a href=\"{receipt_url}\">{receipt_url}</a></p>"
        ),
    },
    "payment_verified_client": {
        "subject": "Appointment confirmed – {appointment_date} at {appointment_time}",
        "html": (
            "<p>Dear {client_name},</p>"
            "<p>Your payment has been verified and your appointment on "
            "{appointment_date} at {appointment_time} is confirmed.</p>"
        ),
    },
    "payment_verified_admin": {
        "subject": "Payment verified – {client_name}",
        "html": "<p>Payment {transaction_id} for {client_name} was verified by {actor}.</p>",
    },
    "payment_rejected_client": {
        "subject": "Payment could not be verified",
        "html": (
            "<p>Dear {client_name},</p>"
            "<p>We could not verify your payment for {appointment_date} at {appointment_time}. "
            "Reason: {reason}</p><p>Your appointment has been cancelled. Please contact us "
            "if you believe this is a mistake.</p>"
        ),
    },
    "payment_rejected_admin": {
        "subject": "Payment rejected – {client_name}",
        "html": "<p>Payment {transaction_id} for {client_name} was rejected by {actor}: {reason}</p>",
    },
    "contact_received_client": {
        "subject": "We received your message",
        "html": "<p>Dear {name},</p><p>Thank you for contacting us. We will reply shortly.</p>",
    },
    "contact_received_admin": {
        "subject": "New contact message – {subject}",
        "html": "<p>From {name} ({email}, {phone}):</p><p>{message}</p>",
    },
}


def _render(template: str, **kwargs) -> str:
    """Plain placeholder substitution, used for subjects."""
    for key, value in kwargs.items():
        template = template.replace(f"{{{key}}}", "" if value is None else str(value))
    return template


def _render_html(template: str, **kwargs) -> str:
    # Client-supplied text (names, messages) must not become live markup
    return _render(template, **{k: None if v is None else html.escape(str(v), quote=True) for k, v in kwargs.items()})


# ── Task ───────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_notification_email(self, recipient: str, kind: str, context: dict):
    """Render and send one notification email, logging the outcome."""
    db = self.get_session()
    try:
        tmpl = TEMPLATES.get(kind)
        if tmpl is None:
            logger.error(f"send_notification_email: unknown template {kind}")
            record_sync(db, recipient, kind, NotificationStatus.SKIPPED, error="unknown template", context=context)
            return False

        subject = _render(tmpl["subject"], **context)
        if not recipient or not settings.RESEND_API_KEY:
            record_sync(
                db, recipient or "", kind, NotificationStatus.SKIPPED, subject=subject,
                error="email not configured" if recipient else "no recipient", context=context,
            )
            return False

        if _send_email(recipient, subject, _render_html(tmpl["html"], **context)):
            record_sync(db, recipient, kind, NotificationStatus.SENT, subject=subject, context=context)
            return True

        record_sync(
            db, recipient, kind, NotificationStatus.FAILED, subject=subject,
            error=f"attempt {self.request.retries + 1} failed", context=context,
        )
    finally:
        db.close()

    if self.request.retries >= self.max_retries:
        logger.error(f"Giving up on {kind} email to {recipient}")
        return False
    raise self.retry(countdown=60 * (2 ** self.request.retries))
