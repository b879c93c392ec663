"""
tasks/celery_app.py
Celery app carrying the clinic's outbound email.

    celery -A tasks.celery_app worker -Q notifications --loglevel=info --concurrency=2
"""

from celery import Celery

from config.settings import settings

NOTIFICATION_QUEUE = "notifications"

celery_app = Celery(
    "mindwell_clinic",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Slot times are clinic-local; Celery itself keeps UTC
    timezone="Asia/Karachi",
    enable_utc=True,
    task_routes={"tasks.notification_tasks.*": {"queue": NOTIFICATION_QUEUE}},
    task_annotations={
        "tasks.notification_tasks.send_notification_email": {"rate_limit": "20/s"},
    },
    # A worker killed mid-send redelivers the email
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Nobody reads results
    task_ignore_result=True,
    result_expires=3600,
    # The API publishes from a thread with a deadline; give up on a dead broker quickly
    broker_connection_retry_on_startup=True,
    broker_transport_options={"max_retries": 1, "interval_start": 0, "interval_step": 0.2},
)
