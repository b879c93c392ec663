"""
services/contact/router.py
Public contact form and the admin inbox.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.notification.notifier import ADMIN_RECIPIENT, NotificationKind, Notifier, get_notifier
from shared.exceptions import ContactNotFound
from shared.middleware.auth import TokenData, require_admin
from shared.models.models import ContactMessage
from shared.schemas.schemas import ContactCreateRequest, ContactResponse, MessageResponse, PaginatedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contact", tags=["Contact"])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def submit_contact(
    data: ContactCreateRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    message = ContactMessage(
        name=data.name.strip(),
        email=str(data.email).lower(),
        phone=data.phone,
        subject=data.subject.strip(),
        message=data.message.strip(),
    )
    db.add(message)
    await db.commit()
    logger.info(f"Contact message {message.id} received")

    context = {
        "name": message.name,
        "email": message.email,
        "phone": message.phone or "",
        "subject": message.subject,
        "message": message.message,
    }
    await notifier.notify(ADMIN_RECIPIENT, NotificationKind.CONTACT_RECEIVED_ADMIN, context)
    await notifier.notify(message.email, NotificationKind.CONTACT_RECEIVED_CLIENT, context)
    return MessageResponse(message="Thank you for your message. We will get back to you soon.")


@router.get("", response_model=PaginatedResponse)
async def list_messages(
    is_read: Optional[bool] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(ContactMessage)
    if is_read is not None:
        query = query.where(ContactMessage.is_read == is_read)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(ContactMessage.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [ContactResponse.model_validate(m) for m in result.scalars().all()]
    return PaginatedResponse.build(items, total, page, page_size)


@router.post("/{message_id}/read", response_model=ContactResponse)
async def mark_read(
    message_id: UUID,
    _: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    message = await db.get(ContactMessage, message_id)
    if not message:
        raise ContactNotFound(message_id=str(message_id))
    message.is_read = True
    await db.commit()
    return ContactResponse.model_validate(message)
