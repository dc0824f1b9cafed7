"""
FastAPI routes for admin broadcasts and templates.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..schemas.notification import (
    BroadcastRequest,
    BroadcastResponse,
    NotificationResponse,
    TemplateCreate,
    TemplateResponse,
)
from ..services.email_service import EmailService
from ..services.notification_service import NotificationService
from ..utils.dependencies import get_current_admin_user, get_email_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast_notification(
    request: BroadcastRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service)
):
    """
    Email a message to a recipient cohort (admin only).

    Sending identical content to the same cohort twice within 30 minutes is
    rejected with DUPLICATE_RECENT. Individual delivery failures are reported
    in the ``failed`` count.
    """
    service = NotificationService(db, email_service=email_service)
    result = await service.broadcast(
        subject=request.subject,
        title=request.title,
        html=request.html,
        message_type=request.message_type,
        recipient_type=request.recipient_type,
        admin=admin_user
    )
    return BroadcastResponse(
        sent=result.sent,
        failed=result.failed,
        notification=NotificationResponse.model_validate(result.notification)
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Most recent broadcasts (admin only)."""
    notifications = await NotificationService(db).list_notifications()
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    templates = await NotificationService(db).list_templates()
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def save_template(
    template: TemplateCreate,
    admin_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Save reusable broadcast content (admin only)."""
    saved = await NotificationService(db).save_template(
        name=template.name,
        subject=template.subject,
        title=template.title,
        html=template.html,
        message_type=template.message_type,
        admin=admin_user
    )
    return TemplateResponse.model_validate(saved)
