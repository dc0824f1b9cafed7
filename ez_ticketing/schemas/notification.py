"""
Pydantic schemas for broadcasts and templates.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from ..models.notification import MessageType, NotificationStatus, RecipientType
from .common import APIModel


class BroadcastRequest(APIModel):
    """Schema for an admin broadcast."""
    subject: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    html: str = Field(..., min_length=1, description="Body HTML")
    message_type: MessageType = MessageType.CUSTOM
    recipient_type: RecipientType = RecipientType.ALL


class NotificationResponse(APIModel):
    """Schema for a stored broadcast."""
    id: UUID
    subject: str
    title: str
    html: str
    message_type: MessageType
    recipient_type: RecipientType
    dedup_key: str
    status: NotificationStatus
    sent_count: int
    error: Optional[str] = None
    admin_id: Optional[UUID] = None
    admin_name: Optional[str] = None
    admin_email: Optional[str] = None
    created_at: datetime


class BroadcastResponse(APIModel):
    """Delivery counts for a broadcast."""
    sent: int
    failed: int
    notification: NotificationResponse


class TemplateCreate(APIModel):
    """Schema for saving a notification template."""
    name: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    html: str = Field(..., min_length=1)
    message_type: MessageType = MessageType.CUSTOM


class TemplateResponse(TemplateCreate):
    id: UUID
    created_by: Optional[UUID] = None
    created_at: datetime
