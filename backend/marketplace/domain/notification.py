"""
Notification and Email Domain Models

Author: TM3
Date: 2026-02-13
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class NotificationType(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LoyaltyNotificationType(str, Enum):
    POINTS_EARNED = "points_earned"
    POINTS_EXPIRED = "points_expired"
    TIER_UPGRADE = "tier_upgrade"
    REWARD_REDEEMED = "reward_redeemed"
    REWARD_APPROVED = "reward_approved"
    REWARD_REJECTED = "reward_rejected"


class NotificationCreate(BaseModel):
    user_id: str
    title: str = Field(..., max_length=255)
    message: str
    type: NotificationType = NotificationType.INFO
    link: Optional[str] = None


class EmailMessage(BaseModel):
    """An outgoing email, also the payload stored in the queue"""
    to: List[EmailStr]
    subject: str
    html: str
    from_address: Optional[str] = None
    cc: List[EmailStr] = []
    bcc: List[EmailStr] = []


class QueuedEmail(BaseModel):
    id: str
    message: EmailMessage
    attempts: int = 0
    priority: int = 5
    created_at: datetime
    scheduled_for: Optional[datetime] = None
    last_error: Optional[str] = None


class QueueEmailRequest(EmailMessage):
    priority: int = Field(5, ge=1, le=10)
    scheduled_for: Optional[datetime] = None


class LoyaltyNotificationRequest(BaseModel):
    user_id: str
    type: LoyaltyNotificationType
    data: Dict[str, Any] = {}
