"""
Review Domain Models

Author: TM3
Date: 2026-02-12
"""
from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ModerationAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ReviewSort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    RATING_HIGH = "rating_high"
    RATING_LOW = "rating_low"
    HELPFUL = "helpful"


class ReviewCreate(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=255)
    comment: Optional[str] = None


class HelpfulVote(BaseModel):
    is_helpful: bool = True


class Moderation(BaseModel):
    action: ModerationAction
    reason: Optional[str] = None
