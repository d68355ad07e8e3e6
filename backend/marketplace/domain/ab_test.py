"""
A/B Test Domain Models

Author: TM3
Date: 2026-02-12
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class ABTestStatus(str, Enum):
    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class PrimaryGoal(str, Enum):
    CONVERSION = "conversion"
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"


class ABTestEvent(str, Enum):
    IMPRESSION = "impression"
    CONVERSION = "conversion"
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    traffic_allocation: float = Field(..., ge=0, le=100)
    config: Optional[Dict[str, Any]] = None


class ABTestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    primary_goal: PrimaryGoal = PrimaryGoal.CONVERSION
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    variants: List[VariantCreate] = []


class ABTestUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    primary_goal: Optional[PrimaryGoal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    variants: Optional[List[VariantCreate]] = None


class TrackEvent(BaseModel):
    user_id: str
    event: ABTestEvent
    amount: Optional[float] = None


class CompleteTest(BaseModel):
    winner: Optional[str] = None


class VariantStats(BaseModel):
    """Aggregated counters for one variant"""
    name: str
    users: int = 0
    impressions: int = 0
    conversions: int = 0
    revenue: float = 0.0
    engagements: int = 0
    conversion_rate: float = 0.0
    average_revenue: float = 0.0


class SignificanceResult(BaseModel):
    is_significant: bool
    confidence_level: int
    winner: Optional[str] = None
    z_score: Optional[float] = None
    improvement: Optional[float] = None
