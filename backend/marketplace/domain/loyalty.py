"""
Loyalty Domain Models

Author: TM3
Date: 2026-02-11
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum


class PointsType(str, Enum):
    ORDER = "ORDER"
    REFERRAL = "REFERRAL"
    MANUAL = "MANUAL"
    REVIEW = "REVIEW"
    REDEMPTION = "REDEMPTION"
    EXPIRE = "EXPIRE"
    OTHER = "OTHER"


# Types that count towards lifetime points (and therefore tier)
EARNING_TYPES = (PointsType.ORDER, PointsType.REFERRAL, PointsType.MANUAL,
                 PointsType.REVIEW, PointsType.OTHER)


class RedemptionStatus(str, Enum):
    PENDING = "PENDING"
    USED = "USED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Tier(BaseModel):
    name: str
    min_points: int
    max_points: Optional[int] = None
    benefits: List[str] = []


TIERS = [
    Tier(name="Bronze", min_points=0, max_points=999,
         benefits=["1 point per unit spent", "Birthday reward"]),
    Tier(name="Silver", min_points=1000, max_points=4999,
         benefits=["1 point per unit spent", "Birthday reward", "Free shipping on orders over 50"]),
    Tier(name="Gold", min_points=5000, max_points=9999,
         benefits=["1.25 points per unit spent", "Birthday reward", "Free shipping", "Early access to sales"]),
    Tier(name="Platinum", min_points=10000, max_points=None,
         benefits=["1.5 points per unit spent", "Birthday reward", "Free express shipping",
                   "Early access to sales", "Dedicated support"]),
]


class Reward(BaseModel):
    id: str
    name: str
    description: str
    points_cost: int
    type: str
    value: float


REWARDS = [
    Reward(id="discount-5", name="5% Discount", description="5% off your next order",
           points_cost=100, type="DISCOUNT_PERCENTAGE", value=5),
    Reward(id="discount-10", name="10% Discount", description="10% off your next order",
           points_cost=200, type="DISCOUNT_PERCENTAGE", value=10),
    Reward(id="free-shipping", name="Free Shipping", description="Free shipping on your next order",
           points_cost=150, type="FREE_SHIPPING", value=0),
    Reward(id="discount-20", name="20% Discount", description="20% off your next order",
           points_cost=500, type="DISCOUNT_PERCENTAGE", value=20),
    Reward(id="gift-card-10", name="10 Gift Card", description="Gift card worth 10",
           points_cost=1000, type="GIFT_CARD", value=10),
    Reward(id="gift-card-25", name="25 Gift Card", description="Gift card worth 25",
           points_cost=2500, type="GIFT_CARD", value=25),
]


class PointsAward(BaseModel):
    points: int = Field(..., gt=0)
    description: str = "Points awarded"
    reference_id: Optional[str] = None
    type: PointsType = PointsType.MANUAL


class PointsRedeem(BaseModel):
    points: int = Field(..., gt=0)
    description: str = "Points redeemed"


class PointsAdjustment(BaseModel):
    points: int
    reason: str


class ReferralClaim(BaseModel):
    code: str
    new_user_id: str


class BatchOperation(BaseModel):
    """One entry of a batch points request"""
    user_id: str
    points: int = Field(..., gt=0)
    description: str
    type: PointsType = PointsType.MANUAL
    reference_id: Optional[str] = None


class BulkAward(BaseModel):
    user_ids: List[str]
    points: int = Field(..., gt=0)
    description: str
    type: PointsType = PointsType.MANUAL
