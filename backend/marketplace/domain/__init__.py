"""
Domain Layer - Business Entities

Pydantic models for request payloads and entities shared by the services.

Author: TM3
Date: 2026-02-11
"""
from marketplace.domain.vendor import Vendor, VendorStatus, PayoutStatus
from marketplace.domain.loyalty import PointsType, RedemptionStatus, Tier, Reward, TIERS, REWARDS
from marketplace.domain.ab_test import ABTestStatus, PrimaryGoal, ABTestEvent, SignificanceResult
from marketplace.domain.review import ReviewStatus, ModerationAction, ReviewSort
from marketplace.domain.notification import NotificationType, LoyaltyNotificationType, EmailMessage

__all__ = [
    'Vendor', 'VendorStatus', 'PayoutStatus',
    'PointsType', 'RedemptionStatus', 'Tier', 'Reward', 'TIERS', 'REWARDS',
    'ABTestStatus', 'PrimaryGoal', 'ABTestEvent', 'SignificanceResult',
    'ReviewStatus', 'ModerationAction', 'ReviewSort',
    'NotificationType', 'LoyaltyNotificationType', 'EmailMessage',
]
