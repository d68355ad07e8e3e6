"""
API endpoints for the loyalty program: points, rewards, referrals and batch jobs
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from marketplace.api.deps import get_request_id, get_user_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.loyalty import (
    PointsAward, PointsRedeem, PointsAdjustment, ReferralClaim, BatchOperation, BulkAward, RedemptionStatus,
)
from marketplace.services.batch_loyalty_service import BatchLoyaltyService
from marketplace.services.loyalty_service import LoyaltyService
from marketplace.services.report_service import ReportService

logger = logging.getLogger(__name__)

router = APIRouter()


class RewardRedemption(BaseModel):
    reward_id: str


class BatchRequest(BaseModel):
    operations: List[BatchOperation] = Field(..., min_length=1)


class ExpiryRequest(BaseModel):
    expiry_days: int = Field(365, ge=1)
    batch_size: int = Field(100, ge=1, le=1000)


class ReportRequest(BaseModel):
    type: str = Field(..., description="points, redemptions, tiers or referrals")
    format: str = "csv"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    filters: dict = {}


# ============================================================================
# Current user
# ============================================================================

@router.get("/me")
async def get_my_loyalty_program(user_id: str = Depends(get_user_id)):
    """Balance, tier, recent history and lifetime totals of the caller"""
    try:
        return {"status": "success", "data": LoyaltyService.get_customer_loyalty_program(user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting loyalty program: {str(e)}")


@router.get("/me/statistics")
async def get_my_statistics(period: str = Query("month", pattern="^(week|month|year|all)$"),
                            user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": LoyaltyService.get_loyalty_statistics(user_id, period)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting loyalty statistics: {str(e)}")


@router.get("/rewards")
async def get_available_rewards(user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": LoyaltyService.get_available_rewards(user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting rewards: {str(e)}")


@router.post("/rewards/redeem", status_code=201)
async def redeem_reward(data: RewardRedemption, user_id: str = Depends(get_user_id),
                        request_id: str = Depends(get_request_id)):
    try:
        redemption = LoyaltyService.redeem_reward(user_id, data.reward_id, request_id=request_id)
        return {"status": "success", "data": redemption}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error redeeming reward {data.reward_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error redeeming reward: {str(e)}")


@router.get("/redemptions")
async def get_my_redemptions(status: Optional[RedemptionStatus] = Query(None),
                             user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": LoyaltyService.get_user_redemptions(user_id, status)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting redemptions: {str(e)}")


@router.post("/redemptions/{code}/use")
async def use_redemption_code(code: str):
    try:
        return {"status": "success", "data": LoyaltyService.use_redemption_code(code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error using redemption code: {str(e)}")


@router.post("/referrals/claim")
async def claim_referral(data: ReferralClaim, request_id: str = Depends(get_request_id)):
    try:
        result = LoyaltyService.process_referral_points(data.code, data.new_user_id, request_id=request_id)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error processing referral: {str(e)}")


@router.post("/orders/{order_id}/points")
async def process_order_points(order_id: str, request_id: str = Depends(get_request_id)):
    """Award points for a delivered order; awarding twice is a no-op"""
    try:
        points = LoyaltyService.process_order_points(order_id, request_id=request_id)
        return {"status": "success", "data": {"order_id": order_id, "points_awarded": points}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error processing order points: {str(e)}")


# ============================================================================
# Admin
# ============================================================================

@router.get("/users/{user_id}")
async def get_user_loyalty_program(user_id: str):
    try:
        return {"status": "success", "data": LoyaltyService.get_customer_loyalty_program(user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting loyalty program: {str(e)}")


@router.post("/users/{user_id}/points")
async def add_points(user_id: str, data: PointsAward, request_id: str = Depends(get_request_id)):
    try:
        result = LoyaltyService.add_loyalty_points(user_id, data.points, data.description,
                                                   reference_id=data.reference_id, points_type=data.type,
                                                   request_id=request_id)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error adding points to {user_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error adding points: {str(e)}")


@router.post("/users/{user_id}/redeem")
async def redeem_points(user_id: str, data: PointsRedeem, request_id: str = Depends(get_request_id)):
    try:
        result = LoyaltyService.redeem_loyalty_points(user_id, data.points, data.description,
                                                      request_id=request_id)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error redeeming points for {user_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error redeeming points: {str(e)}")


@router.post("/users/{user_id}/adjust")
async def adjust_points(user_id: str, data: PointsAdjustment, request_id: str = Depends(get_request_id)):
    """Manual correction; a negative value removes points"""
    try:
        result = LoyaltyService.adjust_customer_points(user_id, data.points, data.reason, request_id=request_id)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adjusting points: {str(e)}")


@router.post("/batch/points")
async def process_batch_points(data: BatchRequest, request_id: str = Depends(get_request_id)):
    try:
        result = BatchLoyaltyService.process_batch_loyalty_points(data.operations, request_id=request_id)
        return {"status": "success", "data": result.to_dict()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error processing batch points: {str(e)}")


@router.post("/batch/award")
async def bulk_award_points(data: BulkAward, request_id: str = Depends(get_request_id)):
    try:
        result = BatchLoyaltyService.bulk_award_loyalty_points(data.user_ids, data.points, data.description,
                                                               points_type=data.type, request_id=request_id)
        return {"status": "success", "data": result.to_dict()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error awarding points: {str(e)}")


@router.post("/batch/expire")
async def expire_points(data: ExpiryRequest):
    try:
        result = BatchLoyaltyService.process_batch_expired_points(data.expiry_days, data.batch_size)
        return {"status": "success", "data": result.to_dict()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error expiring points: {str(e)}")


@router.post("/redemptions/expire")
async def expire_old_redemptions():
    try:
        return {"status": "success", "data": {"expired": LoyaltyService.expire_old_redemptions()}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error expiring redemptions: {str(e)}")


@router.post("/reports")
async def generate_report(data: ReportRequest, request_id: str = Depends(get_request_id)):
    try:
        report = ReportService.generate_loyalty_report(data.type, data.format, data.start_date, data.end_date,
                                                       data.filters, request_id=request_id)
        return {"status": "success", "data": report}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error generating report: {str(e)}")


@router.get("/reports/statistics")
async def get_report_statistics(request_id: str = Depends(get_request_id)):
    try:
        return {"status": "success", "data": ReportService.get_report_statistics(request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting report statistics: {str(e)}")
