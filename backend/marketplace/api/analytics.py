"""
API endpoints for dashboard and sales analytics
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.api.deps import get_request_id
from marketplace.core.exceptions import ApiError
from marketplace.services.analytics_service import AnalyticsService

router = APIRouter()


@router.get("/dashboard")
async def get_dashboard_analytics(
    start_date: Optional[datetime] = Query(None, description="Period start (ISO format), default 30 days ago"),
    end_date: Optional[datetime] = Query(None, description="Period end (ISO format), default now"),
    compare_with_previous: bool = Query(True),
    request_id: str = Depends(get_request_id),
):
    try:
        data = AnalyticsService.get_dashboard_analytics(start_date, end_date, compare_with_previous,
                                                        request_id=request_id)
        return {"status": "success", "data": data}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting dashboard analytics: {str(e)}")


@router.get("/sales")
async def get_sales_analytics(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    interval: str = Query("day", pattern="^(hour|day|week|month)$"),
    compare_with_previous: bool = Query(True),
    group_by: str = Query("product", pattern="^(product|category|vendor)$"),
    request_id: str = Depends(get_request_id),
):
    try:
        data = AnalyticsService.get_sales_analytics(start_date, end_date, interval, compare_with_previous,
                                                    group_by, request_id=request_id)
        return {"status": "success", "data": data}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting sales analytics: {str(e)}")
