"""
API endpoints for vendors and vendor payouts
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.api.deps import get_request_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.vendor import (
    VendorCreate, VendorUpdate, VendorFilters, VendorStatus, VendorStatusUpdate,
    PayoutCreate, PayoutStatus, PayoutStatusUpdate,
)
from marketplace.services.vendor_service import VendorService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def create_vendor(data: VendorCreate, request_id: str = Depends(get_request_id)):
    try:
        vendor = VendorService.create_vendor(data, request_id=request_id)
        return {"status": "success", "data": vendor}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error creating vendor: {e}")
        raise HTTPException(status_code=500, detail=f"Error creating vendor: {str(e)}")


@router.get("")
async def list_vendors(
    status: Optional[VendorStatus] = Query(None, description="Filter by vendor status"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Search by business name or email"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("-created_at", description="Field to sort by, '-' prefix for descending"),
):
    """List vendors with filters and pagination"""
    try:
        filters = VendorFilters(status=status, is_active=is_active, search=search)
        result = VendorService.get_all_vendors(filters, page=page, limit=limit, sort=sort)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing vendors: {str(e)}")


@router.get("/search")
async def search_vendors(q: str = Query(..., min_length=1), page: int = Query(1, ge=1),
                         limit: int = Query(20, ge=1, le=100)):
    try:
        return {"status": "success", "data": VendorService.search_vendors(q, page=page, limit=limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error searching vendors: {str(e)}")


@router.get("/statistics")
async def get_vendor_statistics():
    try:
        return {"status": "success", "data": VendorService.get_vendor_statistics()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor statistics: {str(e)}")


@router.get("/slug/{slug}")
async def get_vendor_by_slug(slug: str):
    try:
        return {"status": "success", "data": VendorService.get_vendor_by_slug(slug)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor: {str(e)}")


@router.get("/payouts/{payout_id}")
async def get_payout(payout_id: str):
    try:
        return {"status": "success", "data": VendorService.get_payout_by_id(payout_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting payout: {str(e)}")


@router.patch("/payouts/{payout_id}/status")
async def update_payout_status(payout_id: str, data: PayoutStatusUpdate):
    try:
        payout = VendorService.update_payout_status(payout_id, data.status, data.notes)
        return {"status": "success", "data": payout}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating payout status: {str(e)}")


@router.get("/{vendor_id}")
async def get_vendor(vendor_id: str):
    try:
        return {"status": "success", "data": VendorService.get_vendor_by_id(vendor_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor: {str(e)}")


@router.put("/{vendor_id}")
async def update_vendor(vendor_id: str, data: VendorUpdate, request_id: str = Depends(get_request_id)):
    try:
        vendor = VendorService.update_vendor(vendor_id, data, request_id=request_id)
        return {"status": "success", "data": vendor}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error updating vendor {vendor_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error updating vendor: {str(e)}")


@router.delete("/{vendor_id}")
async def delete_vendor(vendor_id: str, request_id: str = Depends(get_request_id)):
    """Delete a vendor that has no products and no open payouts"""
    try:
        VendorService.delete_vendor(vendor_id, request_id=request_id)
        return {"status": "success", "message": "Vendor deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error deleting vendor {vendor_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error deleting vendor: {str(e)}")


@router.patch("/{vendor_id}/status")
async def update_vendor_status(vendor_id: str, data: VendorStatusUpdate,
                               request_id: str = Depends(get_request_id)):
    try:
        vendor = VendorService.update_vendor_status(vendor_id, data.status, data.notes, request_id=request_id)
        return {"status": "success", "data": vendor}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating vendor status: {str(e)}")


@router.get("/{vendor_id}/products")
async def get_vendor_products(vendor_id: str, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                              is_active: Optional[bool] = Query(None)):
    try:
        result = VendorService.get_vendor_products(vendor_id, page=page, limit=limit, is_active=is_active)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor products: {str(e)}")


@router.get("/{vendor_id}/metrics")
async def get_vendor_metrics(vendor_id: str):
    try:
        return {"status": "success", "data": VendorService.get_vendor_metrics(vendor_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor metrics: {str(e)}")


@router.get("/{vendor_id}/payouts")
async def get_vendor_payouts(vendor_id: str, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                             status: Optional[PayoutStatus] = Query(None)):
    try:
        result = VendorService.get_vendor_payouts(vendor_id, page=page, limit=limit, status=status)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting vendor payouts: {str(e)}")


@router.get("/{vendor_id}/payouts/calculate")
async def calculate_vendor_payout(vendor_id: str, start_date: datetime = Query(...),
                                  end_date: datetime = Query(...)):
    """Preview the payout for a period without creating it"""
    try:
        calculation = VendorService.calculate_vendor_payout(vendor_id, start_date, end_date)
        return {"status": "success", "data": calculation.model_dump()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error calculating payout: {str(e)}")


@router.post("/{vendor_id}/payouts", status_code=201)
async def create_vendor_payout(vendor_id: str, data: PayoutCreate, request_id: str = Depends(get_request_id)):
    try:
        payout = VendorService.create_vendor_payout(vendor_id, data, request_id=request_id)
        return {"status": "success", "data": payout}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error creating payout for vendor {vendor_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error creating payout: {str(e)}")


# ============================================================================
# Dashboard and analytics
# ============================================================================

@router.get("/{vendor_id}/dashboard")
async def get_vendor_dashboard(vendor_id: str,
                               period: str = Query("month", description="day, week, month, year or all"),
                               request_id: str = Depends(get_request_id)):
    try:
        dashboard = VendorService.get_vendor_dashboard(vendor_id, period=period, request_id=request_id)
        return {"status": "success", "data": dashboard}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error building dashboard for vendor {vendor_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error getting vendor dashboard: {str(e)}")


@router.get("/{vendor_id}/analytics/sales")
async def get_vendor_sales_analytics(
    vendor_id: str,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    interval: str = Query("daily", description="hourly, daily, weekly or monthly"),
    compare_with_previous: bool = Query(True),
    group_by: Optional[str] = Query(None, description="product, category or customer"),
    request_id: str = Depends(get_request_id),
):
    try:
        analytics = VendorService.get_vendor_sales_analytics(
            vendor_id, start_date=start_date, end_date=end_date, interval=interval,
            compare_with_previous=compare_with_previous, group_by=group_by, request_id=request_id,
        )
        return {"status": "success", "data": analytics}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting sales analytics: {str(e)}")


@router.get("/{vendor_id}/analytics/products")
async def get_vendor_product_analytics(vendor_id: str, start_date: Optional[datetime] = Query(None),
                                       end_date: Optional[datetime] = Query(None),
                                       category_id: Optional[str] = Query(None),
                                       limit: int = Query(20, ge=1, le=100)):
    try:
        analytics = VendorService.get_vendor_product_analytics(
            vendor_id, start_date=start_date, end_date=end_date, category_id=category_id, limit=limit)
        return {"status": "success", "data": analytics}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting product analytics: {str(e)}")


@router.get("/{vendor_id}/analytics/orders")
async def get_vendor_order_analytics(vendor_id: str, start_date: Optional[datetime] = Query(None),
                                     end_date: Optional[datetime] = Query(None),
                                     status: Optional[str] = Query(None)):
    try:
        analytics = VendorService.get_vendor_order_analytics(
            vendor_id, start_date=start_date, end_date=end_date, status=status)
        return {"status": "success", "data": analytics}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting order analytics: {str(e)}")


@router.get("/{vendor_id}/analytics/payouts")
async def get_vendor_payout_analytics(vendor_id: str, start_date: Optional[datetime] = Query(None),
                                      end_date: Optional[datetime] = Query(None)):
    try:
        analytics = VendorService.get_vendor_payout_analytics(vendor_id, start_date=start_date, end_date=end_date)
        return {"status": "success", "data": analytics}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting payout analytics: {str(e)}")
