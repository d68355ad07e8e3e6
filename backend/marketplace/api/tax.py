"""
API endpoints for tax rates and tax calculation
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from marketplace.core.exceptions import ApiError
from marketplace.domain.pricing import TaxRateCreate, TaxRateUpdate
from marketplace.services.tax_service import TaxService

router = APIRouter()


@router.get("/calculate")
async def calculate_tax(
    amount: float = Query(..., ge=0),
    country: str = Query(..., min_length=2, max_length=2),
    state: Optional[str] = Query(None),
    postal_code: Optional[str] = Query(None),
    category_id: Optional[str] = Query(None),
):
    """Tax for an amount at a location, using the most specific matching rate"""
    try:
        calculation = TaxService.calculate_tax(amount, country, state, postal_code, category_id)
        return {"status": "success", "data": calculation.model_dump()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error calculating tax: {str(e)}")


@router.get("/rates")
async def list_tax_rates(country: Optional[str] = Query(None), is_active: Optional[bool] = Query(None)):
    try:
        return {"status": "success", "data": TaxService.get_tax_rates(country, is_active)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing tax rates: {str(e)}")


@router.post("/rates", status_code=201)
async def create_tax_rate(data: TaxRateCreate):
    try:
        return {"status": "success", "data": TaxService.create_tax_rate(data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating tax rate: {str(e)}")


@router.get("/rates/{tax_rate_id}")
async def get_tax_rate(tax_rate_id: str):
    try:
        return {"status": "success", "data": TaxService.get_tax_rate_by_id(tax_rate_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting tax rate: {str(e)}")


@router.put("/rates/{tax_rate_id}")
async def update_tax_rate(tax_rate_id: str, data: TaxRateUpdate):
    try:
        return {"status": "success", "data": TaxService.update_tax_rate(tax_rate_id, data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating tax rate: {str(e)}")


@router.delete("/rates/{tax_rate_id}")
async def delete_tax_rate(tax_rate_id: str):
    try:
        TaxService.delete_tax_rate(tax_rate_id)
        return {"status": "success", "message": "Tax rate deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting tax rate: {str(e)}")
