"""
API endpoints for currencies and currency conversion
"""
from fastapi import APIRouter, HTTPException, Query

from marketplace.core.exceptions import ApiError
from marketplace.domain.pricing import CurrencyCreate, CurrencyUpdate
from marketplace.services.currency_service import CurrencyService

router = APIRouter()


@router.get("")
async def list_currencies(active_only: bool = Query(False)):
    try:
        return {"status": "success", "data": CurrencyService.get_currencies(active_only)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing currencies: {str(e)}")


@router.post("", status_code=201)
async def create_currency(data: CurrencyCreate):
    try:
        return {"status": "success", "data": CurrencyService.create_currency(data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating currency: {str(e)}")


@router.get("/base")
async def get_base_currency():
    try:
        return {"status": "success", "data": CurrencyService.get_base_currency()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting base currency: {str(e)}")


@router.get("/convert")
async def convert_currency(amount: float = Query(...), source: str = Query(..., alias="from"),
                           target: str = Query(..., alias="to")):
    """Convert an amount, e.g. /convert?amount=10&from=USD&to=EUR"""
    try:
        return {"status": "success", "data": CurrencyService.convert_currency(amount, source, target)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error converting currency: {str(e)}")


@router.post("/rates/update")
async def update_exchange_rates():
    """Refresh exchange rates from the external rates API"""
    try:
        return {"status": "success", "data": CurrencyService.update_exchange_rates()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating exchange rates: {str(e)}")


@router.get("/{code}")
async def get_currency(code: str):
    try:
        return {"status": "success", "data": CurrencyService.get_currency(code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting currency: {str(e)}")


@router.get("/{code}/format")
async def format_currency(code: str, amount: float = Query(...)):
    try:
        return {"status": "success", "data": {"formatted": CurrencyService.format_currency(amount, code)}}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error formatting amount: {str(e)}")


@router.put("/{code}")
async def update_currency(code: str, data: CurrencyUpdate):
    try:
        return {"status": "success", "data": CurrencyService.update_currency(code, data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating currency: {str(e)}")


@router.post("/{code}/base")
async def set_base_currency(code: str):
    """Make this the base currency and rebase all other rates"""
    try:
        return {"status": "success", "data": CurrencyService.set_base_currency(code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error setting base currency: {str(e)}")


@router.delete("/{code}")
async def delete_currency(code: str):
    try:
        CurrencyService.delete_currency(code)
        return {"status": "success", "message": f"Currency {code.upper()} deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting currency: {str(e)}")
