"""
API endpoints for countries and their states
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.api.deps import get_request_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.country import CountryCreate, CountryState, CountryUpdate
from marketplace.services.country_service import CountryService

router = APIRouter()


@router.get("")
async def list_countries():
    try:
        return {"status": "success", "data": CountryService.get_all_countries()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing countries: {str(e)}")


@router.post("", status_code=201)
async def create_country(data: CountryCreate, request_id: str = Depends(get_request_id)):
    try:
        return {"status": "success", "data": CountryService.create_country(data, request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error creating country: {str(e)}")


@router.get("/search")
async def search_countries(q: str = Query(..., min_length=1)):
    """Match on name, code or region"""
    try:
        return {"status": "success", "data": CountryService.search_countries(q)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error searching countries: {str(e)}")


@router.get("/region/{region}")
async def get_countries_by_region(region: str):
    try:
        return {"status": "success", "data": CountryService.get_countries_by_region(region)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting countries by region: {str(e)}")


@router.get("/{code}")
async def get_country(code: str):
    try:
        return {"status": "success", "data": CountryService.get_country(code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting country: {str(e)}")


@router.put("/{code}")
async def update_country(code: str, data: CountryUpdate, request_id: str = Depends(get_request_id)):
    try:
        return {"status": "success", "data": CountryService.update_country(code, data, request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating country: {str(e)}")


@router.delete("/{code}")
async def delete_country(code: str, request_id: str = Depends(get_request_id)):
    try:
        CountryService.delete_country(code, request_id=request_id)
        return {"status": "success", "message": f"Country {code.upper()} deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting country: {str(e)}")


@router.get("/{code}/states")
async def get_states(code: str):
    try:
        return {"status": "success", "data": CountryService.get_states(code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting states: {str(e)}")


@router.post("/{code}/states", status_code=201)
async def add_state(code: str, state: CountryState):
    try:
        return {"status": "success", "data": CountryService.add_state(code, state)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error adding state: {str(e)}")


@router.delete("/{code}/states/{state_code}")
async def remove_state(code: str, state_code: str):
    try:
        return {"status": "success", "data": CountryService.remove_state(code, state_code)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error removing state: {str(e)}")
