"""
API endpoints for A/B tests
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.api.deps import get_request_id, get_user_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.ab_test import ABTestCreate, ABTestUpdate, ABTestStatus, TrackEvent, CompleteTest
from marketplace.services.ab_test_service import ABTestService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def create_ab_test(data: ABTestCreate, request_id: str = Depends(get_request_id)):
    try:
        return {"status": "success", "data": ABTestService.create_ab_test(data, request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error creating A/B test: {e}")
        raise HTTPException(status_code=500, detail=f"Error creating A/B test: {str(e)}")


@router.get("")
async def list_ab_tests(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                        status: Optional[ABTestStatus] = Query(None)):
    try:
        return {"status": "success", "data": ABTestService.get_ab_tests(page=page, limit=limit, status=status)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error listing A/B tests: {str(e)}")


@router.get("/active")
async def get_active_ab_tests():
    try:
        return {"status": "success", "data": ABTestService.get_active_ab_tests()}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting active A/B tests: {str(e)}")


@router.get("/assignments/me")
async def get_my_assignments(user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": ABTestService.get_user_test_assignments(user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting assignments: {str(e)}")


@router.get("/{test_id}")
async def get_ab_test(test_id: str):
    try:
        return {"status": "success", "data": ABTestService.get_ab_test_by_id(test_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting A/B test: {str(e)}")


@router.put("/{test_id}")
async def update_ab_test(test_id: str, data: ABTestUpdate, request_id: str = Depends(get_request_id)):
    try:
        return {"status": "success", "data": ABTestService.update_ab_test(test_id, data, request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating A/B test: {str(e)}")


@router.delete("/{test_id}")
async def delete_ab_test(test_id: str):
    try:
        ABTestService.delete_ab_test(test_id)
        return {"status": "success", "message": "A/B test deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting A/B test: {str(e)}")


@router.post("/{test_id}/start")
async def start_ab_test(test_id: str, request_id: str = Depends(get_request_id)):
    """Start a draft or paused test; variant allocation must add up to 100%"""
    try:
        return {"status": "success", "data": ABTestService.start_ab_test(test_id, request_id=request_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error starting A/B test: {str(e)}")


@router.post("/{test_id}/pause")
async def pause_ab_test(test_id: str):
    try:
        return {"status": "success", "data": ABTestService.pause_ab_test(test_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error pausing A/B test: {str(e)}")


@router.post("/{test_id}/complete")
async def complete_ab_test(test_id: str, data: CompleteTest, request_id: str = Depends(get_request_id)):
    try:
        test = ABTestService.complete_ab_test(test_id, data.winner, request_id=request_id)
        return {"status": "success", "data": test}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error completing A/B test: {str(e)}")


@router.get("/{test_id}/assignment")
async def get_assignment(test_id: str, user_id: str = Depends(get_user_id)):
    """Variant for the caller, assigned on first request"""
    try:
        return {"status": "success", "data": ABTestService.get_user_test_assignment(test_id, user_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting assignment: {str(e)}")


@router.post("/{test_id}/events")
async def track_event(test_id: str, data: TrackEvent):
    try:
        result = ABTestService.track_test_event(test_id, data.user_id, data.event, data.amount)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error tracking event: {str(e)}")


@router.get("/{test_id}/results")
async def get_test_results(test_id: str):
    try:
        return {"status": "success", "data": ABTestService.get_test_results(test_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting test results: {str(e)}")
