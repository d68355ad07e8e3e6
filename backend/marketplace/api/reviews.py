"""
API endpoints for product reviews
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from marketplace.api.deps import get_request_id, get_user_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.review import ReviewCreate, ReviewUpdate, ReviewSort, HelpfulVote, Moderation
from marketplace.services.review_service import ReviewService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def create_review(data: ReviewCreate, user_id: str = Depends(get_user_id),
                        request_id: str = Depends(get_request_id)):
    """Create a review; awards review points to the author"""
    try:
        review = ReviewService.create_review(user_id, data, request_id=request_id)
        return {"status": "success", "data": review}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error creating review: {e}")
        raise HTTPException(status_code=500, detail=f"Error creating review: {str(e)}")


@router.get("/product/{product_id}")
async def get_product_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: ReviewSort = Query(ReviewSort.NEWEST),
    rating: Optional[int] = Query(None, ge=1, le=5),
    verified_only: bool = Query(False),
):
    try:
        result = ReviewService.get_product_reviews(product_id, page=page, limit=limit, sort=sort,
                                                   rating=rating, verified_only=verified_only)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting reviews: {str(e)}")


@router.get("/product/{product_id}/stats")
async def get_review_stats(product_id: str):
    try:
        return {"status": "success", "data": ReviewService.get_review_stats(product_id)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting review stats: {str(e)}")


@router.get("/me")
async def get_my_reviews(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                         user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": ReviewService.get_user_reviews(user_id, page=page, limit=limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting reviews: {str(e)}")


@router.put("/{review_id}")
async def update_review(review_id: str, data: ReviewUpdate, user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": ReviewService.update_review(review_id, user_id, data)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error updating review: {str(e)}")


@router.delete("/{review_id}")
async def delete_review(review_id: str, user_id: str = Depends(get_user_id)):
    try:
        ReviewService.delete_review(review_id, user_id)
        return {"status": "success", "message": "Review deleted"}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error deleting review: {str(e)}")


@router.post("/{review_id}/helpful")
async def mark_review_helpful(review_id: str, data: HelpfulVote, user_id: str = Depends(get_user_id)):
    """Vote a review helpful or not; repeating the same vote removes it"""
    try:
        result = ReviewService.mark_review_helpful(review_id, user_id, data.is_helpful)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error voting on review: {str(e)}")


@router.post("/{review_id}/moderate")
async def moderate_review(review_id: str, data: Moderation, request_id: str = Depends(get_request_id)):
    try:
        review = ReviewService.moderate_review(review_id, data.action, data.reason, request_id=request_id)
        return {"status": "success", "data": review}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"[{request_id}] Error moderating review {review_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error moderating review: {str(e)}")
