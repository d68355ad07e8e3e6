"""
API endpoints for product search and recommendations

Two routers: search_router (/search) and recommendations_router
(/recommendations).
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from marketplace.api.deps import get_request_id, get_user_id
from marketplace.core.exceptions import ApiError
from marketplace.domain.search import SearchFilters, SearchSort
from marketplace.services.recommendation_service import RecommendationService
from marketplace.services.search_service import SearchService

search_router = APIRouter()
recommendations_router = APIRouter()


# ============================================================================
# Search
# ============================================================================

@search_router.get("")
async def advanced_search(
    q: Optional[str] = Query(None, description="Text to search in product names and descriptions"),
    category_ids: List[str] = Query([]),
    vendor_ids: List[str] = Query([]),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    in_stock: Optional[bool] = Query(None),
    created_after: Optional[datetime] = Query(None),
    created_before: Optional[datetime] = Query(None),
    sort: SearchSort = Query(SearchSort.RELEVANCE),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    include_facets: bool = Query(True),
    x_user_id: Optional[str] = Header(None),
    request_id: str = Depends(get_request_id),
):
    try:
        filters = SearchFilters(
            query=q, category_ids=category_ids, vendor_ids=vendor_ids, min_price=min_price,
            max_price=max_price, min_rating=min_rating, in_stock=in_stock, created_after=created_after,
            created_before=created_before, sort=sort, page=page, limit=limit, include_facets=include_facets,
        )
        result = SearchService.advanced_search(filters, user_id=x_user_id, request_id=request_id)
        return {"status": "success", "data": result}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error searching products: {str(e)}")


@search_router.get("/suggestions")
async def get_suggestions(prefix: str = Query(..., min_length=1), limit: int = Query(5, ge=1, le=20)):
    """Autocomplete: product names, categories and vendors starting with prefix"""
    try:
        return {"status": "success", "data": SearchService.get_product_suggestions(prefix, limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting suggestions: {str(e)}")


@search_router.get("/popular")
async def get_popular_searches(limit: int = Query(10, ge=1, le=50)):
    try:
        return {"status": "success", "data": SearchService.get_popular_searches(limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting popular searches: {str(e)}")


# ============================================================================
# Recommendations
# ============================================================================

@recommendations_router.get("/popular")
async def get_popular_products(limit: int = Query(10, ge=1, le=50)):
    try:
        return {"status": "success", "data": RecommendationService.get_popular_products(limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting popular products: {str(e)}")


@recommendations_router.get("/personalized")
async def get_personalized(limit: int = Query(10, ge=1, le=50), user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": RecommendationService.get_personalized_recommendations(user_id, limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting recommendations: {str(e)}")


@recommendations_router.get("/recently-viewed")
async def get_recently_viewed(limit: int = Query(10, ge=1, le=20), user_id: str = Depends(get_user_id)):
    try:
        return {"status": "success", "data": RecommendationService.get_recently_viewed_products(user_id, limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting recently viewed products: {str(e)}")


@recommendations_router.post("/recently-viewed/{product_id}", status_code=204)
async def track_recently_viewed(product_id: str, user_id: str = Depends(get_user_id)):
    try:
        RecommendationService.track_recently_viewed_product(user_id, product_id)
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error tracking product view: {str(e)}")


@recommendations_router.get("/products/{product_id}/related")
async def get_related_products(product_id: str, limit: int = Query(10, ge=1, le=50)):
    try:
        return {"status": "success", "data": RecommendationService.get_related_products(product_id, limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting related products: {str(e)}")


@recommendations_router.get("/products/{product_id}/bought-together")
async def get_frequently_bought_together(product_id: str, limit: int = Query(3, ge=1, le=20)):
    try:
        return {"status": "success", "data": RecommendationService.get_frequently_bought_together(product_id, limit)}
    except (ApiError, HTTPException):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting frequently bought together: {str(e)}")
