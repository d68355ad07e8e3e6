"""
Search Domain Models

Author: TM3
Date: 2026-02-19
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class SearchSort(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NEWEST = "newest"
    OLDEST = "oldest"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"
    RATING = "rating"
    POPULARITY = "popularity"


class SearchFilters(BaseModel):
    query: Optional[str] = None
    category_ids: List[str] = []
    vendor_ids: List[str] = []
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    in_stock: Optional[bool] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    sort: SearchSort = SearchSort.RELEVANCE
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    include_facets: bool = True
