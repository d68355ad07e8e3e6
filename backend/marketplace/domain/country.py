"""
Country Domain Models - countries and their states/provinces

Author: TM3
Date: 2026-02-24
"""
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class CountryState(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.upper()


class CountryCreate(BaseModel):
    code: str = Field(..., min_length=2, max_length=2)
    name: str = Field(..., min_length=1, max_length=100)
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    region: Optional[str] = None
    states: List[CountryState] = []
    is_active: bool = True

    @field_validator("code", "currency_code")
    @classmethod
    def upper(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class CountryUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=2, max_length=2)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    region: Optional[str] = None
    states: Optional[List[CountryState]] = None
    is_active: Optional[bool] = None

    @field_validator("code", "currency_code")
    @classmethod
    def upper(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v
