"""
Pricing Domain Models - tax rates and currencies

Author: TM3
Date: 2026-02-13
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional


class TaxRateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    rate: float = Field(..., ge=0, le=100)
    country: str = Field(..., min_length=2, max_length=2)
    state: Optional[str] = None
    postal_code: Optional[str] = None
    category_id: Optional[str] = None
    priority: int = 0
    is_default: bool = False
    is_active: bool = True

    @field_validator("country")
    @classmethod
    def upper_country(cls, v: str) -> str:
        return v.upper()

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class TaxRateUpdate(BaseModel):
    name: Optional[str] = None
    rate: Optional[float] = Field(None, ge=0, le=100)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    state: Optional[str] = None
    postal_code: Optional[str] = None
    category_id: Optional[str] = None
    priority: Optional[int] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class TaxCalculation(BaseModel):
    tax_amount: float
    tax_rate: float
    tax_name: str
    tax_rate_id: Optional[str] = None


class CurrencyCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=3)
    name: str
    symbol: str
    exchange_rate: float = Field(1.0, gt=0)
    decimal_places: int = Field(2, ge=0, le=8)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.upper()


class CurrencyUpdate(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None
    exchange_rate: Optional[float] = Field(None, gt=0)
    decimal_places: Optional[int] = Field(None, ge=0, le=8)
    is_active: Optional[bool] = None
