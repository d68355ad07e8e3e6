"""
Vendor Domain Models

Vendors sell products on the marketplace and are paid out periodically,
net of the marketplace commission.

Author: TM3
Date: 2026-02-11
"""
from pydantic import BaseModel, Field, ConfigDict, EmailStr
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class VendorStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class VendorCreate(BaseModel):
    """Payload for registering a vendor"""
    business_name: str = Field(..., min_length=2, max_length=255)
    contact_email: EmailStr
    user_id: Optional[str] = None
    description: Optional[str] = None
    contact_phone: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    commission_rate: Optional[float] = Field(None, ge=0, le=100)


class VendorUpdate(BaseModel):
    business_name: Optional[str] = Field(None, min_length=2, max_length=255)
    contact_email: Optional[EmailStr] = None
    description: Optional[str] = None
    contact_phone: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class VendorFilters(BaseModel):
    status: Optional[VendorStatus] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


class Vendor(BaseModel):
    """Vendor as stored in the vendors table"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    business_name: str
    slug: str
    contact_email: str
    user_id: Optional[str] = None
    description: Optional[str] = None
    contact_phone: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    commission_rate: float = 10.0
    status: VendorStatus = VendorStatus.PENDING
    verification_notes: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.status == VendorStatus.APPROVED


class PayoutCalculation(BaseModel):
    """Amounts due to a vendor for a period"""
    vendor_id: str
    period_start: datetime
    period_end: datetime
    order_count: int
    total_sales: float
    commission_rate: float
    commission_amount: float
    net_amount: float


class PayoutCreate(BaseModel):
    start_date: datetime
    end_date: datetime
    notes: Optional[str] = None


class PayoutStatusUpdate(BaseModel):
    status: PayoutStatus
    notes: Optional[str] = None


class VendorStatusUpdate(BaseModel):
    status: VendorStatus
    notes: Optional[str] = None
