"""Vendor return and vendor request schemas."""
from datetime import date, datetime
from typing import Optional, List, Any
from uuid import UUID

from pydantic import Field

from erp_receiving.schemas.base import BaseResponseSchema, BaseCreateSchema


class VendorReturnCreate(BaseCreateSchema):
    purchase_order_id: UUID
    grn_id: Optional[UUID] = None
    return_type: str = "other"
    items: List[dict[str, Any]] = Field(..., min_length=1)
    remarks: Optional[str] = None


class VendorReturnStatusUpdate(BaseCreateSchema):
    status: str
    vendor_response: Optional[str] = None
    resolution_type: Optional[str] = None
    resolution_amount: Optional[float] = Field(None, ge=0)
    resolution_notes: Optional[str] = None


class VendorRequestStatusUpdate(BaseCreateSchema):
    status: str


class VendorReturnResponse(BaseResponseSchema):
    id: UUID
    return_number: str
    purchase_order_id: UUID
    grn_id: Optional[UUID] = None
    vendor_id: UUID
    return_type: str
    return_date: date
    items: List[dict[str, Any]] = []
    total_shortage_value: float = 0
    status: str
    vendor_response: Optional[str] = None
    vendor_response_date: Optional[datetime] = None
    resolution_type: Optional[str] = None
    resolution_amount: Optional[float] = None
    resolution_date: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class VendorRequestResponse(BaseResponseSchema):
    id: UUID
    request_number: str
    purchase_order_id: UUID
    grn_id: Optional[UUID] = None
    vendor_id: UUID
    complaint_id: Optional[UUID] = None
    request_type: str
    items: List[dict[str, Any]] = []
    total_value: float = 0
    status: str
    sent_at: Optional[datetime] = None
    fulfillment_grn_id: Optional[UUID] = None
    fulfilled_at: Optional[datetime] = None
    created_at: datetime
