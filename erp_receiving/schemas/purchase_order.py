"""Purchase order schemas."""
from datetime import date, datetime
from typing import Optional, List, Any
from uuid import UUID

from pydantic import Field

from erp_receiving.schemas.base import BaseResponseSchema, BaseCreateSchema
from erp_receiving.schemas.approval import ApprovalResponse


class POItemCreate(BaseCreateSchema):
    product_name: str = Field(..., min_length=1)
    product_code: Optional[str] = None
    quantity: float = Field(..., gt=0)
    rate: float = Field(0, ge=0)
    uom: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None


class PurchaseOrderCreate(BaseCreateSchema):
    vendor_id: UUID
    items: List[POItemCreate] = Field(..., min_length=1)
    expected_delivery_date: Optional[date] = None
    internal_notes: Optional[str] = None
    save_as_draft: bool = False


class GRNRequestCreate(BaseCreateSchema):
    notes: Optional[str] = None


class VendorBrief(BaseResponseSchema):
    id: UUID
    name: str
    vendor_code: Optional[str] = None


class PurchaseOrderResponse(BaseResponseSchema):
    id: UUID
    po_number: str
    po_date: date
    vendor_id: UUID
    vendor: Optional[VendorBrief] = None
    status: str
    items: List[dict[str, Any]] = []
    total_amount: float = 0
    expected_delivery_date: Optional[date] = None
    received_date: Optional[date] = None
    sent_at: Optional[datetime] = None
    grn_requested_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    internal_notes: Optional[str] = None
    created_at: datetime


class GRNRequestResponse(BaseResponseSchema):
    message: str
    purchase_order: PurchaseOrderResponse
    approval: ApprovalResponse
