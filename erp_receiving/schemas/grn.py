"""GRN request/response schemas."""
from datetime import date, datetime
from typing import Optional, List, Any, Literal
from uuid import UUID

from pydantic import Field, field_validator

from erp_receiving.schemas.base import BaseResponseSchema, BaseCreateSchema
from erp_receiving.schemas.vendor_return import VendorReturnResponse


class ReceivedItem(BaseCreateSchema):
    """Quantities received for one order line, referenced by position."""
    item_index: int = Field(..., ge=0)
    received_qty: float = Field(..., ge=0)
    invoiced_qty: Optional[float] = Field(None, ge=0)
    remarks: Optional[str] = None


class GRNCreateFromPO(BaseCreateSchema):
    items_received: List[ReceivedItem] = Field(..., min_length=1)
    received_date: Optional[date] = None
    supplier_invoice_number: Optional[str] = None
    supplier_invoice_date: Optional[date] = None
    challan_number: Optional[str] = None
    challan_date: Optional[date] = None
    remarks: Optional[str] = None
    save_as_draft: bool = False


class GRNUpdateReceived(BaseCreateSchema):
    items_received: List[ReceivedItem] = Field(..., min_length=1)


class GRNVerify(BaseCreateSchema):
    verification_status: Literal["verified", "discrepancy"]
    verification_notes: Optional[str] = None
    discrepancy_details: Optional[dict] = None


class GRNDiscrepancyDecision(BaseCreateSchema):
    decision: Literal["approve", "reject"]
    approval_notes: Optional[str] = None


class GRNAddToInventory(BaseCreateSchema):
    location: Optional[str] = None

    @field_validator("location")
    @classmethod
    def strip_location(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() or None if v else None


class GRNVendorRevert(BaseCreateSchema):
    reason: str = Field(..., min_length=1)
    items: Optional[List[dict]] = None
    notes: Optional[str] = None


class GRNHandleExcess(BaseCreateSchema):
    action: Literal["auto_reject", "approve_excess"]
    notes: Optional[str] = None


class GRNResponse(BaseResponseSchema):
    id: UUID
    grn_number: str
    received_date: date
    purchase_order_id: UUID
    vendor_id: UUID
    supplier_invoice_number: Optional[str] = None
    supplier_invoice_date: Optional[date] = None
    challan_number: Optional[str] = None
    challan_date: Optional[date] = None
    items_received: List[dict[str, Any]] = []

    total_ordered_quantity: float = 0
    total_received_quantity: float = 0
    total_shortage_quantity: float = 0
    total_overage_quantity: float = 0
    total_received_value: float = 0

    status: str
    verification_status: str
    verified_by: Optional[UUID] = None
    verification_date: Optional[datetime] = None
    verification_notes: Optional[str] = None
    discrepancy_details: Optional[dict] = None
    discrepancy_approved_by: Optional[UUID] = None
    discrepancy_approval_date: Optional[datetime] = None
    discrepancy_approval_notes: Optional[str] = None

    inventory_added: bool = False
    inventory_added_date: Optional[datetime] = None
    inventory_location: Optional[str] = None

    grn_sequence: int = 1
    is_first_grn: bool = True
    original_grn_id: Optional[UUID] = None
    vendor_request_id: Optional[UUID] = None

    vendor_revert_requested: bool = False
    vendor_revert_reason: Optional[str] = None
    vendor_revert_items: Optional[List[dict]] = None
    vendor_revert_requested_date: Optional[datetime] = None

    excess_action: Optional[str] = None
    excess_notes: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class GRNCreateResponse(BaseResponseSchema):
    message: str
    grn: GRNResponse
    vendor_return: Optional[VendorReturnResponse] = None
    has_shortages: bool
    has_overages: bool
    has_invoice_mismatch: bool
    complaint_ids: List[UUID] = []


class GRNStepResponse(BaseResponseSchema):
    message: str
    grn: GRNResponse
    next_step: str


class InventoryItemResponse(BaseResponseSchema):
    id: UUID
    barcode: str
    product_id: UUID
    item_index: int
    quantity: float
    uom: str
    unit_cost: float
    total_cost: float
    location: str


class InventoryMovementResponse(BaseResponseSchema):
    id: UUID
    inventory_id: UUID
    movement_type: str
    quantity: float
    reference_number: Optional[str] = None


class GRNInventoryResponse(BaseResponseSchema):
    message: str
    grn: GRNResponse
    inventory_items: List[InventoryItemResponse]
    movements: List[InventoryMovementResponse]


class GRNExcessResponse(BaseResponseSchema):
    message: str
    grn: GRNResponse
    vendor_return: Optional[VendorReturnResponse] = None


class GRNPreviewResponse(BaseResponseSchema):
    """Prefilled GRN form: lines to receive with the expected quantities."""
    purchase_order_id: UUID
    po_number: str
    po_status: str
    vendor_id: UUID
    vendor_name: Optional[str] = None
    is_first_grn: bool
    grn_sequence: int
    source: Literal["purchase_order", "vendor_request", "vendor_return"]
    vendor_request_id: Optional[UUID] = None
    items: List[dict[str, Any]]


class MismatchItem(BaseCreateSchema):
    item_index: int = Field(..., ge=0)
    received_qty: Optional[float] = Field(None, ge=0)
    shortage_reason: Optional[str] = None
    action_required: Optional[str] = None
    notes: Optional[str] = None


class GRNMismatchRequestCreate(BaseCreateSchema):
    mismatch_items: List[MismatchItem] = Field(..., min_length=1)
    requested_action: Literal[
        "accept_shortage",
        "return_overage",
        "wait_for_remaining",
        "accept_and_adjust",
        "request_replacement",
        "cancel_remaining",
        "other",
    ]
    requested_action_notes: Optional[str] = None
    request_description: Optional[str] = None


class GRNMismatchReview(BaseCreateSchema):
    approval_notes: Optional[str] = None


class GRNMismatchRequestResponse(BaseResponseSchema):
    id: UUID
    request_number: str
    grn_id: UUID
    purchase_order_id: UUID
    grn_number: str
    po_number: str
    vendor_name: Optional[str] = None
    mismatch_type: str
    mismatch_items: List[dict[str, Any]] = []
    total_shortage_items: int = 0
    total_overage_items: int = 0
    total_shortage_value: float = 0
    total_overage_value: float = 0
    request_description: Optional[str] = None
    requested_action: str
    requested_action_notes: Optional[str] = None
    status: str
    approval_notes: Optional[str] = None
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class GRNDeleteResponse(BaseResponseSchema):
    message: str
    grn_number: str
    purchase_order_status: str
    canceled_approval_ids: List[UUID] = []
    removed_returns: List[str] = []
    closed_returns: List[str] = []
    cancelled_requests: List[str] = []
