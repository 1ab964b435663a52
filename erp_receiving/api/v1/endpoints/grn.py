"""Goods Receipt Note (GRN) API endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from erp_receiving.api.deps import DB, CurrentUser, require_department
from erp_receiving.schemas.base import PaginatedResponse
from erp_receiving.schemas.grn import (
    GRNCreateFromPO,
    GRNUpdateReceived,
    GRNVerify,
    GRNDiscrepancyDecision,
    GRNAddToInventory,
    GRNVendorRevert,
    GRNHandleExcess,
    GRNResponse,
    GRNCreateResponse,
    GRNStepResponse,
    GRNInventoryResponse,
    GRNExcessResponse,
    GRNPreviewResponse,
    GRNMismatchRequestCreate,
    GRNMismatchReview,
    GRNMismatchRequestResponse,
    GRNDeleteResponse,
)
from erp_receiving.services.grn_service import GRNService
from erp_receiving.services.inventory_service import InventoryService

router = APIRouter()


def _created_message(result: dict) -> str:
    grn = result["grn"]
    if grn.status == "draft":
        return f"GRN {grn.grn_number} saved as draft"
    if result["has_shortages"]:
        return f"GRN {grn.grn_number} created with shortages; vendor return raised"
    return f"GRN {grn.grn_number} created and awaiting verification"


@router.get("", response_model=PaginatedResponse[GRNResponse])
async def list_grns(
    db: DB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    verification_status: Optional[str] = None,
    purchase_order_id: Optional[UUID] = None,
    vendor_id: Optional[UUID] = None,
    search: Optional[str] = None,
):
    """List GRNs with filtering and pagination."""
    return await GRNService(db).list_grns(
        status=status,
        verification_status=verification_status,
        purchase_order_id=purchase_order_id,
        vendor_id=vendor_id,
        search=search,
        page=page,
        size=size,
    )


@router.get(
    "/create/{po_id}",
    response_model=GRNPreviewResponse,
    dependencies=[Depends(require_department("inventory", "procurement"))],
)
async def preview_grn_from_po(po_id: UUID, db: DB, current_user: CurrentUser):
    """Lines to receive for the next GRN of a PO, prefilled with expected quantities."""
    return await GRNService(db).preview_from_po(po_id)


@router.get("/mismatch-requests", response_model=PaginatedResponse[GRNMismatchRequestResponse])
async def list_mismatch_requests(
    db: DB,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    grn_id: Optional[UUID] = None,
    purchase_order_id: Optional[UUID] = None,
):
    return await GRNService(db).list_mismatch_requests(
        status=status,
        grn_id=grn_id,
        purchase_order_id=purchase_order_id,
        page=page,
        size=size,
    )


@router.get("/mismatch-requests/{request_id}", response_model=GRNMismatchRequestResponse)
async def get_mismatch_request(request_id: UUID, db: DB, current_user: CurrentUser):
    return await GRNService(db).get_mismatch_request(request_id)


@router.post(
    "/mismatch-requests/{request_id}/approve",
    response_model=GRNMismatchRequestResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def approve_mismatch_request(
    request_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[GRNMismatchReview] = None,
):
    return await GRNService(db).review_mismatch_request(
        request_id,
        "approve",
        notes=payload.approval_notes if payload else None,
        user_id=current_user.id,
    )


@router.post(
    "/mismatch-requests/{request_id}/reject",
    response_model=GRNMismatchRequestResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def reject_mismatch_request(
    request_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[GRNMismatchReview] = None,
):
    return await GRNService(db).review_mismatch_request(
        request_id,
        "reject",
        notes=payload.approval_notes if payload else None,
        user_id=current_user.id,
    )


@router.get("/{grn_id}", response_model=GRNResponse)
async def get_grn(grn_id: UUID, db: DB, current_user: CurrentUser):
    return await GRNService(db).get_grn(grn_id)


@router.post(
    "/from-po/{po_id}",
    response_model=GRNCreateResponse,
    status_code=201,
    dependencies=[Depends(require_department("inventory", "procurement"))],
)
async def create_grn_from_po(
    po_id: UUID,
    payload: GRNCreateFromPO,
    db: DB,
    current_user: CurrentUser,
):
    """
    Create a GRN from a purchase order.

    Shortages raise a vendor return and a shortage complaint approval in the
    same transaction.
    """
    result = await GRNService(db).create_from_po(
        po_id,
        [item.model_dump() for item in payload.items_received],
        received_date=payload.received_date,
        supplier_invoice_number=payload.supplier_invoice_number,
        supplier_invoice_date=payload.supplier_invoice_date,
        challan_number=payload.challan_number,
        challan_date=payload.challan_date,
        remarks=payload.remarks,
        save_as_draft=payload.save_as_draft,
        user_id=current_user.id,
    )
    return {"message": _created_message(result), **result}


@router.put(
    "/{grn_id}/update-received",
    response_model=GRNCreateResponse,
    dependencies=[Depends(require_department("inventory", "procurement"))],
)
async def update_received(
    grn_id: UUID,
    payload: GRNUpdateReceived,
    db: DB,
    current_user: CurrentUser,
):
    """Update quantities on a draft GRN and submit it."""
    result = await GRNService(db).update_received(
        grn_id,
        [item.model_dump() for item in payload.items_received],
        user_id=current_user.id,
    )
    return {"message": _created_message(result), **result}


@router.post(
    "/{grn_id}/verify",
    response_model=GRNStepResponse,
    dependencies=[Depends(require_department("inventory"))],
)
async def verify_grn(
    grn_id: UUID,
    payload: GRNVerify,
    db: DB,
    current_user: CurrentUser,
):
    result = await GRNService(db).verify(
        grn_id,
        payload.verification_status,
        notes=payload.verification_notes,
        discrepancy_details=payload.discrepancy_details,
        user_id=current_user.id,
    )
    return {"message": f"GRN {payload.verification_status}", **result}


@router.post(
    "/{grn_id}/approve-discrepancy",
    response_model=GRNStepResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def approve_discrepancy(
    grn_id: UUID,
    payload: GRNDiscrepancyDecision,
    db: DB,
    current_user: CurrentUser,
):
    result = await GRNService(db).approve_discrepancy(
        grn_id,
        payload.decision,
        notes=payload.approval_notes,
        user_id=current_user.id,
    )
    return {"message": f"Discrepancy {result['grn'].verification_status}", **result}


@router.post(
    "/{grn_id}/add-to-inventory",
    response_model=GRNInventoryResponse,
    dependencies=[Depends(require_department("inventory"))],
)
async def add_to_inventory(
    grn_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[GRNAddToInventory] = None,
):
    """Post a verified or discrepancy-approved GRN to stock."""
    result = await InventoryService(db).add_to_inventory(
        grn_id,
        location=payload.location if payload else None,
        user_id=current_user.id,
    )
    return {
        "message": f"{len(result['inventory_items'])} item(s) added to inventory",
        **result,
    }


@router.post(
    "/{grn_id}/request-vendor-revert",
    response_model=GRNResponse,
    dependencies=[Depends(require_department("inventory", "procurement"))],
)
async def request_vendor_revert(
    grn_id: UUID,
    payload: GRNVendorRevert,
    db: DB,
    current_user: CurrentUser,
):
    return await GRNService(db).request_vendor_revert(
        grn_id,
        payload.reason,
        items=payload.items,
        notes=payload.notes,
        user_id=current_user.id,
    )


@router.post(
    "/{grn_id}/handle-excess",
    response_model=GRNExcessResponse,
    dependencies=[Depends(require_department("inventory", "procurement"))],
)
async def handle_excess(
    grn_id: UUID,
    payload: GRNHandleExcess,
    db: DB,
    current_user: CurrentUser,
):
    result = await GRNService(db).handle_excess(
        grn_id,
        payload.action,
        notes=payload.notes,
        user_id=current_user.id,
    )
    return {"message": f"Excess handled: {payload.action}", **result}


@router.delete(
    "/{grn_id}",
    response_model=GRNDeleteResponse,
    dependencies=[Depends(require_department("admin"))],
)
async def delete_grn(grn_id: UUID, db: DB, current_user: CurrentUser):
    """Delete an unposted GRN and undo what its receipt set off."""
    result = await GRNService(db).delete_grn(grn_id, user_id=current_user.id)
    return {"message": f"GRN {result['grn_number']} deleted", **result}


@router.post(
    "/{grn_id}/create-mismatch-request",
    response_model=GRNMismatchRequestResponse,
    status_code=201,
    dependencies=[Depends(require_department("inventory"))],
)
async def create_mismatch_request(
    grn_id: UUID,
    payload: GRNMismatchRequestCreate,
    db: DB,
    current_user: CurrentUser,
):
    """Raise a shortage/overage claim on a GRN for procurement to review."""
    return await GRNService(db).create_mismatch_request(
        grn_id,
        [item.model_dump() for item in payload.mismatch_items],
        payload.requested_action,
        requested_action_notes=payload.requested_action_notes,
        request_description=payload.request_description,
        user_id=current_user.id,
    )
