"""Vendor return and shortage request API endpoints."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from erp_receiving.api.deps import DB, CurrentUser, require_department
from erp_receiving.schemas.base import PaginatedResponse
from erp_receiving.schemas.vendor_return import (
    VendorReturnCreate,
    VendorReturnStatusUpdate,
    VendorRequestStatusUpdate,
    VendorReturnResponse,
    VendorRequestResponse,
)
from erp_receiving.services.vendor_return_service import VendorReturnService

router = APIRouter()


# ==================== Vendor Requests ====================
# Declared before /{return_id} so "requests" is not parsed as an id.

@router.get("/requests", response_model=List[VendorRequestResponse])
async def list_vendor_requests(
    db: DB,
    current_user: CurrentUser,
    purchase_order_id: Optional[UUID] = None,
    status: Optional[str] = None,
):
    return await VendorReturnService(db).list_requests(purchase_order_id=purchase_order_id, status=status)


@router.patch(
    "/requests/{request_id}/status",
    response_model=VendorRequestResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def update_vendor_request_status(
    request_id: UUID,
    payload: VendorRequestStatusUpdate,
    db: DB,
    current_user: CurrentUser,
):
    return await VendorReturnService(db).update_request_status(request_id, payload.status, user_id=current_user.id)


# ==================== Vendor Returns ====================

@router.get("", response_model=PaginatedResponse[VendorReturnResponse])
async def list_vendor_returns(
    db: DB,
    current_user: CurrentUser,
    status: Optional[str] = None,
    vendor_id: Optional[UUID] = None,
    return_type: Optional[str] = None,
    purchase_order_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    return await VendorReturnService(db).list_returns(
        status=status,
        vendor_id=vendor_id,
        return_type=return_type,
        purchase_order_id=purchase_order_id,
        page=page,
        size=size,
    )


@router.get("/{return_id}", response_model=VendorReturnResponse)
async def get_vendor_return(return_id: UUID, db: DB, current_user: CurrentUser):
    return await VendorReturnService(db).get_return(return_id)


@router.post(
    "",
    response_model=VendorReturnResponse,
    status_code=201,
    dependencies=[Depends(require_department("procurement", "inventory"))],
)
async def create_vendor_return(payload: VendorReturnCreate, db: DB, current_user: CurrentUser):
    """Raise a return by hand (quality issue, wrong item, damage...)."""
    return await VendorReturnService(db).create_manual_return(
        payload.purchase_order_id,
        payload.items,
        return_type=payload.return_type,
        grn_id=payload.grn_id,
        remarks=payload.remarks,
        user_id=current_user.id,
    )


@router.patch(
    "/{return_id}/status",
    response_model=VendorReturnResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def update_vendor_return_status(
    return_id: UUID,
    payload: VendorReturnStatusUpdate,
    db: DB,
    current_user: CurrentUser,
):
    return await VendorReturnService(db).update_status(
        return_id,
        payload.status,
        vendor_response=payload.vendor_response,
        resolution_type=payload.resolution_type,
        resolution_amount=payload.resolution_amount,
        resolution_notes=payload.resolution_notes,
        user_id=current_user.id,
    )
