"""Purchase order API endpoints (receiving side)."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from erp_receiving.api.deps import DB, CurrentUser, require_department
from erp_receiving.schemas.base import PaginatedResponse
from erp_receiving.schemas.grn import GRNResponse
from erp_receiving.schemas.purchase_order import (
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    GRNRequestCreate,
    GRNRequestResponse,
)
from erp_receiving.services.grn_service import GRNService
from erp_receiving.services.purchase_order_service import PurchaseOrderService

router = APIRouter()


@router.post(
    "",
    response_model=PurchaseOrderResponse,
    status_code=201,
    dependencies=[Depends(require_department("procurement"))],
)
async def create_purchase_order(payload: PurchaseOrderCreate, db: DB, current_user: CurrentUser):
    return await PurchaseOrderService(db).create_purchase_order(
        payload.vendor_id,
        [item.model_dump(exclude_none=True) for item in payload.items],
        expected_delivery_date=payload.expected_delivery_date,
        internal_notes=payload.internal_notes,
        as_draft=payload.save_as_draft,
        user_id=current_user.id,
    )


@router.get("", response_model=PaginatedResponse[PurchaseOrderResponse])
async def list_purchase_orders(
    db: DB,
    current_user: CurrentUser,
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    vendor_id: Optional[UUID] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    return await PurchaseOrderService(db).list_purchase_orders(
        status=status,
        vendor_id=vendor_id,
        search=search,
        page=page,
        size=size,
    )


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(po_id: UUID, db: DB, current_user: CurrentUser):
    return await PurchaseOrderService(db).get_purchase_order(po_id)


@router.get("/{po_id}/grns", response_model=List[GRNResponse])
async def get_po_grn_chain(po_id: UUID, db: DB, current_user: CurrentUser):
    """GRNs of a PO in chain order (first GRN, then follow-ups)."""
    return await GRNService(db).get_po_grn_chain(po_id)


@router.post(
    "/{po_id}/request-grn",
    response_model=GRNRequestResponse,
    dependencies=[Depends(require_department("procurement"))],
)
async def request_grn(
    po_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[GRNRequestCreate] = None,
):
    result = await PurchaseOrderService(db).request_grn(
        po_id,
        notes=payload.notes if payload else None,
        user_id=current_user.id,
    )
    return {"message": "GRN requested", **result}
