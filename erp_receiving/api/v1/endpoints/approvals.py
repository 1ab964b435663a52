"""
Approval Gate API Endpoints.

Approve/reject are one-shot: a decided approval answers 409 AlreadyProcessed.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from erp_receiving.api.deps import DB, CurrentUser, require_department
from erp_receiving.schemas.approval import ApprovalDecision, ApprovalResponse, ApprovalDecisionResponse
from erp_receiving.schemas.base import PaginatedResponse
from erp_receiving.services.approval_service import ApprovalService

router = APIRouter()


@router.get("", response_model=PaginatedResponse[ApprovalResponse])
async def list_approvals(
    db: DB,
    current_user: CurrentUser,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    status: Optional[str] = Query(None, description="Comma-separated, e.g. pending,in_progress"),
    stage_key: Optional[str] = Query(None, description="Comma-separated stage keys"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    return await ApprovalService(db).list_approvals(
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        stage_key=stage_key,
        page=page,
        size=size,
    )


@router.get("/{approval_id}", response_model=ApprovalResponse)
async def get_approval(approval_id: UUID, db: DB, current_user: CurrentUser):
    return await ApprovalService(db).get_approval(approval_id)


@router.patch(
    "/{approval_id}/approve",
    response_model=ApprovalDecisionResponse,
    dependencies=[Depends(require_department("procurement", "inventory"))],
)
async def approve(
    approval_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[ApprovalDecision] = None,
):
    """Approve and apply the stage side effect (e.g. reopen PO for shortage)."""
    approval, side_effects = await ApprovalService(db).approve(
        approval_id,
        note=payload.notes if payload else None,
        user_id=current_user.id,
    )
    return {"message": "Approval approved", "approval": approval, "side_effects": side_effects}


@router.patch(
    "/{approval_id}/reject",
    response_model=ApprovalDecisionResponse,
    dependencies=[Depends(require_department("procurement", "inventory"))],
)
async def reject(
    approval_id: UUID,
    db: DB,
    current_user: CurrentUser,
    payload: Optional[ApprovalDecision] = None,
):
    approval = await ApprovalService(db).reject(
        approval_id,
        note=payload.notes if payload else None,
        user_id=current_user.id,
    )
    return {"message": "Approval rejected", "approval": approval}
