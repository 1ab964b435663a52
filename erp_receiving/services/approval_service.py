"""
Approval Gate Service.

Approvals are generic records keyed by (entity_type, entity_id, stage_key).
Deciding one is a terminal, one-shot transition:

    pending | in_progress  ->  approved | rejected

What approving does to the gated entity is looked up in STAGE_HANDLERS by
(entity_type, stage_key). New stages register a handler with
@stage_handler; approve()/reject() themselves never change.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, Awaitable, Tuple, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import NotFoundError, AlreadyProcessedError
from erp_receiving.models.approval import (
    Approval,
    ApprovalEntityType,
    ApprovalStageKey,
    ApprovalStatus,
)
from erp_receiving.models.notifications import NotificationType
from erp_receiving.models.purchase import PurchaseOrder, POStatus
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services.po_state_machine import transition_po
from erp_receiving.services.vendor_return_service import VendorReturnService


logger = logging.getLogger(__name__)


StageKey = Tuple[str, str]
StageHandler = Callable[["ApprovalService", Approval, Optional[uuid.UUID]], Awaitable[Dict[str, Any]]]

STAGE_HANDLERS: Dict[StageKey, StageHandler] = {}

STAGE_LABELS = {
    ApprovalStageKey.GRN_SHORTAGE_COMPLAINT.value: "GRN Shortage Complaint",
    ApprovalStageKey.GRN_OVERAGE_COMPLAINT.value: "GRN Overage Complaint",
    ApprovalStageKey.GRN_INVOICE_MISMATCH.value: "GRN Invoice Mismatch",
    ApprovalStageKey.GRN_CREATION_REQUEST.value: "GRN Creation Request",
}


def stage_handler(entity_type: ApprovalEntityType, stage_key: ApprovalStageKey):
    """Register the side effect run when an approval of this kind is approved."""
    def decorator(func: StageHandler) -> StageHandler:
        STAGE_HANDLERS[(entity_type.value, stage_key.value)] = func
        return func
    return decorator


def get_stage_handler(entity_type: str, stage_key: str) -> Optional[StageHandler]:
    return STAGE_HANDLERS.get((entity_type, stage_key))


class ApprovalService:
    """Service for creating and deciding approvals."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.notifications = NotificationService(db)

    async def create_approval(
        self,
        entity_type: ApprovalEntityType,
        entity_id: uuid.UUID,
        stage_key: ApprovalStageKey,
        metadata: Optional[Dict[str, Any]] = None,
        assigned_department: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
        stage_label: Optional[str] = None,
    ) -> Approval:
        """
        Open a pending approval.

        Args:
            entity_type: What is gated (purchase_order, grn_creation)
            entity_id: ID of the gated entity
            stage_key: Why it is gated
            metadata: Payload the stage handler needs (items_affected, grn_id, ...)
            assigned_department: Department expected to decide
            created_by: User who raised it
        """
        approval = Approval(
            entity_type=entity_type.value,
            entity_id=entity_id,
            stage_key=stage_key.value,
            stage_label=stage_label or STAGE_LABELS.get(stage_key.value),
            status=ApprovalStatus.PENDING.value,
            assigned_department=assigned_department,
            approval_metadata=metadata or {},
            created_by=created_by,
        )
        self.db.add(approval)
        await flush_or_raise(self.db, "approval creation")
        logger.info(f"Approval {approval.id} opened: {entity_type.value}/{stage_key.value} for {entity_id}")
        return approval

    async def get_approval(self, approval_id: uuid.UUID) -> Approval:
        approval = await self.db.get(Approval, approval_id)
        if not approval:
            raise NotFoundError("Approval", approval_id)
        return approval

    async def list_approvals(
        self,
        entity_type: Optional[str] = None,
        status: Optional[str] = None,
        stage_key: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        """List approvals. ``status`` and ``stage_key`` accept comma-separated values."""
        query = select(Approval)
        count_query = select(func.count(Approval.id))

        filters = []
        if entity_type:
            filters.append(Approval.entity_type == entity_type)
        if entity_id:
            filters.append(Approval.entity_id == entity_id)
        if status:
            filters.append(Approval.status.in_(_split_csv(status)))
        if stage_key:
            filters.append(Approval.stage_key.in_(_split_csv(stage_key)))

        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(Approval.created_at.desc()).offset((page - 1) * size).limit(size)
        items = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def approve(
        self,
        approval_id: uuid.UUID,
        note: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[Approval, Dict[str, Any]]:
        """
        Approve and run the registered side effect.

        Returns:
            (approval, side_effects) where side_effects describes what the
            stage handler changed (empty for stages without one)

        Raises:
            NotFoundError: approval missing
            AlreadyProcessedError: approval already decided
        """
        approval = await self.get_approval(approval_id)
        self._ensure_open(approval)

        self._decide(approval, ApprovalStatus.APPROVED, note, user_id)

        side_effects: Dict[str, Any] = {}
        handler = get_stage_handler(approval.entity_type, approval.stage_key)
        if handler:
            side_effects = await handler(self, approval, user_id)
        else:
            logger.debug(f"No stage handler for {approval.entity_type}/{approval.stage_key}")

        await flush_or_raise(self.db, "approval decision")
        self._notify_decision(approval, user_id)
        logger.info(f"Approval {approval.id} ({approval.stage_key}) approved by {user_id}")
        return approval, side_effects

    async def reject(
        self,
        approval_id: uuid.UUID,
        note: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Approval:
        """Reject. Records the decision only; the gated entity is untouched."""
        approval = await self.get_approval(approval_id)
        self._ensure_open(approval)

        self._decide(approval, ApprovalStatus.REJECTED, note or "Rejected", user_id)
        await flush_or_raise(self.db, "approval decision")
        self._notify_decision(approval, user_id)
        logger.info(f"Approval {approval.id} ({approval.stage_key}) rejected by {user_id}")
        return approval

    async def cancel_for_grn(
        self,
        po_id: uuid.UUID,
        grn_id: uuid.UUID,
        note: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> List[Approval]:
        """Cancel the still-open complaints raised from one GRN of a PO."""
        result = await self.db.execute(
            select(Approval).where(
                Approval.entity_type == ApprovalEntityType.PURCHASE_ORDER.value,
                Approval.entity_id == po_id,
                Approval.status.in_(ApprovalStatus.open_statuses()),
            )
        )
        canceled = [
            approval for approval in result.scalars().all()
            if (approval.approval_metadata or {}).get("grn_id") == str(grn_id)
        ]
        for approval in canceled:
            self._decide(approval, ApprovalStatus.CANCELED, note or "GRN deleted", user_id)
            logger.info(f"Approval {approval.id} ({approval.stage_key}) canceled: GRN {grn_id} deleted")

        await flush_or_raise(self.db, "approval cancellation")
        return canceled

    def _ensure_open(self, approval: Approval) -> None:
        if not approval.is_open:
            raise AlreadyProcessedError(
                f"Approval already {approval.status}",
                current_state=approval.status,
                expected_state=sorted(ApprovalStatus.open_statuses()),
            )

    def _decide(
        self,
        approval: Approval,
        status: ApprovalStatus,
        note: Optional[str],
        user_id: Optional[uuid.UUID],
    ) -> None:
        approval.status = status.value
        approval.reviewer_id = user_id
        approval.decision_note = note
        approval.decided_at = datetime.now(timezone.utc)

    def _notify_decision(self, approval: Approval, user_id: Optional[uuid.UUID]) -> None:
        self.notifications.notify(
            NotificationType.APPROVAL_DECIDED,
            title=f"{approval.stage_label or approval.stage_key} {approval.status}",
            message=approval.decision_note or f"Approval {approval.status}",
            user_id=approval.created_by,
            department=None if approval.created_by else approval.assigned_department,
            entity_type=approval.entity_type,
            entity_id=approval.entity_id,
            actor_id=user_id,
            data={"approval_id": approval.id, "stage_key": approval.stage_key},
        )

    async def _get_po(self, po_id: uuid.UUID) -> PurchaseOrder:
        po = await self.db.get(PurchaseOrder, po_id)
        if not po:
            raise NotFoundError("PO", po_id)
        return po


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


# ==================== STAGE HANDLERS ====================

@stage_handler(ApprovalEntityType.PURCHASE_ORDER, ApprovalStageKey.GRN_SHORTAGE_COMPLAINT)
async def _reopen_po_for_shortage(
    service: ApprovalService,
    approval: Approval,
    user_id: Optional[uuid.UUID],
) -> Dict[str, Any]:
    """Reopen the PO and ask the vendor to ship the short quantities."""
    po = await service._get_po(approval.entity_id)
    transition_po(po, POStatus.REOPENED, user_id)

    request = await VendorReturnService(service.db).create_vendor_request(po, approval, user_id)
    return {
        "purchase_order_status": po.status,
        "vendor_request_id": request.id if request else None,
        "vendor_request_number": request.request_number if request else None,
    }


@stage_handler(ApprovalEntityType.GRN_CREATION, ApprovalStageKey.GRN_CREATION_REQUEST)
async def _approve_grn_request(
    service: ApprovalService,
    approval: Approval,
    user_id: Optional[uuid.UUID],
) -> Dict[str, Any]:
    po = await service._get_po(approval.entity_id)
    transition_po(po, POStatus.GRN_APPROVED, user_id)
    return {"purchase_order_status": po.status}


@stage_handler(ApprovalEntityType.PURCHASE_ORDER, ApprovalStageKey.GRN_OVERAGE_COMPLAINT)
@stage_handler(ApprovalEntityType.PURCHASE_ORDER, ApprovalStageKey.GRN_INVOICE_MISMATCH)
async def _record_only(
    service: ApprovalService,
    approval: Approval,
    user_id: Optional[uuid.UUID],
) -> Dict[str, Any]:
    # Settled through handle_excess / vendor returns, not by the approval.
    return {}

