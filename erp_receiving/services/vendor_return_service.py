"""Vendor Return / Shortage Request service.

Raises claims against vendors from GRN discrepancies:
- VendorReturn: shortage detected at receipt, excess rejected at receipt,
  or a manually raised quality/wrong-item claim
- VendorRequest: request to ship short quantities, raised when a shortage
  complaint is approved

Line items are copied into the claim; later GRN edits do not change it.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import ValidationError, NotFoundError, StateConflictError
from erp_receiving.models.approval import Approval
from erp_receiving.models.document_sequence import DocumentPrefix
from erp_receiving.models.notifications import NotificationType, NotificationPriority
from erp_receiving.models.purchase import PurchaseOrder, GoodsReceiptNote
from erp_receiving.models.vendor_return import (
    VendorReturn,
    VendorRequest,
    ReturnType,
    VendorReturnStatus,
    ResolutionType,
    VendorRequestType,
    VendorRequestStatus,
)
from erp_receiving.services.document_sequence_service import DocumentSequenceService
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services.shortage import (
    compute_shortage_return,
    compute_excess_return,
    compute_manual_return_total,
)


logger = logging.getLogger(__name__)


class VendorReturnService:
    """Service for vendor returns and shortage requests."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sequences = DocumentSequenceService(db)
        self.notifications = NotificationService(db)

    # ==================== AUTOMATIC CLAIMS ====================

    async def create_shortage_return(
        self,
        grn: GoodsReceiptNote,
        po: PurchaseOrder,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[VendorReturn]:
        """
        Raise the shortage claim for a GRN.

        Returns None when the GRN has no shortage lines or a shortage return
        already exists for it.
        """
        claim = compute_shortage_return(grn.items_received)
        if not claim:
            logger.debug(f"No shortage lines on {grn.grn_number}, no vendor return raised")
            return None

        existing = await self._get_return_for_grn(grn.id, ReturnType.SHORTAGE)
        if existing:
            logger.debug(f"Shortage return {existing.return_number} already exists for {grn.grn_number}")
            return None

        vendor_return = VendorReturn(
            return_number=await self.sequences.get_next_number(DocumentPrefix.VR.value),
            purchase_order_id=po.id,
            grn_id=grn.id,
            vendor_id=po.vendor_id,
            return_type=ReturnType.SHORTAGE.value,
            items=claim.items,
            total_shortage_value=claim.total_value,
            status=VendorReturnStatus.PENDING.value,
            remarks=f"Auto-generated from {grn.grn_number}: shortage detected at receipt",
            attachments=[],
            created_by=user_id,
        )
        self.db.add(vendor_return)
        await flush_or_raise(self.db, "vendor return creation")

        self.notifications.notify(
            NotificationType.VENDOR_SHORTAGE,
            title=f"Shortage claim {vendor_return.return_number}",
            message=(
                f"{len(claim.items)} item(s) short on {grn.grn_number} for PO {po.po_number}. "
                f"Claim value: {claim.total_value}"
            ),
            department="procurement",
            priority=NotificationPriority.HIGH,
            entity_type="vendor_return",
            entity_id=vendor_return.id,
            actor_id=user_id,
            data={"grn_id": grn.id, "purchase_order_id": po.id, "return_number": vendor_return.return_number},
        )

        logger.info(
            f"Vendor return {vendor_return.return_number} raised for {grn.grn_number} "
            f"({len(claim.items)} lines, value {claim.total_value})"
        )
        return vendor_return

    async def create_excess_return(
        self,
        grn: GoodsReceiptNote,
        po: PurchaseOrder,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[VendorReturn]:
        """Raise a return for quantities received above order/invoice."""
        claim = compute_excess_return(grn.items_received)
        if not claim:
            return None

        vendor_return = VendorReturn(
            return_number=await self.sequences.get_next_number(DocumentPrefix.VR.value),
            purchase_order_id=po.id,
            grn_id=grn.id,
            vendor_id=po.vendor_id,
            return_type=ReturnType.EXCESS.value,
            items=claim.items,
            total_shortage_value=claim.total_value,
            status=VendorReturnStatus.PENDING.value,
            remarks=notes or f"Excess quantity rejected on {grn.grn_number}",
            attachments=[],
            created_by=user_id,
        )
        self.db.add(vendor_return)
        await flush_or_raise(self.db, "excess return creation")

        self.notifications.notify(
            NotificationType.VENDOR_OVERAGE,
            title=f"Excess return {vendor_return.return_number}",
            message=f"Excess quantities on {grn.grn_number} rejected and returned to vendor",
            department="procurement",
            entity_type="vendor_return",
            entity_id=vendor_return.id,
            actor_id=user_id,
            data={"grn_id": grn.id, "purchase_order_id": po.id},
        )
        logger.info(f"Excess return {vendor_return.return_number} raised for {grn.grn_number}")
        return vendor_return

    async def create_vendor_request(
        self,
        po: PurchaseOrder,
        approval: Approval,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[VendorRequest]:
        """
        Raise the shortage request from an approved shortage complaint.

        Uses the same derivation as create_shortage_return, applied to
        ``approval.approval_metadata["items_affected"]``.
        """
        metadata = approval.approval_metadata or {}
        claim = compute_shortage_return(metadata.get("items_affected") or [])
        if not claim:
            logger.debug(f"Approval {approval.id} carries no shortage lines, no vendor request raised")
            return None

        grn_id = metadata.get("grn_id")
        now = datetime.now(timezone.utc)
        request = VendorRequest(
            request_number=await self.sequences.get_next_number(DocumentPrefix.SR.value),
            purchase_order_id=po.id,
            grn_id=uuid.UUID(str(grn_id)) if grn_id else None,
            vendor_id=po.vendor_id,
            complaint_id=approval.id,
            request_type=VendorRequestType.SHORTAGE.value,
            items=claim.items,
            total_value=claim.total_value,
            status=VendorRequestStatus.SENT.value,
            sent_at=now,
            created_by=user_id,
        )
        self.db.add(request)
        await flush_or_raise(self.db, "vendor request creation")

        self.notifications.notify(
            NotificationType.VENDOR_REQUEST_SENT,
            title=f"Shortage request {request.request_number} sent",
            message=f"Vendor asked to deliver short quantities for PO {po.po_number}",
            department="inventory",
            entity_type="vendor_request",
            entity_id=request.id,
            actor_id=user_id,
            data={"purchase_order_id": po.id, "approval_id": approval.id},
        )
        logger.info(f"Vendor request {request.request_number} sent for PO {po.po_number}")
        return request

    # ==================== LOOKUPS ====================

    async def _get_return_for_grn(self, grn_id: uuid.UUID, return_type: ReturnType) -> Optional[VendorReturn]:
        result = await self.db.execute(
            select(VendorReturn).where(
                VendorReturn.grn_id == grn_id,
                VendorReturn.return_type == return_type.value,
            )
        )
        return result.scalars().first()

    async def get_open_shortage_request(self, po_id: uuid.UUID) -> Optional[VendorRequest]:
        """Latest shortage request for a PO still awaiting delivery."""
        result = await self.db.execute(
            select(VendorRequest)
            .where(
                VendorRequest.purchase_order_id == po_id,
                VendorRequest.request_type == VendorRequestType.SHORTAGE.value,
                VendorRequest.status.in_(VendorRequestStatus.open_statuses()),
            )
            .order_by(VendorRequest.created_at.desc())
        )
        return result.scalars().first()

    async def get_pending_shortage_return(self, po_id: uuid.UUID) -> Optional[VendorReturn]:
        """Latest pending shortage return for a PO."""
        result = await self.db.execute(
            select(VendorReturn)
            .where(
                VendorReturn.purchase_order_id == po_id,
                VendorReturn.return_type == ReturnType.SHORTAGE.value,
                VendorReturn.status == VendorReturnStatus.PENDING.value,
            )
            .order_by(VendorReturn.created_at.desc())
        )
        return result.scalars().first()

    async def list_returns(
        self,
        status: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
        return_type: Optional[str] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        query = select(VendorReturn)
        count_query = select(func.count(VendorReturn.id))

        filters = []
        if status:
            filters.append(VendorReturn.status == status)
        if vendor_id:
            filters.append(VendorReturn.vendor_id == vendor_id)
        if return_type:
            filters.append(VendorReturn.return_type == return_type)
        if purchase_order_id:
            filters.append(VendorReturn.purchase_order_id == purchase_order_id)

        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(VendorReturn.created_at.desc()).offset((page - 1) * size).limit(size)
        items = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def get_return(self, return_id: uuid.UUID) -> VendorReturn:
        vendor_return = await self.db.get(VendorReturn, return_id)
        if not vendor_return:
            raise NotFoundError("Vendor Return", return_id)
        return vendor_return

    # ==================== STATUS UPDATES ====================

    async def update_status(
        self,
        return_id: uuid.UUID,
        status: str,
        vendor_response: Optional[str] = None,
        resolution_type: Optional[str] = None,
        resolution_amount: Optional[Any] = None,
        resolution_notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> VendorReturn:
        """
        Record vendor response / resolution on a return.

        Raises:
            ValidationError: unknown status or resolution type
            NotFoundError: return missing
            StateConflictError: return already closed
        """
        valid_statuses = [s.value for s in VendorReturnStatus]
        if status not in valid_statuses:
            raise ValidationError(
                f"Invalid status '{status}'. Valid statuses: {', '.join(valid_statuses)}"
            )
        if resolution_type and resolution_type not in [r.value for r in ResolutionType]:
            raise ValidationError(f"Invalid resolution type '{resolution_type}'")

        vendor_return = await self.get_return(return_id)
        if vendor_return.status == VendorReturnStatus.CLOSED.value:
            raise StateConflictError(
                f"Vendor return {vendor_return.return_number} is closed",
                current_state=vendor_return.status,
                expected_state=[s for s in valid_statuses if s != VendorReturnStatus.CLOSED.value],
            )

        now = datetime.now(timezone.utc)
        previous_status = vendor_return.status
        vendor_return.status = status

        if vendor_response:
            vendor_return.vendor_response = vendor_response
            vendor_return.vendor_response_date = now

        if status == VendorReturnStatus.RESOLVED.value:
            vendor_return.resolution_type = resolution_type or vendor_return.resolution_type
            vendor_return.resolution_amount = (
                resolution_amount if resolution_amount is not None else vendor_return.total_shortage_value
            )
            vendor_return.resolution_notes = resolution_notes
            vendor_return.resolution_date = now
            vendor_return.approved_by = user_id

        await flush_or_raise(self.db, "vendor return update")

        self.notifications.notify(
            NotificationType.VENDOR_RETURN_UPDATED,
            title=f"Vendor return {vendor_return.return_number} {status}",
            message=f"Status changed from {previous_status} to {status}",
            department="procurement",
            entity_type="vendor_return",
            entity_id=vendor_return.id,
            actor_id=user_id,
            data={"previous_status": previous_status, "status": status},
        )
        logger.info(f"Vendor return {vendor_return.return_number}: {previous_status} -> {status}")
        return vendor_return

    async def create_manual_return(
        self,
        purchase_order_id: uuid.UUID,
        items: List[Dict[str, Any]],
        return_type: str = ReturnType.OTHER.value,
        grn_id: Optional[uuid.UUID] = None,
        remarks: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> VendorReturn:
        """Raise a return by hand (quality issue, wrong item, damage ...)."""
        if not items:
            raise ValidationError("At least one item is required")
        if return_type not in [r.value for r in ReturnType]:
            raise ValidationError(f"Invalid return type '{return_type}'")

        po = await self.db.get(PurchaseOrder, purchase_order_id)
        if not po:
            raise NotFoundError("PO", purchase_order_id)
        if grn_id:
            grn = await self.db.get(GoodsReceiptNote, grn_id)
            if not grn or grn.purchase_order_id != po.id:
                raise NotFoundError("GRN", grn_id)

        total = compute_manual_return_total(items)
        vendor_return = VendorReturn(
            return_number=await self.sequences.get_next_number(DocumentPrefix.VR.value),
            purchase_order_id=po.id,
            grn_id=grn_id,
            vendor_id=po.vendor_id,
            return_type=return_type,
            items=list(items),
            total_shortage_value=total,
            status=VendorReturnStatus.PENDING.value,
            remarks=remarks,
            attachments=[],
            created_by=user_id,
        )
        self.db.add(vendor_return)
        await flush_or_raise(self.db, "vendor return creation")

        self.notifications.notify(
            NotificationType.VENDOR_RETURN_CREATED,
            title=f"Vendor return {vendor_return.return_number} created",
            message=f"{return_type.replace('_', ' ').title()} return raised for PO {po.po_number}, value {total}",
            department="procurement",
            entity_type="vendor_return",
            entity_id=vendor_return.id,
            actor_id=user_id,
        )
        logger.info(f"Manual vendor return {vendor_return.return_number} created for PO {po.po_number}")
        return vendor_return

    # ==================== VENDOR REQUESTS ====================

    async def list_requests(
        self,
        purchase_order_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
    ) -> List[VendorRequest]:
        query = select(VendorRequest).order_by(VendorRequest.created_at.desc())
        if purchase_order_id:
            query = query.where(VendorRequest.purchase_order_id == purchase_order_id)
        if status:
            query = query.where(VendorRequest.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_request_status(
        self,
        request_id: uuid.UUID,
        status: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> VendorRequest:
        if status not in [s.value for s in VendorRequestStatus]:
            raise ValidationError(f"Invalid vendor request status '{status}'")

        request = await self.db.get(VendorRequest, request_id)
        if not request:
            raise NotFoundError("Vendor Request", request_id)

        terminal = [VendorRequestStatus.FULFILLED.value, VendorRequestStatus.CANCELLED.value]
        if request.status in terminal:
            raise StateConflictError(
                f"Vendor request {request.request_number} is already {request.status}",
                current_state=request.status,
                expected_state=VendorRequestStatus.open_statuses(),
            )

        request.status = status
        now = datetime.now(timezone.utc)
        if status == VendorRequestStatus.SENT.value and not request.sent_at:
            request.sent_at = now
        elif status == VendorRequestStatus.FULFILLED.value:
            request.fulfilled_at = now

        await flush_or_raise(self.db, "vendor request update")
        logger.info(f"Vendor request {request.request_number} -> {status} by {user_id}")
        return request

    async def withdraw_for_grn(self, grn: GoodsReceiptNote, user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        """
        Undo the claims a GRN raised before it is deleted.

        Automatic shortage/excess returns still pending are removed, ones the
        vendor already acted on are closed. Open shortage requests raised from
        the GRN are cancelled and a request it fulfilled is sent again.
        Manual returns only lose their GRN link.
        """
        automatic = [ReturnType.SHORTAGE.value, ReturnType.EXCESS.value]
        removed, closed, cancelled = [], [], []

        result = await self.db.execute(select(VendorReturn).where(VendorReturn.grn_id == grn.id))
        for vendor_return in result.scalars().all():
            if vendor_return.return_type not in automatic:
                vendor_return.grn_id = None
            elif vendor_return.status == VendorReturnStatus.PENDING.value:
                removed.append(vendor_return.return_number)
                await self.db.delete(vendor_return)
            else:
                vendor_return.grn_id = None
                if vendor_return.status != VendorReturnStatus.CLOSED.value:
                    vendor_return.status = VendorReturnStatus.CLOSED.value
                    vendor_return.resolution_notes = f"{grn.grn_number} deleted"
                    closed.append(vendor_return.return_number)

        result = await self.db.execute(
            select(VendorRequest).where(
                (VendorRequest.grn_id == grn.id) | (VendorRequest.fulfillment_grn_id == grn.id)
            )
        )
        for request in result.scalars().all():
            if request.fulfillment_grn_id == grn.id:
                request.status = VendorRequestStatus.SENT.value
                request.fulfillment_grn_id = None
                request.fulfilled_at = None
                logger.info(f"Vendor request {request.request_number} re-opened: {grn.grn_number} deleted")
            if request.grn_id == grn.id:
                request.grn_id = None
                if request.status in VendorRequestStatus.open_statuses():
                    request.status = VendorRequestStatus.CANCELLED.value
                    cancelled.append(request.request_number)

        await flush_or_raise(self.db, "vendor claim withdrawal")
        if removed or closed or cancelled:
            logger.info(
                f"Claims withdrawn for {grn.grn_number} by {user_id}: removed {removed}, "
                f"closed {closed}, cancelled requests {cancelled}"
            )
        return {"removed_returns": removed, "closed_returns": closed, "cancelled_requests": cancelled}

    async def mark_request_fulfilled(self, request: VendorRequest, grn: GoodsReceiptNote) -> None:
        """Close a shortage request with the GRN that delivered it."""
        request.status = VendorRequestStatus.FULFILLED.value
        request.fulfillment_grn_id = grn.id
        request.fulfilled_at = datetime.now(timezone.utc)
        logger.info(f"Vendor request {request.request_number} fulfilled by {grn.grn_number}")
