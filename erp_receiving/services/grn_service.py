"""GRN Service: goods receipt against purchase orders.

Flow:
1. create_from_po      -> lines computed against the PO (or shortage) items,
                          PO received, shortage return + complaint approvals
2. verify              -> (inspected, verified) or (received, discrepancy)
3. approve_discrepancy -> (approved, approved) or (rejected, rejected)
4. InventoryService.add_to_inventory posts verified/approved GRNs

A PO owns a chain of GRNs ordered by grn_sequence. The first GRN is raised
against the PO items; follow-up GRNs (PO reopened or grn_requested) are
raised against the open shortage request, or the pending shortage return,
and point back at the first GRN.

Every method works inside the caller's transaction and only flushes.
"""
import logging
import uuid
from datetime import datetime, date, timezone
from typing import Optional, List, Dict, Any, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.config import settings
from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import (
    ValidationError,
    NotFoundError,
    StateConflictError,
    InvalidPOStatusError,
    GRNAlreadyExistsError,
    AlreadyVerifiedError,
    NotInDiscrepancyStateError,
    AlreadyAddedError,
    AlreadyProcessedError,
)
from erp_receiving.models.approval import ApprovalEntityType, ApprovalStageKey
from erp_receiving.models.document_sequence import DocumentPrefix
from erp_receiving.models.grn_mismatch_request import (
    GRNMismatchRequest,
    MismatchType,
    MismatchRequestedAction,
    MismatchRequestStatus,
)
from erp_receiving.models.notifications import NotificationType, NotificationPriority
from erp_receiving.models.purchase import (
    PurchaseOrder,
    GoodsReceiptNote,
    POStatus,
    GRNStatus,
    VerificationStatus,
    ExcessAction,
)
from erp_receiving.models.vendor import Vendor
from erp_receiving.models.vendor_return import VendorRequest, VendorRequestStatus
from erp_receiving.services.approval_service import ApprovalService
from erp_receiving.services.document_sequence_service import DocumentSequenceService
from erp_receiving.services.grn_state_machine import GRNAction, apply_grn_transition
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services import po_state_machine
from erp_receiving.services.shortage import (
    compute_line,
    build_grn_line,
    summarize_lines,
    compute_shortage_return,
    compute_excess_return,
    to_decimal,
    as_json_number,
)
from erp_receiving.services.vendor_return_service import VendorReturnService


logger = logging.getLogger(__name__)


VERIFY_DECISIONS = {
    VerificationStatus.VERIFIED.value: GRNAction.VERIFY,
    VerificationStatus.DISCREPANCY.value: GRNAction.FLAG_DISCREPANCY,
}

DISCREPANCY_DECISIONS = {
    "approve": GRNAction.APPROVE_DISCREPANCY,
    "reject": GRNAction.REJECT_DISCREPANCY,
}

EXCESS_ACTIONS = {
    ExcessAction.AUTO_REJECT.value: GRNAction.REJECT_EXCESS,
    ExcessAction.APPROVE_EXCESS.value: GRNAction.ACCEPT_EXCESS,
}


class GRNService:
    """Service for goods receipt notes."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sequences = DocumentSequenceService(db)
        self.notifications = NotificationService(db)
        self.vendor_returns = VendorReturnService(db)
        self.approvals = ApprovalService(db)

    # ==================== LOOKUPS ====================

    async def get_grn(self, grn_id: uuid.UUID) -> GoodsReceiptNote:
        grn = await self.db.get(GoodsReceiptNote, grn_id)
        if not grn:
            raise NotFoundError("GRN", grn_id)
        return grn

    async def _get_po(self, po_id: uuid.UUID) -> PurchaseOrder:
        po = await self.db.get(PurchaseOrder, po_id)
        if not po:
            raise NotFoundError("PO", po_id)
        return po

    async def _get_chain(self, po_id: uuid.UUID) -> List[GoodsReceiptNote]:
        result = await self.db.execute(
            select(GoodsReceiptNote)
            .where(GoodsReceiptNote.purchase_order_id == po_id)
            .order_by(GoodsReceiptNote.grn_sequence)
        )
        return list(result.scalars().all())

    async def get_po_grn_chain(self, po_id: uuid.UUID) -> List[GoodsReceiptNote]:
        """All GRNs of a PO, first GRN first."""
        await self._get_po(po_id)
        return await self._get_chain(po_id)

    async def list_grns(
        self,
        status: Optional[str] = None,
        verification_status: Optional[str] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        query = select(GoodsReceiptNote)
        count_query = select(func.count(GoodsReceiptNote.id))

        filters = []
        if status:
            filters.append(GoodsReceiptNote.status == status)
        if verification_status:
            filters.append(GoodsReceiptNote.verification_status == verification_status)
        if purchase_order_id:
            filters.append(GoodsReceiptNote.purchase_order_id == purchase_order_id)
        if vendor_id:
            filters.append(GoodsReceiptNote.vendor_id == vendor_id)
        if search:
            filters.append(GoodsReceiptNote.grn_number.ilike(f"%{search}%"))

        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(GoodsReceiptNote.created_at.desc()).offset((page - 1) * size).limit(size)
        items = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    # ==================== CREATION ====================

    @staticmethod
    def _ensure_can_receive(po: PurchaseOrder, chain: List[GoodsReceiptNote]) -> None:
        if chain and po.status not in po_state_machine.FOLLOW_UP_GRN_STATUSES:
            raise GRNAlreadyExistsError(
                f"PO {po.po_number} already has {chain[-1].grn_number}. A follow-up GRN needs the PO "
                f"to be reopened or to have a GRN requested",
                current_state=po.status,
                expected_state=po_state_machine.FOLLOW_UP_GRN_STATUSES,
            )
        if not po_state_machine.can_create_grn(po.status, bool(chain)):
            raise InvalidPOStatusError(
                f"Cannot create a GRN for PO {po.po_number} in status '{po.status}'",
                current_state=po.status,
                expected_state=po_state_machine.FIRST_GRN_STATUSES + po_state_machine.FOLLOW_UP_GRN_STATUSES,
            )

    async def preview_from_po(self, po_id: uuid.UUID) -> Dict[str, Any]:
        """
        Prefilled lines for the GRN creation form.

        First GRN: every PO item. Follow-up GRN: the lines of the open shortage
        request (or pending shortage return), expected quantity = shortage.
        Received quantities are prefilled with the expected quantity.

        Returns:
            {"purchase_order_id", "po_number", "po_status", "vendor_id",
             "vendor_name", "is_first_grn", "grn_sequence", "source",
             "vendor_request_id", "items"}

        Raises:
            NotFoundError, GRNAlreadyExistsError, InvalidPOStatusError
            as for create_from_po
        """
        po = await self._get_po(po_id)
        chain = await self._get_chain(po.id)
        self._ensure_can_receive(po, chain)

        vendor_request, source_items, source = None, po.items or [], "purchase_order"
        if chain:
            vendor_request, source_items, source = await self._follow_up_source(po)

        items = []
        for item_index, item in self._index_sources(source_items).items():
            expected = item.get("quantity")
            if expected is None:
                expected = item.get("shortage_qty", item.get("shortage_quantity"))
            items.append(build_grn_line(item_index, item, expected, default_uom=settings.DEFAULT_UOM))

        vendor = await self.db.get(Vendor, po.vendor_id)
        return {
            "purchase_order_id": po.id,
            "po_number": po.po_number,
            "po_status": po.status,
            "vendor_id": po.vendor_id,
            "vendor_name": vendor.name if vendor else None,
            "is_first_grn": not chain,
            "grn_sequence": chain[-1].grn_sequence + 1 if chain else 1,
            "source": source,
            "vendor_request_id": vendor_request.id if vendor_request else None,
            "items": items,
        }

    async def create_from_po(
        self,
        po_id: uuid.UUID,
        received_items: List[Dict[str, Any]],
        received_date: Optional[date] = None,
        supplier_invoice_number: Optional[str] = None,
        supplier_invoice_date: Optional[date] = None,
        challan_number: Optional[str] = None,
        challan_date: Optional[date] = None,
        remarks: Optional[str] = None,
        save_as_draft: bool = False,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Create a GRN from a purchase order.

        Args:
            po_id: Purchase order receiving the goods
            received_items: ``[{"item_index", "received_qty", "invoiced_qty"?, "remarks"?}]``
            save_as_draft: Keep the GRN in draft; no PO change, no claims
            user_id: Acting user

        Returns:
            {"grn", "vendor_return", "has_shortages", "has_overages",
             "has_invoice_mismatch", "complaint_ids"}

        Raises:
            ValidationError: empty/malformed items
            NotFoundError: PO missing
            GRNAlreadyExistsError: PO already has a GRN and is not awaiting a follow-up
            InvalidPOStatusError: PO not ready for receipt
        """
        if not received_items:
            raise ValidationError("At least one received item is required")

        po = await self._get_po(po_id)
        chain = await self._get_chain(po.id)
        self._ensure_can_receive(po, chain)

        vendor_request: Optional[VendorRequest] = None
        source_items = po.items or []
        if chain:
            vendor_request, source_items, _ = await self._follow_up_source(po)

        lines = self._build_lines(source_items, received_items)
        totals = summarize_lines(lines)
        first = chain[0] if chain else None

        grn = GoodsReceiptNote(
            grn_number=await self.sequences.get_next_number(DocumentPrefix.GRN.value),
            received_date=received_date or datetime.now(timezone.utc).date(),
            purchase_order_id=po.id,
            vendor_id=po.vendor_id,
            supplier_invoice_number=supplier_invoice_number,
            supplier_invoice_date=supplier_invoice_date,
            challan_number=challan_number,
            challan_date=challan_date,
            items_received=lines,
            total_ordered_quantity=totals.ordered_quantity,
            total_received_quantity=totals.received_quantity,
            total_shortage_quantity=totals.shortage_quantity,
            total_overage_quantity=totals.overage_quantity,
            total_received_value=totals.received_value,
            status=GRNStatus.DRAFT.value if save_as_draft else GRNStatus.RECEIVED.value,
            verification_status=VerificationStatus.PENDING.value,
            inventory_added=False,
            grn_sequence=chain[-1].grn_sequence + 1 if chain else 1,
            is_first_grn=first is None,
            original_grn_id=first.id if first else None,
            vendor_request_id=vendor_request.id if vendor_request else None,
            previous_po_status=po.status,
            remarks=remarks,
            created_by=user_id,
        )
        self.db.add(grn)
        await flush_or_raise(self.db, "GRN creation")

        logger.info(
            f"{grn.grn_number} created for PO {po.po_number} "
            f"(sequence {grn.grn_sequence}, {len(lines)} lines, status {grn.status})"
        )

        result = {
            "grn": grn,
            "vendor_return": None,
            "has_shortages": totals.shortage_lines > 0,
            "has_overages": totals.overage_lines > 0,
            "has_invoice_mismatch": totals.invoice_mismatch_lines > 0,
            "complaint_ids": [],
        }
        if not save_as_draft:
            result.update(await self._on_received(grn, po, user_id))
        return result

    async def update_received(
        self,
        grn_id: uuid.UUID,
        received_items: List[Dict[str, Any]],
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """Update a draft GRN's quantities and submit it."""
        if not received_items:
            raise ValidationError("At least one received item is required")

        grn = await self.get_grn(grn_id)
        if grn.status != GRNStatus.DRAFT.value:
            raise StateConflictError(
                f"Only draft GRNs can be updated; {grn.grn_number} is '{grn.status}'",
                current_state=grn.status,
                expected_state=GRNStatus.DRAFT.value,
            )
        po = await self._get_po(grn.purchase_order_id)

        existing = {line["item_index"]: line for line in grn.items_received or []}
        source_items = {idx: {**line, "quantity": line["ordered_quantity"]} for idx, line in existing.items()}

        merged = []
        for item in received_items:
            line = existing.get(item.get("item_index"))
            if line is not None and item.get("invoiced_qty", item.get("invoiced_quantity")) is None:
                item = {**item, "invoiced_qty": line.get("invoiced_quantity")}
            merged.append(item)

        lines = self._build_lines(source_items, merged)
        totals = summarize_lines(lines)

        grn.items_received = lines
        grn.total_ordered_quantity = totals.ordered_quantity
        grn.total_received_quantity = totals.received_quantity
        grn.total_shortage_quantity = totals.shortage_quantity
        grn.total_overage_quantity = totals.overage_quantity
        grn.total_received_value = totals.received_value
        apply_grn_transition(grn, GRNAction.SUBMIT_RECEIVED)
        await flush_or_raise(self.db, "GRN update")

        logger.info(f"Draft {grn.grn_number} submitted with {len(lines)} lines")

        result = {
            "grn": grn,
            "vendor_return": None,
            "has_shortages": totals.shortage_lines > 0,
            "has_overages": totals.overage_lines > 0,
            "has_invoice_mismatch": totals.invoice_mismatch_lines > 0,
            "complaint_ids": [],
        }
        result.update(await self._on_received(grn, po, user_id))
        return result

    async def _follow_up_source(
        self, po: PurchaseOrder
    ) -> Tuple[Optional[VendorRequest], List[Dict[str, Any]], str]:
        """Lines a follow-up GRN is received against, and where they came from."""
        request = await self.vendor_returns.get_open_shortage_request(po.id)
        if request and request.items:
            return request, request.items, "vendor_request"

        vendor_return = await self.vendor_returns.get_pending_shortage_return(po.id)
        if vendor_return and vendor_return.items:
            return None, vendor_return.items, "vendor_return"

        return None, po.items or [], "purchase_order"

    @staticmethod
    def _index_sources(
        source_items: Union[List[Dict[str, Any]], Dict[int, Dict[str, Any]]],
    ) -> Dict[int, Dict[str, Any]]:
        """
        Key source lines by item_index.

        PO items are addressed by position; shortage request/return lines
        keep the item_index of the PO line they were derived from.
        """
        if isinstance(source_items, dict):
            return source_items
        return {
            item["item_index"] if isinstance(item.get("item_index"), int) else position: item
            for position, item in enumerate(source_items)
        }

    def _build_lines(
        self,
        source_items: Union[List[Dict[str, Any]], Dict[int, Dict[str, Any]]],
        received_items: List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Match received quantities to source lines by item_index."""
        sources = self._index_sources(source_items)
        lines = []
        seen = set()
        for position, item in enumerate(received_items):
            item_index = item.get("item_index")
            if not isinstance(item_index, int) or isinstance(item_index, bool):
                raise ValidationError(f"Item {position + 1}: item_index must be an integer")
            if item_index not in sources:
                raise ValidationError(
                    f"Item {position + 1}: item_index {item_index} does not match any order line",
                    details={"item_index": item_index, "line_count": len(sources)},
                )
            if item_index in seen:
                raise ValidationError(f"item_index {item_index} appears more than once")
            seen.add(item_index)

            received_qty = item.get("received_qty", item.get("received_quantity"))
            if received_qty is None:
                raise ValidationError(f"Item {position + 1}: received_qty is required")

            lines.append(build_grn_line(
                item_index,
                sources[item_index],
                received_qty,
                item.get("invoiced_qty", item.get("invoiced_quantity")),
                remarks=item.get("remarks"),
                default_uom=settings.DEFAULT_UOM,
            ))
        return lines

    async def _on_received(
        self,
        grn: GoodsReceiptNote,
        po: PurchaseOrder,
        user_id: Optional[uuid.UUID],
    ) -> Dict[str, Any]:
        """Side effects of a GRN entering (received, pending)."""
        po_state_machine.transition_po(po, POStatus.RECEIVED, user_id)

        if grn.vendor_request_id:
            request = await self.db.get(VendorRequest, grn.vendor_request_id)
            if request and request.status in VendorRequestStatus.open_statuses():
                await self.vendor_returns.mark_request_fulfilled(request, grn)

        lines = grn.items_received or []
        shortage = compute_shortage_return(lines)
        overage_lines = [line for line in lines if to_decimal(line.get("overage_quantity")) > 0]
        mismatch_lines = [
            line for line in lines
            if to_decimal(line.get("invoiced_quantity")) != to_decimal(line.get("ordered_quantity"))
        ]

        vendor_return = await self.vendor_returns.create_shortage_return(grn, po, user_id)

        complaint_ids = []
        base_metadata = {
            "grn_id": str(grn.id),
            "grn_number": grn.grn_number,
            "po_number": po.po_number,
        }
        if shortage:
            complaint = await self.approvals.create_approval(
                ApprovalEntityType.PURCHASE_ORDER,
                po.id,
                ApprovalStageKey.GRN_SHORTAGE_COMPLAINT,
                metadata={
                    **base_metadata,
                    "items_affected": shortage.items,
                    "total_shortage_value": as_json_number(shortage.total_value),
                    "vendor_return_id": str(vendor_return.id) if vendor_return else None,
                },
                assigned_department="procurement",
                created_by=user_id,
            )
            complaint_ids.append(complaint.id)
        if overage_lines:
            complaint = await self.approvals.create_approval(
                ApprovalEntityType.PURCHASE_ORDER,
                po.id,
                ApprovalStageKey.GRN_OVERAGE_COMPLAINT,
                metadata={**base_metadata, "items_affected": overage_lines},
                assigned_department="procurement",
                created_by=user_id,
            )
            complaint_ids.append(complaint.id)
        if mismatch_lines and not shortage and not overage_lines:
            complaint = await self.approvals.create_approval(
                ApprovalEntityType.PURCHASE_ORDER,
                po.id,
                ApprovalStageKey.GRN_INVOICE_MISMATCH,
                metadata={**base_metadata, "items_affected": mismatch_lines},
                assigned_department="procurement",
                created_by=user_id,
            )
            complaint_ids.append(complaint.id)

        issues = []
        if shortage:
            issues.append(f"{len(shortage.items)} short")
        if overage_lines:
            issues.append(f"{len(overage_lines)} over")
        if mismatch_lines:
            issues.append(f"{len(mismatch_lines)} invoice mismatch")

        self.notifications.notify(
            NotificationType.GRN_VERIFICATION,
            title=f"{grn.grn_number} awaiting verification",
            message=(
                f"Material received for PO {po.po_number}"
                + (f" with discrepancies ({', '.join(issues)})" if issues else "")
                + ". Please verify quantities."
            ),
            department="inventory",
            priority=NotificationPriority.HIGH if issues else NotificationPriority.MEDIUM,
            entity_type="grn",
            entity_id=grn.id,
            actor_id=user_id,
            data={"purchase_order_id": po.id, "grn_number": grn.grn_number, "complaint_ids": complaint_ids},
        )
        await flush_or_raise(self.db, "GRN receipt")

        return {"vendor_return": vendor_return, "complaint_ids": complaint_ids}

    # ==================== VERIFICATION ====================

    async def verify(
        self,
        grn_id: uuid.UUID,
        decision: str,
        notes: Optional[str] = None,
        discrepancy_details: Optional[Dict[str, Any]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Record the quantity verification outcome.

        Args:
            decision: "verified" or "discrepancy"

        Returns:
            {"grn", "next_step"} with next_step add_to_inventory or discrepancy_approval

        Raises:
            ValidationError: unknown decision
            NotFoundError: GRN missing
            AlreadyVerifiedError: verification already recorded
        """
        action = VERIFY_DECISIONS.get(decision)
        if action is None:
            raise ValidationError(
                f"Invalid verification status '{decision}'. Use one of: {', '.join(VERIFY_DECISIONS)}"
            )

        grn = await self.get_grn(grn_id)
        if grn.verification_status != VerificationStatus.PENDING.value:
            raise AlreadyVerifiedError(
                f"{grn.grn_number} has already been verified (verification_status='{grn.verification_status}')",
                current_state=grn.verification_status,
                expected_state=VerificationStatus.PENDING.value,
            )

        apply_grn_transition(grn, action)
        grn.verified_by = user_id
        grn.verification_date = datetime.now(timezone.utc)
        grn.verification_notes = notes
        if action == GRNAction.FLAG_DISCREPANCY:
            grn.discrepancy_details = discrepancy_details or {}

        await flush_or_raise(self.db, "GRN verification")

        if action == GRNAction.VERIFY:
            next_step = "add_to_inventory"
            self.notifications.notify(
                NotificationType.GRN_VERIFIED,
                title=f"{grn.grn_number} verified",
                message="Quantities verified. Ready to add to inventory.",
                department="inventory",
                entity_type="grn",
                entity_id=grn.id,
                actor_id=user_id,
                data={"next_step": next_step},
            )
        else:
            next_step = "discrepancy_approval"
            self.notifications.notify(
                NotificationType.GRN_DISCREPANCY,
                title=f"{grn.grn_number} has discrepancies",
                message=notes or "Discrepancy reported during verification. Manager approval required.",
                department="procurement",
                priority=NotificationPriority.HIGH,
                entity_type="grn",
                entity_id=grn.id,
                actor_id=user_id,
                data={"next_step": next_step},
            )

        logger.info(f"{grn.grn_number} verification: {decision} by {user_id}")
        return {"grn": grn, "next_step": next_step}

    async def approve_discrepancy(
        self,
        grn_id: uuid.UUID,
        decision: str,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Manager decision on a GRN flagged with discrepancies.

        Rejecting also rejects the PO when its status still allows it.

        Returns:
            {"grn", "next_step"} with next_step add_to_inventory or completed
        """
        action = DISCREPANCY_DECISIONS.get(decision)
        if action is None:
            raise ValidationError(f"Invalid decision '{decision}'. Use 'approve' or 'reject'")

        grn = await self.get_grn(grn_id)
        if grn.verification_status != VerificationStatus.DISCREPANCY.value:
            raise NotInDiscrepancyStateError(
                f"{grn.grn_number} is not awaiting discrepancy approval "
                f"(verification_status='{grn.verification_status}')",
                current_state=grn.verification_status,
                expected_state=VerificationStatus.DISCREPANCY.value,
            )

        apply_grn_transition(grn, action)
        grn.discrepancy_approved_by = user_id
        grn.discrepancy_approval_date = datetime.now(timezone.utc)
        grn.discrepancy_approval_notes = notes

        if action == GRNAction.REJECT_DISCREPANCY:
            po = await self._get_po(grn.purchase_order_id)
            if po_state_machine.can_transition(po.status, POStatus.REJECTED):
                po_state_machine.transition_po(po, POStatus.REJECTED, user_id)
            else:
                logger.warning(
                    f"{grn.grn_number} rejected but PO {po.po_number} left in '{po.status}'"
                )
            next_step = "completed"
        else:
            next_step = "add_to_inventory"

        await flush_or_raise(self.db, "discrepancy approval")

        self.notifications.notify(
            NotificationType.GRN_DISCREPANCY_RESOLVED,
            title=f"{grn.grn_number} discrepancy {grn.verification_status}",
            message=notes or f"Discrepancy {grn.verification_status}",
            department="inventory",
            entity_type="grn",
            entity_id=grn.id,
            actor_id=user_id,
            data={"decision": decision, "next_step": next_step},
        )
        logger.info(f"{grn.grn_number} discrepancy {grn.verification_status} by {user_id}")
        return {"grn": grn, "next_step": next_step}

    # ==================== VENDOR REVERT / EXCESS ====================

    async def request_vendor_revert(
        self,
        grn_id: uuid.UUID,
        reason: str,
        items: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> GoodsReceiptNote:
        """Ask the vendor to clarify or correct a receipt before verification completes."""
        if not reason:
            raise ValidationError("A reason is required to request a vendor revert")

        grn = await self.get_grn(grn_id)
        if grn.inventory_added:
            raise AlreadyAddedError(
                f"{grn.grn_number} is already in inventory; raise a vendor return instead",
                current_state="inventory_added",
                expected_state="not_added",
            )

        apply_grn_transition(grn, GRNAction.REQUEST_VENDOR_REVERT)
        grn.vendor_revert_requested = True
        grn.vendor_revert_reason = reason
        grn.vendor_revert_items = list(items or [])
        grn.vendor_revert_requested_by = user_id
        grn.vendor_revert_requested_date = datetime.now(timezone.utc)
        if notes:
            grn.remarks = f"{grn.remarks}\n{notes}" if grn.remarks else notes

        await flush_or_raise(self.db, "vendor revert request")

        self.notifications.notify(
            NotificationType.VENDOR_REVERT,
            title=f"Vendor revert requested for {grn.grn_number}",
            message=reason,
            department="procurement",
            priority=NotificationPriority.HIGH,
            entity_type="grn",
            entity_id=grn.id,
            actor_id=user_id,
            data={"items": grn.vendor_revert_items},
        )
        logger.info(f"Vendor revert requested on {grn.grn_number}: {reason}")
        return grn

    async def handle_excess(
        self,
        grn_id: uuid.UUID,
        action: str,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Resolve overage lines.

        auto_reject: excess goes back to the vendor on an excess return and
            only ordered quantities are accepted into stock.
        approve_excess: the excess is kept; PO becomes excess_received.

        Returns:
            {"grn", "vendor_return"}
        """
        grn_action = EXCESS_ACTIONS.get(action)
        if grn_action is None:
            raise ValidationError("Invalid action. Must be auto_reject or approve_excess")

        grn = await self.get_grn(grn_id)
        if not grn.has_overages:
            raise ValidationError(f"{grn.grn_number} has no excess quantities")

        po = await self._get_po(grn.purchase_order_id)
        apply_grn_transition(grn, grn_action)
        grn.excess_action = action
        grn.excess_notes = notes

        vendor_return = None
        if grn_action == GRNAction.REJECT_EXCESS:
            vendor_return = await self.vendor_returns.create_excess_return(grn, po, notes, user_id)
            grn.items_received = [
                {
                    **line,
                    "accepted_quantity": as_json_number(
                        to_decimal(line.get("received_quantity")) - to_decimal(line.get("overage_quantity"))
                    ),
                }
                for line in grn.items_received or []
            ]
        else:
            po_state_machine.transition_po(po, POStatus.EXCESS_RECEIVED, user_id)

        await flush_or_raise(self.db, "excess handling")
        logger.info(f"Excess on {grn.grn_number} handled: {action}")
        return {"grn": grn, "vendor_return": vendor_return}

    # ==================== MISMATCH REQUESTS ====================

    async def create_mismatch_request(
        self,
        grn_id: uuid.UUID,
        mismatch_items: List[Dict[str, Any]],
        requested_action: str,
        requested_action_notes: Optional[str] = None,
        request_description: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> GRNMismatchRequest:
        """
        Raise a shortage/overage claim on a GRN for procurement to review.

        Args:
            mismatch_items: ``[{"item_index", "received_qty"?, "shortage_reason"?,
                "action_required"?, "notes"?}]``. ``received_qty`` overrides the
                quantity on the GRN line (recount); without it the GRN figure is used.
            requested_action: one of MismatchRequestedAction

        Raises:
            ValidationError: no items, unknown line or action, nothing short or over
            NotFoundError: GRN missing
            StateConflictError: GRN is still a draft
        """
        if not mismatch_items:
            raise ValidationError("At least one mismatch item is required")
        if requested_action not in [action.value for action in MismatchRequestedAction]:
            raise ValidationError(
                f"Unknown requested_action '{requested_action}'",
                details={"allowed": [action.value for action in MismatchRequestedAction]},
            )

        grn = await self.get_grn(grn_id)
        if grn.status == GRNStatus.DRAFT.value:
            raise StateConflictError(
                f"{grn.grn_number} is a draft; submit it before raising a mismatch",
                current_state=grn.status,
                expected_state=[s.value for s in GRNStatus if s != GRNStatus.DRAFT],
            )
        po = await self._get_po(grn.purchase_order_id)
        vendor = await self.db.get(Vendor, grn.vendor_id) if grn.vendor_id else None

        grn_lines = {line.get("item_index"): line for line in grn.items_received or []}
        entries = []
        for position, item in enumerate(mismatch_items):
            line = grn_lines.get(item.get("item_index"))
            if line is None:
                raise ValidationError(
                    f"Item {position + 1}: item_index {item.get('item_index')} is not on {grn.grn_number}",
                    details={"item_index": item.get("item_index")},
                )
            received = item.get("received_qty")
            if received is None:
                received = line.get("received_quantity")
            computed = compute_line(
                line.get("ordered_quantity"),
                received,
                line.get("rate", 0),
                line.get("invoiced_quantity"),
            )
            entries.append({
                "item_index": line.get("item_index"),
                "material_name": line.get("material_name") or "",
                "product_code": line.get("product_code") or "",
                "color": line.get("color") or "",
                "uom": line.get("uom") or settings.DEFAULT_UOM,
                "ordered_quantity": as_json_number(computed.ordered_quantity),
                "invoiced_quantity": as_json_number(computed.invoiced_quantity),
                "received_quantity": as_json_number(computed.received_quantity),
                "shortage_quantity": as_json_number(computed.shortage_quantity),
                "overage_quantity": as_json_number(computed.overage_quantity),
                "rate": as_json_number(computed.rate),
                "shortage_reason": item.get("shortage_reason") or "",
                "action_required": item.get("action_required") or "",
                "notes": item.get("notes") or "",
            })

        shortage = compute_shortage_return(entries)
        overage = compute_excess_return(entries)
        if not shortage.items and not overage.items:
            raise ValidationError(
                f"No shortage or overage on the selected lines of {grn.grn_number}",
                details={"item_indexes": [entry["item_index"] for entry in entries]},
            )

        if shortage.items and overage.items:
            mismatch_type = MismatchType.BOTH
        elif shortage.items:
            mismatch_type = MismatchType.SHORTAGE
        else:
            mismatch_type = MismatchType.OVERAGE

        request = GRNMismatchRequest(
            request_number=await self.sequences.get_next_number(DocumentPrefix.GMR.value),
            grn_id=grn.id,
            purchase_order_id=po.id,
            grn_number=grn.grn_number,
            po_number=po.po_number,
            vendor_name=vendor.name if vendor else None,
            mismatch_type=mismatch_type.value,
            mismatch_items=entries,
            total_shortage_items=len(shortage.items),
            total_overage_items=len(overage.items),
            total_shortage_value=shortage.total_value,
            total_overage_value=overage.total_value,
            request_description=request_description,
            requested_action=requested_action,
            requested_action_notes=requested_action_notes,
            status=MismatchRequestStatus.PENDING.value,
            created_by=user_id,
        )
        self.db.add(request)
        await flush_or_raise(self.db, "mismatch request creation")

        self.notifications.notify(
            NotificationType.GRN_MISMATCH_REQUEST,
            title=f"Mismatch request {request.request_number}",
            message=(
                f"{grn.grn_number} (PO {po.po_number}): {len(shortage.items)} short, "
                f"{len(overage.items)} over. Requested action: {requested_action}"
            ),
            department="procurement",
            priority=NotificationPriority.HIGH,
            entity_type="grn_mismatch_request",
            entity_id=request.id,
            actor_id=user_id,
            data={"grn_id": grn.id, "purchase_order_id": po.id, "mismatch_type": mismatch_type.value},
        )
        await flush_or_raise(self.db, "mismatch request creation")

        logger.info(
            f"Mismatch request {request.request_number} raised on {grn.grn_number}: "
            f"{mismatch_type.value}, action {requested_action}"
        )
        return request

    async def list_mismatch_requests(
        self,
        status: Optional[str] = None,
        grn_id: Optional[uuid.UUID] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        query = select(GRNMismatchRequest)
        count_query = select(func.count(GRNMismatchRequest.id))

        filters = []
        if status:
            filters.append(GRNMismatchRequest.status == status)
        if grn_id:
            filters.append(GRNMismatchRequest.grn_id == grn_id)
        if purchase_order_id:
            filters.append(GRNMismatchRequest.purchase_order_id == purchase_order_id)

        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(GRNMismatchRequest.created_at.desc()).offset((page - 1) * size).limit(size)
        items = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def get_mismatch_request(self, request_id: uuid.UUID) -> GRNMismatchRequest:
        request = await self.db.get(GRNMismatchRequest, request_id)
        if not request:
            raise NotFoundError("Mismatch Request", request_id)
        return request

    async def review_mismatch_request(
        self,
        request_id: uuid.UUID,
        decision: str,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> GRNMismatchRequest:
        """
        Approve or reject a pending mismatch request and tell inventory.

        Raises:
            ValidationError: decision not approve/reject
            NotFoundError: request missing
            AlreadyProcessedError: request already reviewed
        """
        statuses = {
            "approve": (MismatchRequestStatus.APPROVED, NotificationType.GRN_MISMATCH_APPROVED),
            "reject": (MismatchRequestStatus.REJECTED, NotificationType.GRN_MISMATCH_REJECTED),
        }
        if decision not in statuses:
            raise ValidationError(f"Unknown decision '{decision}'", details={"allowed": list(statuses)})

        request = await self.get_mismatch_request(request_id)
        if request.status != MismatchRequestStatus.PENDING.value:
            raise AlreadyProcessedError(
                f"Mismatch request {request.request_number} already {request.status}",
                current_state=request.status,
                expected_state=MismatchRequestStatus.PENDING.value,
            )

        status, notification_type = statuses[decision]
        request.status = status.value
        request.approval_notes = notes
        request.reviewed_by = user_id
        request.reviewed_at = datetime.now(timezone.utc)

        self.notifications.notify(
            notification_type,
            title=f"Mismatch request {request.request_number} {status.value}",
            message=notes or f"{request.grn_number}: {request.requested_action} {status.value}",
            user_id=request.created_by,
            department=None if request.created_by else "inventory",
            entity_type="grn_mismatch_request",
            entity_id=request.id,
            actor_id=user_id,
            data={"grn_id": request.grn_id, "requested_action": request.requested_action},
        )
        await flush_or_raise(self.db, "mismatch request review")

        logger.info(f"Mismatch request {request.request_number} {status.value} by {user_id}")
        return request

    # ==================== DELETE ====================

    async def delete_grn(self, grn_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        """
        Delete a GRN that has not been posted and is last in its PO's chain.

        Everything the receipt set off is undone in the same transaction:
        complaints still open are canceled, the GRN's automatic returns are
        withdrawn, its mismatch requests are dropped and the PO goes back to
        the status it had when the GRN was raised.

        Returns:
            {"grn_number", "purchase_order_status", "canceled_approval_ids",
             "removed_returns", "closed_returns", "cancelled_requests"}
        """
        grn = await self.get_grn(grn_id)
        if grn.inventory_added:
            raise StateConflictError(
                f"Cannot delete {grn.grn_number}: it has been added to inventory",
                current_state="inventory_added",
                expected_state="not_added",
            )

        chain = await self._get_chain(grn.purchase_order_id)
        if chain and chain[-1].id != grn.id:
            raise StateConflictError(
                f"Cannot delete {grn.grn_number}: later GRNs exist for this PO",
                current_state=f"sequence {grn.grn_sequence} of {chain[-1].grn_sequence}",
                expected_state="last GRN in chain",
            )
        po = await self._get_po(grn.purchase_order_id)

        canceled = await self.approvals.cancel_for_grn(po.id, grn.id, f"{grn.grn_number} deleted", user_id)
        withdrawn = await self.vendor_returns.withdraw_for_grn(grn, user_id)

        result = await self.db.execute(select(GRNMismatchRequest).where(GRNMismatchRequest.grn_id == grn.id))
        for request in result.scalars().all():
            await self.db.delete(request)

        remaining = [g for g in chain if g.id != grn.id]
        previous = grn.previous_po_status or (
            POStatus.REOPENED.value if remaining else POStatus.GRN_APPROVED.value
        )
        if not remaining or not po_state_machine.can_create_grn(po.status, True):
            po_state_machine.revert_po_receipt(po, previous, user_id)

        await self.db.delete(grn)
        await flush_or_raise(self.db, "GRN deletion")
        logger.info(
            f"{grn.grn_number} deleted; PO {po.po_number} back to {po.status}, "
            f"{len(canceled)} complaints canceled"
        )
        return {
            "grn_number": grn.grn_number,
            "purchase_order_status": po.status,
            "canceled_approval_ids": [approval.id for approval in canceled],
            **withdrawn,
        }
