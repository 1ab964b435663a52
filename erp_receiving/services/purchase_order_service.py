"""Purchase order ledger operations used by the receiving workflow."""
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import ValidationError, NotFoundError
from erp_receiving.models.approval import ApprovalEntityType, ApprovalStageKey
from erp_receiving.models.document_sequence import DocumentPrefix
from erp_receiving.models.notifications import NotificationType
from erp_receiving.models.purchase import PurchaseOrder, POStatus
from erp_receiving.models.vendor import Vendor
from erp_receiving.services.approval_service import ApprovalService
from erp_receiving.services.document_sequence_service import DocumentSequenceService
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services.po_state_machine import transition_po
from erp_receiving.services.shortage import to_decimal, money, as_json_number


logger = logging.getLogger(__name__)


class PurchaseOrderService:
    """Service for purchase orders."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_purchase_order(
        self,
        vendor_id: uuid.UUID,
        items: List[Dict[str, Any]],
        expected_delivery_date: Optional[date] = None,
        internal_notes: Optional[str] = None,
        as_draft: bool = False,
        user_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        """
        Create a PO with an item snapshot.

        Items need ``product_name`` (or ``material_name``), ``quantity`` and
        ``rate``; ``uom``/``product_code``/``color`` are kept as given.

        Raises:
            ValidationError: vendor missing or items empty/malformed
        """
        if not vendor_id:
            raise ValidationError("vendor_id is required")
        if not items:
            raise ValidationError("At least one item is required")

        vendor = await self.db.get(Vendor, vendor_id)
        if not vendor:
            raise ValidationError(f"Vendor {vendor_id} does not exist", details={"field": "vendor_id"})

        snapshot = []
        total = Decimal("0")
        for position, item in enumerate(items):
            name = item.get("product_name") or item.get("material_name")
            if not name:
                raise ValidationError(f"Item {position + 1}: product_name is required")
            quantity = to_decimal(item.get("quantity"))
            rate = to_decimal(item.get("rate"))
            if quantity <= 0:
                raise ValidationError(f"Item {position + 1}: quantity must be greater than zero")
            if rate < 0:
                raise ValidationError(f"Item {position + 1}: rate cannot be negative")

            snapshot.append({
                **item,
                "product_name": name,
                "quantity": as_json_number(quantity),
                "rate": as_json_number(rate),
            })
            total += quantity * rate

        po = PurchaseOrder(
            po_number=await DocumentSequenceService(self.db).get_next_number(DocumentPrefix.PO.value),
            vendor_id=vendor.id,
            vendor=vendor,
            status=POStatus.DRAFT.value,
            items=snapshot,
            total_amount=money(total),
            expected_delivery_date=expected_delivery_date,
            internal_notes=internal_notes,
            created_by=user_id,
        )
        if not as_draft:
            transition_po(po, POStatus.SENT, user_id)

        self.db.add(po)
        await flush_or_raise(self.db, "purchase order creation")
        logger.info(f"PO {po.po_number} created for vendor {vendor.name} ({len(snapshot)} items, {po.status})")
        return po

    async def get_purchase_order(self, po_id: uuid.UUID) -> PurchaseOrder:
        result = await self.db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.vendor))
            .where(PurchaseOrder.id == po_id)
        )
        po = result.scalar_one_or_none()
        if not po:
            raise NotFoundError("PO", po_id)
        return po

    async def list_purchase_orders(
        self,
        status: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        """``status`` accepts comma-separated values."""
        query = select(PurchaseOrder).options(selectinload(PurchaseOrder.vendor))
        count_query = select(func.count(PurchaseOrder.id))

        filters = []
        if status:
            filters.append(PurchaseOrder.status.in_([s.strip() for s in status.split(",") if s.strip()]))
        if vendor_id:
            filters.append(PurchaseOrder.vendor_id == vendor_id)
        if search:
            filters.append(or_(
                PurchaseOrder.po_number.ilike(f"%{search}%"),
                PurchaseOrder.internal_notes.ilike(f"%{search}%"),
            ))

        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(PurchaseOrder.created_at.desc()).offset((page - 1) * size).limit(size)
        items = list((await self.db.execute(query)).scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "pages": (total + size - 1) // size,
        }

    async def request_grn(
        self,
        po_id: uuid.UUID,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Procurement asks inventory to receive against this PO.

        Moves the PO to grn_requested and opens a grn_creation approval;
        approving it moves the PO on to grn_approved.
        """
        po = await self.get_purchase_order(po_id)
        previous_status = po.status
        transition_po(po, POStatus.GRN_REQUESTED, user_id)

        approval = await ApprovalService(self.db).create_approval(
            ApprovalEntityType.GRN_CREATION,
            po.id,
            ApprovalStageKey.GRN_CREATION_REQUEST,
            metadata={
                "po_number": po.po_number,
                "previous_status": previous_status,
                "notes": notes,
            },
            assigned_department="inventory",
            created_by=user_id,
        )

        NotificationService(self.db).notify(
            NotificationType.GRN_REQUEST,
            title=f"GRN requested for PO {po.po_number}",
            message=notes or f"Procurement requested goods receipt for PO {po.po_number}",
            department="inventory",
            entity_type="purchase_order",
            entity_id=po.id,
            actor_id=user_id,
            data={"approval_id": approval.id},
        )
        await flush_or_raise(self.db, "GRN request")
        logger.info(f"GRN requested for PO {po.po_number} ({previous_status} -> {po.status})")
        return {"purchase_order": po, "approval": approval}
