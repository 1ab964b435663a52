"""Inventory posting from verified goods receipts.

Posting turns every accepted GRN line into one Inventory batch (with its
own INV barcode) plus exactly one inward InventoryMovement. The whole GRN
posts in the caller's transaction: if any line fails nothing is kept and
``inventory_added`` stays False.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_receiving.config import settings
from erp_receiving.database import flush_or_raise
from erp_receiving.exceptions import NotFoundError, AlreadyAddedError, NotYetVerifiedError
from erp_receiving.models.document_sequence import DocumentPrefix
from erp_receiving.models.inventory import (
    Product,
    ProductCategory,
    Inventory,
    InventoryMovement,
    MovementType,
)
from erp_receiving.models.notifications import NotificationType
from erp_receiving.models.purchase import GoodsReceiptNote, PurchaseOrder, POStatus, VerificationStatus
from erp_receiving.services.document_sequence_service import DocumentSequenceService
from erp_receiving.services.grn_state_machine import GRNAction, apply_grn_transition
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services.po_state_machine import transition_po
from erp_receiving.services.shortage import to_decimal, money


logger = logging.getLogger(__name__)


POSTABLE_VERIFICATION = [VerificationStatus.VERIFIED.value, VerificationStatus.APPROVED.value]

# (substrings, canonical unit); first match wins, "gram" must come after "kilogram"
UOM_ALIASES = [
    (("meter", "mtr"), "meter"),
    (("piece", "pcs"), "piece"),
    (("kg", "kilogram"), "kg"),
    (("gram", "gm"), "gram"),
    (("yard",), "yard"),
    (("dozen",), "dozen"),
    (("set",), "set"),
    (("liter", "litre"), "liter"),
]


def normalize_uom(uom: Optional[str]) -> str:
    """Map free-text units (``Mtrs``, ``PCS``, ``Kilograms``) to a canonical unit."""
    if not uom:
        return "meter"
    lowered = uom.lower()
    for aliases, canonical in UOM_ALIASES:
        if any(alias in lowered for alias in aliases):
            return canonical
    return "meter"


def product_category(line: Dict[str, Any]) -> str:
    """Lines with fabric attributes (color, gsm, width) are fabric, the rest accessories."""
    if line.get("color") or line.get("gsm") or line.get("width"):
        return ProductCategory.FABRIC.value
    return ProductCategory.ACCESSORIES.value


class InventoryService:
    """Posts GRN lines to stock."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sequences = DocumentSequenceService(db)
        self.notifications = NotificationService(db)

    async def add_to_inventory(
        self,
        grn_id: uuid.UUID,
        location: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Post a verified/approved GRN to inventory.

        Args:
            grn_id: GRN to post
            location: Warehouse location (defaults to DEFAULT_INVENTORY_LOCATION)
            user_id: Acting user

        Returns:
            {"grn", "inventory_items", "movements"}

        Raises:
            NotFoundError: GRN missing
            AlreadyAddedError: GRN already posted
            NotYetVerifiedError: verification not cleared
        """
        grn = await self.db.get(GoodsReceiptNote, grn_id)
        if not grn:
            raise NotFoundError("GRN", grn_id)

        if grn.inventory_added:
            raise AlreadyAddedError(
                f"GRN {grn.grn_number} has already been added to inventory",
                current_state="inventory_added",
                expected_state="not_added",
            )
        if grn.verification_status not in POSTABLE_VERIFICATION:
            raise NotYetVerifiedError(
                f"GRN {grn.grn_number} must be verified or have its discrepancy approved "
                f"before posting (verification_status='{grn.verification_status}')",
                current_state=grn.verification_status,
                expected_state=POSTABLE_VERIFICATION,
            )

        po = await self.db.get(PurchaseOrder, grn.purchase_order_id)
        if not po:
            raise NotFoundError("PO", grn.purchase_order_id)

        location = location or settings.DEFAULT_INVENTORY_LOCATION
        inventory_items: List[Inventory] = []
        movements: List[InventoryMovement] = []

        for line in grn.items_received or []:
            quantity = to_decimal(line.get("accepted_quantity", line.get("received_quantity")))
            if quantity <= 0:
                logger.debug(f"Skipping line {line.get('item_index')} of {grn.grn_number}: nothing accepted")
                continue

            product = await self._get_or_create_product(line, user_id)
            inventory, movement = await self._post_line(grn, po, line, product, quantity, location, user_id)
            inventory_items.append(inventory)
            movements.append(movement)

        apply_grn_transition(grn, GRNAction.POST_INVENTORY)
        grn.inventory_added = True
        grn.inventory_added_date = datetime.now(timezone.utc)
        grn.inventory_location = location
        transition_po(po, POStatus.COMPLETED, user_id)

        await flush_or_raise(self.db, "inventory posting")

        self.notifications.notify(
            NotificationType.INVENTORY_ADDED,
            title=f"{grn.grn_number} added to inventory",
            message=f"{len(inventory_items)} item(s) posted to {location} for PO {po.po_number}",
            department="inventory",
            entity_type="grn",
            entity_id=grn.id,
            actor_id=user_id,
            data={"purchase_order_id": po.id, "barcodes": [i.barcode for i in inventory_items]},
        )
        logger.info(f"{grn.grn_number} posted: {len(inventory_items)} batch(es) at {location}, PO {po.po_number} completed")

        return {"grn": grn, "inventory_items": inventory_items, "movements": movements}

    async def _get_or_create_product(self, line: Dict[str, Any], user_id: Optional[uuid.UUID]) -> Product:
        """Find a product by material name, creating it on first receipt."""
        name = (line.get("material_name") or "").strip() or f"Item {line.get('item_index', 0) + 1}"

        result = await self.db.execute(select(Product).where(Product.name == name))
        product = result.scalar_one_or_none()
        if product:
            return product

        product = Product(
            name=name,
            product_code=await self._new_product_code(line.get("product_code")),
            category=product_category(line),
            uom=normalize_uom(line.get("uom")),
            description=line.get("remarks") or None,
            created_by=user_id,
        )
        self.db.add(product)
        await flush_or_raise(self.db, "product creation")
        logger.info(f"Created product {product.product_code} '{name}' ({product.category}, {product.uom})")
        return product

    async def _new_product_code(self, requested: Optional[str]) -> str:
        if requested:
            result = await self.db.execute(select(Product.id).where(Product.product_code == requested))
            if result.first() is None:
                return requested
        return f"PRD-{uuid.uuid4().hex[:10].upper()}"

    async def _post_line(
        self,
        grn: GoodsReceiptNote,
        po: PurchaseOrder,
        line: Dict[str, Any],
        product: Product,
        quantity: Decimal,
        location: str,
        user_id: Optional[uuid.UUID],
    ):
        rate = to_decimal(line.get("rate"))
        total_cost = money(quantity * rate)
        uom = line.get("uom") or settings.DEFAULT_UOM

        notes = f"Received from {grn.grn_number}, PO {po.po_number}"
        if to_decimal(line.get("shortage_quantity")) > 0:
            notes += (
                f". Shortage: {line.get('shortage_quantity')} {uom} short "
                f"(expected {line.get('ordered_quantity')}, received {line.get('received_quantity')})"
            )

        inventory = Inventory(
            barcode=await self.sequences.get_next_number(DocumentPrefix.INV.value),
            product_id=product.id,
            purchase_order_id=po.id,
            grn_id=grn.id,
            item_index=line.get("item_index", 0),
            quantity=quantity,
            uom=uom,
            unit_cost=rate,
            total_cost=total_cost,
            location=location,
            stock_type="general_extra",
            notes=notes,
            created_by=user_id,
        )
        self.db.add(inventory)
        await flush_or_raise(self.db, "inventory creation")

        movement = InventoryMovement(
            inventory_id=inventory.id,
            purchase_order_id=po.id,
            grn_id=grn.id,
            movement_type=MovementType.INWARD.value,
            quantity=quantity,
            previous_quantity=Decimal("0"),
            new_quantity=quantity,
            unit_cost=rate,
            total_cost=total_cost,
            location_from=f"Vendor {po.vendor_id}",
            location_to=location,
            reference_number=grn.grn_number,
            performed_by=user_id,
            notes=f"Inward from {grn.grn_number}",
            extra_data={"item_index": line.get("item_index"), "material_name": line.get("material_name")},
        )
        self.db.add(movement)
        return inventory, movement
