"""Inventory models for stock posted from goods receipts."""
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, ForeignKey, Integer, DateTime, Numeric
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship
import uuid

from erp_receiving.database import Base
from erp_receiving.db_types import UUIDType, JSONType


class ProductCategory(str, Enum):
    """Material category derived from the unit of measure."""
    FABRIC = "fabric"
    ACCESSORIES = "accessories"


class MovementType(str, Enum):
    """Inventory movement type enum."""
    INWARD = "inward"  # Receipt from vendor
    OUTWARD = "outward"  # Issue to production / dispatch
    ADJUSTMENT = "adjustment"  # Stock count correction
    RETURN = "return"  # Returned to vendor


class Product(Base):
    """Material master. Created on first receipt when the name is unknown."""

    __tablename__ = "products"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False, unique=True, index=True)
    product_code = Column(String(50), nullable=False, unique=True)
    category = Column(String(30), default=ProductCategory.FABRIC.value, nullable=False, comment="fabric, accessories")
    uom = Column(String(20), nullable=False, default="Meters")
    description = Column(Text)

    created_by = Column(UUIDType)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<Product(code='{self.product_code}', name='{self.name}')>"


class Inventory(Base):
    """Stock batch created from one GRN line."""

    __tablename__ = "inventory"
    __table_args__ = (
        UniqueConstraint("grn_id", "item_index", name="uq_inventory_grn_line"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    barcode = Column(String(30), nullable=False, unique=True, index=True, comment="INV-YYYYMMDD-NNNNN")
    product_id = Column(UUIDType, ForeignKey("products.id"), nullable=False, index=True)

    # Procurement info
    purchase_order_id = Column(UUIDType, ForeignKey("purchase_orders.id"), index=True)
    grn_id = Column(UUIDType, ForeignKey("goods_receipt_notes.id"), index=True)
    item_index = Column(Integer, nullable=False)

    quantity = Column(Numeric(14, 3), nullable=False, default=0)
    uom = Column(String(20), nullable=False)
    unit_cost = Column(Numeric(14, 2), default=0)
    total_cost = Column(Numeric(14, 2), default=0)

    location = Column(String(100), nullable=False)
    stock_type = Column(String(30), default="general_extra", nullable=False)
    notes = Column(Text)

    created_by = Column(UUIDType)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    product = relationship("Product")

    def __repr__(self):
        return f"<Inventory(barcode='{self.barcode}', qty={self.quantity})>"


class InventoryMovement(Base):
    """Inventory movement audit trail."""

    __tablename__ = "inventory_movements"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    inventory_id = Column(UUIDType, ForeignKey("inventory.id"), nullable=False, index=True)
    purchase_order_id = Column(UUIDType, ForeignKey("purchase_orders.id"))
    grn_id = Column(UUIDType, ForeignKey("goods_receipt_notes.id"), index=True)

    movement_type = Column(String(20), nullable=False, comment="inward, outward, adjustment, return")
    quantity = Column(Numeric(14, 3), nullable=False)
    previous_quantity = Column(Numeric(14, 3), default=0)
    new_quantity = Column(Numeric(14, 3), default=0)
    unit_cost = Column(Numeric(14, 2), default=0)
    total_cost = Column(Numeric(14, 2), default=0)

    location_from = Column(String(200))
    location_to = Column(String(100))
    reference_number = Column(String(50), index=True)  # GRN number

    performed_by = Column(UUIDType)
    movement_date = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    notes = Column(Text)
    extra_data = Column(JSONType, default=dict)

    inventory = relationship("Inventory")

    def __repr__(self):
        return f"<InventoryMovement(type='{self.movement_type}', qty={self.quantity})>"
