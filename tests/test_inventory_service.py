"""Inventory posting from verified GRNs."""
import re
import uuid

import pytest
from sqlalchemy import select, func

from erp_receiving.exceptions import NotFoundError, AlreadyAddedError, NotYetVerifiedError
from erp_receiving.models import Inventory, InventoryMovement, Product
from erp_receiving.services.grn_service import GRNService
from erp_receiving.services.inventory_service import InventoryService, normalize_uom, product_category
from tests.conftest import make_po


async def verified_grn(db, po, *quantities):
    service = GRNService(db)
    items = [{"item_index": i, "received_qty": qty} for i, qty in enumerate(quantities)]
    grn = (await service.create_from_po(po.id, items))["grn"]
    await service.verify(grn.id, "verified")
    return grn


async def count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.parametrize("uom,expected", [
    ("Meters", "meter"),
    ("MTR", "meter"),
    ("Pcs", "piece"),
    ("Kilograms", "kg"),
    ("gm", "gram"),
    ("Dozen", "dozen"),
    ("Litres", "liter"),
    (None, "meter"),
    ("bolt", "meter"),
])
def test_normalize_uom(uom, expected):
    assert normalize_uom(uom) == expected


def test_product_category():
    assert product_category({"color": "Navy"}) == "fabric"
    assert product_category({"gsm": 120}) == "fabric"
    assert product_category({"material_name": "Buttons"}) == "accessories"


class TestAddToInventory:

    async def test_posting(self, db, purchase_order, user_id):
        grn = await verified_grn(db, purchase_order, 100)

        result = await InventoryService(db).add_to_inventory(grn.id, user_id=user_id)

        [batch] = result["inventory_items"]
        [movement] = result["movements"]
        assert re.fullmatch(r"INV-\d{8}-\d{5}", batch.barcode)
        assert batch.quantity == 100
        assert batch.total_cost == 1000
        assert batch.location == "Main Warehouse"
        assert batch.grn_id == grn.id
        assert movement.movement_type == "inward"
        assert movement.inventory_id == batch.id
        assert movement.new_quantity == 100
        assert movement.reference_number == grn.grn_number

        assert grn.inventory_added is True
        assert grn.inventory_added_date is not None
        assert grn.state == ("approved", "verified")
        assert purchase_order.status == "completed"
        assert purchase_order.completed_at is not None

        product = await db.get(Product, batch.product_id)
        assert product.name == "Cotton Poplin"
        assert product.product_code == "FAB-CP-01"
        assert product.category == "fabric"
        assert product.uom == "meter"

    async def test_one_batch_and_movement_per_line(self, db, multi_item_po):
        grn = await verified_grn(db, multi_item_po, 100, 0, 20)

        result = await InventoryService(db).add_to_inventory(grn.id, location="Rack B2")

        assert [b.item_index for b in result["inventory_items"]] == [0, 2]
        assert len(result["movements"]) == 2
        assert {b.location for b in result["inventory_items"]} == {"Rack B2"}
        assert grn.inventory_location == "Rack B2"
        assert await count(db, Inventory) == 2
        assert await count(db, InventoryMovement) == 2

        categories = dict((await db.execute(select(Product.name, Product.category))).all())
        assert categories == {"Cotton Poplin": "fabric", "Metal Buttons": "accessories"}

    async def test_posting_twice_is_refused(self, db, purchase_order):
        grn = await verified_grn(db, purchase_order, 100)
        service = InventoryService(db)
        await service.add_to_inventory(grn.id)

        with pytest.raises(AlreadyAddedError):
            await service.add_to_inventory(grn.id)
        assert await count(db, Inventory) == 1
        assert await count(db, InventoryMovement) == 1

    async def test_unverified_grn_is_refused(self, db, purchase_order):
        grn = (await GRNService(db).create_from_po(purchase_order.id, [{"item_index": 0, "received_qty": 80}]))["grn"]

        with pytest.raises(NotYetVerifiedError) as exc_info:
            await InventoryService(db).add_to_inventory(grn.id)
        assert exc_info.value.details["current_state"] == "pending"
        assert grn.inventory_added is False

    async def test_rejected_grn_is_refused(self, db, purchase_order):
        service = GRNService(db)
        grn = (await service.create_from_po(purchase_order.id, [{"item_index": 0, "received_qty": 80}]))["grn"]
        await service.verify(grn.id, "discrepancy")
        await service.approve_discrepancy(grn.id, "reject")

        with pytest.raises(NotYetVerifiedError):
            await InventoryService(db).add_to_inventory(grn.id)

    async def test_approved_discrepancy_posts_received_quantity(self, db, purchase_order):
        service = GRNService(db)
        grn = (await service.create_from_po(purchase_order.id, [{"item_index": 0, "received_qty": 80}]))["grn"]
        await service.verify(grn.id, "discrepancy")
        await service.approve_discrepancy(grn.id, "approve")

        result = await InventoryService(db).add_to_inventory(grn.id)

        [batch] = result["inventory_items"]
        assert batch.quantity == 80
        assert "Shortage: 20" in batch.notes
        assert grn.state == ("approved", "approved")

    async def test_existing_product_is_reused(self, db, vendor, purchase_order):
        first = await verified_grn(db, purchase_order, 100)
        await InventoryService(db).add_to_inventory(first.id)

        repeat_po = await make_po(db, vendor, [
            {"product_name": "Cotton Poplin", "product_code": "FAB-CP-01", "quantity": 40, "rate": 11, "uom": "Meters"},
        ], number="PO-20261019-00009")
        second = await verified_grn(db, repeat_po, 40)
        await InventoryService(db).add_to_inventory(second.id)

        assert await count(db, Product) == 1
        assert await count(db, Inventory) == 2

    async def test_taken_product_code_gets_generated_code(self, db, vendor, purchase_order):
        first = await verified_grn(db, purchase_order, 100)
        await InventoryService(db).add_to_inventory(first.id)

        other_po = await make_po(db, vendor, [
            {"product_name": "Cotton Voile", "product_code": "FAB-CP-01", "quantity": 10, "rate": 9, "color": "Ivory"},
        ], number="PO-20261019-00010")
        grn = await verified_grn(db, other_po, 10)
        result = await InventoryService(db).add_to_inventory(grn.id)

        product = await db.get(Product, result["inventory_items"][0].product_id)
        assert product.product_code.startswith("PRD-")

    async def test_missing_grn(self, db):
        with pytest.raises(NotFoundError):
            await InventoryService(db).add_to_inventory(uuid.uuid4())
