"""Vendor returns and shortage requests."""
import uuid

import pytest

from erp_receiving.exceptions import ValidationError, NotFoundError, StateConflictError
from erp_receiving.services.approval_service import ApprovalService
from erp_receiving.services.grn_service import GRNService
from erp_receiving.services.vendor_return_service import VendorReturnService
from tests.conftest import make_po


async def shortage_return(db, po, received_qty=80):
    result = await GRNService(db).create_from_po(po.id, [{"item_index": 0, "received_qty": received_qty}])
    return result["grn"], result["vendor_return"]


class TestShortageReturn:

    async def test_one_shortage_return_per_grn(self, db, purchase_order):
        grn, vendor_return = await shortage_return(db, purchase_order)

        again = await VendorReturnService(db).create_shortage_return(grn, purchase_order)

        assert again is None
        listed = await VendorReturnService(db).list_returns(purchase_order_id=purchase_order.id)
        assert listed["total"] == 1
        assert listed["items"][0].id == vendor_return.id

    async def test_claim_is_a_snapshot(self, db, purchase_order):
        grn, vendor_return = await shortage_return(db, purchase_order)

        grn.items_received = [{**grn.items_received[0], "shortage_quantity": 5}]

        assert vendor_return.items[0]["shortage_qty"] == 20
        assert vendor_return.total_shortage_value == 200


class TestUpdateStatus:

    async def test_vendor_response(self, db, purchase_order):
        _, vendor_return = await shortage_return(db, purchase_order)

        updated = await VendorReturnService(db).update_status(
            vendor_return.id, "acknowledged", vendor_response="Dispatching balance next week"
        )

        assert updated.status == "acknowledged"
        assert updated.vendor_response == "Dispatching balance next week"
        assert updated.vendor_response_date is not None
        assert updated.resolution_date is None

    async def test_resolution_defaults_to_claim_value(self, db, purchase_order, user_id):
        _, vendor_return = await shortage_return(db, purchase_order)

        updated = await VendorReturnService(db).update_status(
            vendor_return.id, "resolved", resolution_type="credit_note", user_id=user_id
        )

        assert updated.resolution_type == "credit_note"
        assert updated.resolution_amount == 200
        assert updated.resolution_date is not None
        assert updated.approved_by == user_id

    async def test_closed_return_is_final(self, db, purchase_order):
        _, vendor_return = await shortage_return(db, purchase_order)
        service = VendorReturnService(db)
        await service.update_status(vendor_return.id, "closed")

        with pytest.raises(StateConflictError):
            await service.update_status(vendor_return.id, "pending")

    @pytest.mark.parametrize("status,resolution_type", [
        ("shipped", None),
        ("resolved", "voucher"),
    ])
    async def test_invalid_values(self, db, purchase_order, status, resolution_type):
        _, vendor_return = await shortage_return(db, purchase_order)

        with pytest.raises(ValidationError):
            await VendorReturnService(db).update_status(vendor_return.id, status, resolution_type=resolution_type)
        assert vendor_return.status == "pending"

    async def test_missing_return(self, db):
        with pytest.raises(NotFoundError):
            await VendorReturnService(db).update_status(uuid.uuid4(), "acknowledged")


class TestManualReturn:

    async def test_create(self, db, purchase_order, user_id):
        grn, _ = await shortage_return(db, purchase_order, received_qty=100)

        vendor_return = await VendorReturnService(db).create_manual_return(
            purchase_order.id,
            [{"material_name": "Cotton Poplin", "return_qty": 4, "rate": 10, "reason": "Stained rolls"}],
            return_type="quality_issue",
            grn_id=grn.id,
            remarks="Found at cutting",
            user_id=user_id,
        )

        assert vendor_return.return_number.startswith("VR-")
        assert vendor_return.return_type == "quality_issue"
        assert vendor_return.total_shortage_value == 40
        assert vendor_return.vendor_id == purchase_order.vendor_id
        assert vendor_return.created_by == user_id

    async def test_grn_must_belong_to_po(self, db, vendor, purchase_order):
        other_po = await make_po(db, vendor, [{"product_name": "Lining", "quantity": 10, "rate": 5}], number="PO-20261019-00042")
        grn, _ = await shortage_return(db, other_po, received_qty=10)

        with pytest.raises(NotFoundError):
            await VendorReturnService(db).create_manual_return(
                purchase_order.id, [{"return_qty": 1, "rate": 10}], grn_id=grn.id
            )

    @pytest.mark.parametrize("items,return_type", [
        ([], "other"),
        ([{"return_qty": 1, "rate": 1}], "lost_in_transit"),
    ])
    async def test_invalid_input(self, db, purchase_order, items, return_type):
        with pytest.raises(ValidationError):
            await VendorReturnService(db).create_manual_return(purchase_order.id, items, return_type=return_type)

    async def test_list_by_type(self, db, purchase_order):
        await shortage_return(db, purchase_order)
        service = VendorReturnService(db)
        await service.create_manual_return(purchase_order.id, [{"return_qty": 1, "rate": 10}], return_type="damaged")

        assert (await service.list_returns(return_type="damaged"))["total"] == 1
        assert (await service.list_returns(return_type="shortage"))["total"] == 1
        assert (await service.list_returns(vendor_id=purchase_order.vendor_id))["total"] == 2


class TestWithdrawForGRN:

    async def test_acknowledged_return_is_closed_and_manual_return_unlinked(self, db, purchase_order):
        grn, vendor_return = await shortage_return(db, purchase_order)
        service = VendorReturnService(db)
        await service.update_status(vendor_return.id, "acknowledged", vendor_response="Will ship")
        manual = await service.create_manual_return(
            purchase_order.id,
            [{"material_name": "Cotton Poplin", "return_qty": 4, "rate": 10, "reason": "Stained rolls"}],
            return_type="quality_issue",
            grn_id=grn.id,
        )

        result = await service.withdraw_for_grn(grn)

        assert result == {
            "removed_returns": [],
            "closed_returns": [vendor_return.return_number],
            "cancelled_requests": [],
        }
        assert vendor_return.status == "closed"
        assert vendor_return.grn_id is None
        assert vendor_return.resolution_notes == f"{grn.grn_number} deleted"
        assert manual.status == "pending"
        assert manual.grn_id is None

    async def test_pending_return_is_removed(self, db, purchase_order):
        grn, vendor_return = await shortage_return(db, purchase_order)

        result = await VendorReturnService(db).withdraw_for_grn(grn)

        assert result["removed_returns"] == [vendor_return.return_number]
        listed = await VendorReturnService(db).list_returns(purchase_order_id=purchase_order.id)
        assert listed["total"] == 0


class TestVendorRequests:

    async def test_request_lifecycle(self, db, purchase_order):
        grn, _ = await shortage_return(db, purchase_order)
        [complaint] = (await ApprovalService(db).list_approvals(entity_id=purchase_order.id))["items"]
        _, side_effects = await ApprovalService(db).approve(complaint.id)
        service = VendorReturnService(db)

        request = await service.update_request_status(side_effects["vendor_request_id"], "in_transit")
        assert request.status == "in_transit"
        assert await service.get_open_shortage_request(purchase_order.id) is request

        await service.update_request_status(request.id, "cancelled")
        assert await service.get_open_shortage_request(purchase_order.id) is None
        with pytest.raises(StateConflictError):
            await service.update_request_status(request.id, "sent")

    async def test_unknown_status(self, db):
        with pytest.raises(ValidationError):
            await VendorReturnService(db).update_request_status(uuid.uuid4(), "lost")
