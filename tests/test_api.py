"""
HTTP tests for the receiving workflow.

Each request runs in its own session and transaction, as in production:
committed on success, rolled back when the endpoint raises.
"""
import uuid

from sqlalchemy import select, func

from erp_receiving.exceptions import PersistenceError
from erp_receiving.models import (
    Approval,
    GoodsReceiptNote,
    Inventory,
    InventoryMovement,
    Product,
    PurchaseOrder,
    VendorRequest,
)
from erp_receiving.services.inventory_service import InventoryService
from tests.conftest import auth_headers


API = "/api/v1"


async def count_rows(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def create_grn(client, headers, po_id, *quantities):
    response = await client.post(
        f"{API}/grn/from-po/{po_id}",
        json={"items_received": [{"item_index": i, "received_qty": q} for i, q in enumerate(quantities)]},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestReceivingFlow:

    async def test_order_to_stock_with_shortage_follow_up(
        self, client, vendor, procurement_headers, inventory_headers
    ):
        # Procurement raises the PO and asks for a GRN
        response = await client.post(
            f"{API}/purchase-orders",
            json={
                "vendor_id": str(vendor.id),
                "items": [{"product_name": "Cotton Poplin", "quantity": 100, "rate": 10, "uom": "Meters", "color": "White"}],
            },
            headers=procurement_headers,
        )
        assert response.status_code == 201, response.text
        po = response.json()
        assert po["status"] == "sent"
        assert po["po_number"].startswith("PO-")
        assert po["vendor"]["name"] == "Shree Textiles"
        assert po["total_amount"] == 1000

        response = await client.post(f"{API}/purchase-orders/{po['id']}/request-grn", headers=procurement_headers)
        assert response.status_code == 200, response.text
        assert response.json()["purchase_order"]["status"] == "grn_requested"
        request_approval_id = response.json()["approval"]["id"]

        response = await client.patch(f"{API}/approvals/{request_approval_id}/approve", headers=inventory_headers)
        assert response.status_code == 200, response.text
        assert response.json()["side_effects"] == {"purchase_order_status": "grn_approved"}

        # Inventory receives 80 of 100
        created = await create_grn(client, inventory_headers, po["id"], 80)
        grn = created["grn"]
        assert grn["grn_number"].startswith("GRN-")
        assert created["has_shortages"] is True
        assert created["vendor_return"]["total_shortage_value"] == 200
        assert created["vendor_return"]["return_type"] == "shortage"
        [complaint_id] = created["complaint_ids"]

        response = await client.get(f"{API}/approvals/{complaint_id}", headers=procurement_headers)
        complaint = response.json()
        assert complaint["stage_key"] == "grn_shortage_complaint"
        assert complaint["metadata"]["grn_id"] == grn["id"]
        assert complaint["metadata"]["items_affected"][0]["shortage_qty"] == 20

        # Verification flags the discrepancy, procurement accepts it
        response = await client.post(
            f"{API}/grn/{grn['id']}/verify",
            json={"verification_status": "discrepancy", "verification_notes": "Two rolls missing"},
            headers=inventory_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["next_step"] == "discrepancy_approval"

        response = await client.post(
            f"{API}/grn/{grn['id']}/approve-discrepancy",
            json={"decision": "approve", "approval_notes": "Accept and claim balance"},
            headers=procurement_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["message"] == "Discrepancy approved"
        assert response.json()["next_step"] == "add_to_inventory"

        response = await client.post(
            f"{API}/grn/{grn['id']}/add-to-inventory", json={"location": "Rack A1"}, headers=inventory_headers
        )
        assert response.status_code == 200, response.text
        posted = response.json()
        assert posted["grn"]["inventory_added"] is True
        assert [item["quantity"] for item in posted["inventory_items"]] == [80]
        assert posted["inventory_items"][0]["barcode"].startswith("INV-")
        assert posted["inventory_items"][0]["location"] == "Rack A1"
        assert len(posted["movements"]) == 1

        response = await client.get(f"{API}/purchase-orders/{po['id']}", headers=procurement_headers)
        assert response.json()["status"] == "completed"

        # Approving the shortage complaint reopens the PO and asks the vendor for the balance
        response = await client.patch(
            f"{API}/approvals/{complaint_id}/approve", json={"notes": "Vendor to ship 20 m"}, headers=procurement_headers
        )
        assert response.status_code == 200, response.text
        side_effects = response.json()["side_effects"]
        assert side_effects["purchase_order_status"] == "reopened"
        assert side_effects["vendor_request_number"].startswith("SR-")

        response = await client.get(
            f"{API}/vendor-returns/requests", params={"purchase_order_id": po["id"]}, headers=procurement_headers
        )
        [vendor_request] = response.json()
        assert vendor_request["status"] == "sent"
        assert vendor_request["total_value"] == 200

        # Follow-up GRN for the balance
        follow_up = await create_grn(client, inventory_headers, po["id"], 20)
        assert follow_up["grn"]["grn_sequence"] == 2
        assert follow_up["grn"]["is_first_grn"] is False
        assert follow_up["grn"]["original_grn_id"] == grn["id"]
        assert follow_up["vendor_return"] is None

        response = await client.get(f"{API}/purchase-orders/{po['id']}/grns", headers=inventory_headers)
        assert [g["grn_sequence"] for g in response.json()] == [1, 2]

        response = await client.get(f"{API}/vendor-returns/requests", headers=procurement_headers)
        assert response.json()[0]["status"] == "fulfilled"

        # Decisions and postings are one-shot
        response = await client.patch(f"{API}/approvals/{complaint_id}/approve", headers=procurement_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyProcessed"

        response = await client.post(f"{API}/grn/{grn['id']}/add-to-inventory", headers=inventory_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyAdded"

        response = await client.get(f"{API}/notifications", headers=inventory_headers)
        assert response.status_code == 200
        assert response.json()["total"] > 0

    async def test_excess_rejected_at_receipt(self, client, purchase_order, inventory_headers, procurement_headers):
        created = await create_grn(client, inventory_headers, purchase_order.id, 120)
        assert created["has_overages"] is True

        response = await client.post(
            f"{API}/grn/{created['grn']['id']}/handle-excess",
            json={"action": "auto_reject", "notes": "Return 20 m"},
            headers=procurement_headers,
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["vendor_return"]["return_type"] == "excess"
        assert body["grn"]["verification_status"] == "approved"

        response = await client.post(f"{API}/grn/{created['grn']['id']}/add-to-inventory", headers=inventory_headers)
        assert response.status_code == 200, response.text
        assert response.json()["inventory_items"][0]["quantity"] == 100


class TestMismatchRequestsAndPreview:

    async def test_preview_then_receive(self, client, purchase_order, inventory_headers, procurement_headers):
        response = await client.get(f"{API}/grn/create/{purchase_order.id}", headers=inventory_headers)
        assert response.status_code == 200, response.text
        preview = response.json()
        assert preview["is_first_grn"] is True
        assert preview["source"] == "purchase_order"
        assert preview["items"][0]["received_quantity"] == 100

        created = await create_grn(client, inventory_headers, purchase_order.id, 80)
        approval_id = created["complaint_ids"][0]
        response = await client.patch(f"{API}/approvals/{approval_id}/approve", json={}, headers=procurement_headers)
        assert response.status_code == 200, response.text

        preview = (await client.get(f"{API}/grn/create/{purchase_order.id}", headers=inventory_headers)).json()
        assert preview["source"] == "vendor_request"
        assert preview["grn_sequence"] == 2
        assert [(i["item_index"], i["ordered_quantity"]) for i in preview["items"]] == [(0, 20)]

    async def test_preview_refused_once_received(self, client, purchase_order, inventory_headers):
        await create_grn(client, inventory_headers, purchase_order.id, 100)

        response = await client.get(f"{API}/grn/create/{purchase_order.id}", headers=inventory_headers)
        assert response.status_code == 409

    async def test_mismatch_request_review(
        self, client, purchase_order, inventory_headers, procurement_headers
    ):
        created = await create_grn(client, inventory_headers, purchase_order.id, 80)
        grn_id = created["grn"]["id"]

        response = await client.post(
            f"{API}/grn/{grn_id}/create-mismatch-request",
            json={
                "mismatch_items": [{"item_index": 0, "shortage_reason": "Two rolls missing"}],
                "requested_action": "wait_for_remaining",
            },
            headers=inventory_headers,
        )
        assert response.status_code == 201, response.text
        request = response.json()
        assert request["mismatch_type"] == "shortage"
        assert request["total_shortage_value"] == 200
        assert request["status"] == "pending"

        listed = (await client.get(f"{API}/grn/mismatch-requests?status=pending", headers=inventory_headers)).json()
        assert [r["id"] for r in listed["items"]] == [request["id"]]
        fetched = await client.get(f"{API}/grn/mismatch-requests/{request['id']}", headers=inventory_headers)
        assert fetched.json()["request_number"] == request["request_number"]

        response = await client.post(
            f"{API}/grn/mismatch-requests/{request['id']}/approve",
            json={"approval_notes": "Wait for the rolls"},
            headers=inventory_headers,
        )
        assert response.status_code == 403

        response = await client.post(
            f"{API}/grn/mismatch-requests/{request['id']}/approve",
            json={"approval_notes": "Wait for the rolls"},
            headers=procurement_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"] == "approved"

        response = await client.post(
            f"{API}/grn/mismatch-requests/{request['id']}/reject", json={}, headers=procurement_headers
        )
        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyProcessed"

    async def test_mismatch_request_validation(self, client, purchase_order, inventory_headers):
        created = await create_grn(client, inventory_headers, purchase_order.id, 100)
        grn_id = created["grn"]["id"]

        response = await client.post(
            f"{API}/grn/{grn_id}/create-mismatch-request",
            json={"mismatch_items": [{"item_index": 0}], "requested_action": "shred"},
            headers=inventory_headers,
        )
        assert response.status_code == 422

        response = await client.post(
            f"{API}/grn/{grn_id}/create-mismatch-request",
            json={"mismatch_items": [{"item_index": 0}], "requested_action": "accept_shortage"},
            headers=inventory_headers,
        )
        assert response.status_code == 400

        response = await client.get(f"{API}/grn/mismatch-requests/{uuid.uuid4()}", headers=inventory_headers)
        assert response.status_code == 404

    async def test_delete_short_grn_reopens_receipt(
        self, client, session_factory, purchase_order, inventory_headers, admin_headers
    ):
        created = await create_grn(client, inventory_headers, purchase_order.id, 80)

        response = await client.delete(f"{API}/grn/{created['grn']['id']}", headers=admin_headers)
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["purchase_order_status"] == "grn_approved"
        assert body["canceled_approval_ids"] == created["complaint_ids"]

        async with session_factory() as session:
            complaint = await session.get(Approval, uuid.UUID(created["complaint_ids"][0]))
            assert complaint.status == "canceled"

        await create_grn(client, inventory_headers, purchase_order.id, 100)


class TestTransactions:

    async def test_failed_posting_leaves_nothing_behind(
        self, client, session_factory, multi_item_po, inventory_headers, monkeypatch
    ):
        created = await create_grn(client, inventory_headers, multi_item_po.id, 100, 50, 20)
        grn_id = created["grn"]["id"]
        response = await client.post(
            f"{API}/grn/{grn_id}/verify", json={"verification_status": "verified"}, headers=inventory_headers
        )
        assert response.status_code == 200

        original = InventoryService._get_or_create_product
        calls = []

        async def fail_on_second_line(self, line, user_id):
            calls.append(line["item_index"])
            if len(calls) == 2:
                raise PersistenceError(details={"operation": "product creation"})
            return await original(self, line, user_id)

        monkeypatch.setattr(InventoryService, "_get_or_create_product", fail_on_second_line)

        response = await client.post(f"{API}/grn/{grn_id}/add-to-inventory", headers=inventory_headers)

        assert response.status_code == 503
        assert response.json()["code"] == "PersistenceError"
        assert response.json()["retryable"] is True
        assert await count_rows(session_factory, Inventory) == 0
        assert await count_rows(session_factory, InventoryMovement) == 0
        assert await count_rows(session_factory, Product) == 0
        async with session_factory() as session:
            grn = await session.get(GoodsReceiptNote, uuid.UUID(grn_id))
            po = await session.get(PurchaseOrder, multi_item_po.id)
            assert grn.inventory_added is False
            assert grn.state == ("inspected", "verified")
            assert po.status == "received"

        monkeypatch.undo()
        response = await client.post(f"{API}/grn/{grn_id}/add-to-inventory", headers=inventory_headers)
        assert response.status_code == 200, response.text
        assert len(response.json()["inventory_items"]) == 3

    async def test_failed_side_effect_keeps_approval_pending(
        self, client, session_factory, purchase_order, inventory_headers, procurement_headers
    ):
        created = await create_grn(client, inventory_headers, purchase_order.id, 80)
        grn_id = created["grn"]["id"]
        [complaint_id] = created["complaint_ids"]
        await client.post(
            f"{API}/grn/{grn_id}/verify", json={"verification_status": "discrepancy"}, headers=inventory_headers
        )
        response = await client.post(
            f"{API}/grn/{grn_id}/approve-discrepancy", json={"decision": "reject"}, headers=procurement_headers
        )
        assert response.json()["grn"]["status"] == "rejected"

        # PO is rejected now, so it cannot be reopened
        response = await client.patch(f"{API}/approvals/{complaint_id}/approve", headers=procurement_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "InvalidPOStatus"
        async with session_factory() as session:
            approval = await session.get(Approval, uuid.UUID(complaint_id))
            assert approval.status == "pending"
            assert approval.decided_at is None
        assert await count_rows(session_factory, VendorRequest) == 0


class TestAccessAndErrors:

    async def test_missing_token(self, client):
        response = await client.get(f"{API}/grn")
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client):
        response = await client.get(f"{API}/grn", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    async def test_department_guard(self, client, purchase_order, procurement_headers, admin_headers):
        response = await client.post(
            f"{API}/grn/{uuid.uuid4()}/verify", json={"verification_status": "verified"}, headers=procurement_headers
        )
        assert response.status_code == 403

        # Admin passes every department check
        response = await client.post(
            f"{API}/grn/{uuid.uuid4()}/verify", json={"verification_status": "verified"}, headers=admin_headers
        )
        assert response.status_code == 404

    async def test_only_admin_deletes(self, client, purchase_order, inventory_headers, admin_headers):
        created = await create_grn(client, inventory_headers, purchase_order.id, 100)

        response = await client.delete(f"{API}/grn/{created['grn']['id']}", headers=inventory_headers)
        assert response.status_code == 403

        response = await client.delete(f"{API}/grn/{created['grn']['id']}", headers=admin_headers)
        assert response.status_code == 200
        response = await client.get(f"{API}/grn/{created['grn']['id']}", headers=admin_headers)
        assert response.status_code == 404

    async def test_not_found_shape(self, client, inventory_headers):
        grn_id = uuid.uuid4()
        response = await client.get(f"{API}/grn/{grn_id}", headers=inventory_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": "GRN not found", "code": "GRNNotFound", "entity_id": str(grn_id)}

    async def test_validation_errors(self, client, purchase_order, inventory_headers):
        response = await client.post(
            f"{API}/grn/from-po/{purchase_order.id}", json={"items_received": []}, headers=inventory_headers
        )
        assert response.status_code == 422

        response = await client.post(
            f"{API}/grn/from-po/{purchase_order.id}",
            json={"items_received": [{"item_index": 3, "received_qty": 5}]},
            headers=inventory_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ValidationError"

    async def test_state_conflict_carries_states(self, client, purchase_order, inventory_headers):
        created = await create_grn(client, inventory_headers, purchase_order.id, 100)

        response = await client.post(f"{API}/grn/{created['grn']['id']}/add-to-inventory", headers=inventory_headers)

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "NotYetVerified"
        assert body["current_state"] == "pending"
        assert body["expected_state"] == ["verified", "approved"]

    async def test_notifications_follow_department(self, client, purchase_order, inventory_headers):
        await create_grn(client, inventory_headers, purchase_order.id, 80)

        response = await client.get(f"{API}/notifications", headers=auth_headers("finance"))
        assert response.json()["total"] == 0

        response = await client.get(f"{API}/notifications", headers=inventory_headers)
        titles = [n["title"] for n in response.json()["items"]]
        assert any("awaiting verification" in title for title in titles)

        notification_id = response.json()["items"][0]["id"]
        response = await client.patch(f"{API}/notifications/{notification_id}/read", headers=inventory_headers)
        assert response.json()["is_read"] is True


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
