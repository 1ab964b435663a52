"""Receipt discrepancy math: per-line quantities and vendor claim derivation."""
from decimal import Decimal

import pytest

from erp_receiving.exceptions import ValidationError
from erp_receiving.models.purchase import GoodsReceiptNote
from erp_receiving.services.shortage import (
    compute_line,
    build_grn_line,
    summarize_lines,
    compute_shortage_return,
    compute_excess_return,
    compute_manual_return_total,
    as_json_number,
)


PO_ITEM = {"product_name": "Cotton Poplin", "product_code": "FAB-CP-01", "quantity": 100, "rate": 10, "uom": "Meters"}


class TestComputeLine:

    def test_short_delivery(self):
        line = compute_line(100, 80, rate=10)
        assert line.shortage_quantity == Decimal("20")
        assert line.overage_quantity == 0
        assert line.discrepancy_flag is True
        assert line.total == Decimal("800.00")

    def test_exact_delivery_has_no_discrepancy(self):
        line = compute_line(100, 100, rate=10)
        assert line.shortage_quantity == 0
        assert line.overage_quantity == 0
        assert line.discrepancy_flag is False

    def test_over_delivery(self):
        line = compute_line(100, 120, rate=10)
        assert line.shortage_quantity == 0
        assert line.overage_quantity == Decimal("20")
        assert line.discrepancy_flag is True

    def test_invoiced_defaults_to_ordered(self):
        line = compute_line(100, 90)
        assert line.invoiced_quantity == Decimal("100")
        assert line.has_invoice_mismatch is False

    def test_invoice_mismatch_without_shortage(self):
        # Vendor invoiced 90 and shipped 90 against an order of 100.
        line = compute_line(100, 90, rate=10, invoiced_quantity=90)
        assert line.shortage_quantity == 0
        assert line.overage_quantity == 0
        assert line.has_invoice_mismatch
        assert line.discrepancy_flag is True

    def test_shortage_measured_against_lower_of_ordered_and_invoiced(self):
        line = compute_line(100, 70, invoiced_quantity=90)
        assert line.shortage_quantity == Decimal("20")

    def test_overage_measured_against_higher_of_ordered_and_invoiced(self):
        line = compute_line(100, 130, invoiced_quantity=110)
        assert line.overage_quantity == Decimal("20")

    def test_decimal_quantities_keep_precision(self):
        line = compute_line("10.5", "10.2", rate="3.3")
        assert line.shortage_quantity == Decimal("0.3")
        assert line.total == Decimal("33.66")

    @pytest.mark.parametrize("field,args", [
        ("ordered_quantity", (-1, 0)),
        ("received_quantity", (10, -5)),
        ("rate", (10, 5, -1)),
    ])
    def test_negative_values_rejected(self, field, args):
        with pytest.raises(ValidationError) as exc_info:
            compute_line(*args)
        assert exc_info.value.details["field"] == field

    def test_non_numeric_rejected(self):
        with pytest.raises(ValidationError):
            compute_line("ten", 5)


class TestBuildGRNLine:

    def test_line_from_po_item(self):
        line = build_grn_line(0, PO_ITEM, 80, remarks="two rolls short")

        assert line["item_index"] == 0
        assert line["material_name"] == "Cotton Poplin"
        assert line["product_code"] == "FAB-CP-01"
        assert line["ordered_quantity"] == 100
        assert line["invoiced_quantity"] == 100
        assert line["received_quantity"] == 80
        assert line["accepted_quantity"] == 80
        assert line["shortage_quantity"] == 20
        assert line["overage_quantity"] == 0
        assert line["total"] == 800
        assert line["discrepancy_flag"] is True
        assert line["remarks"] == "two rolls short"

    def test_line_from_shortage_request_item(self):
        request_item = {"material_name": "Cotton Poplin", "shortage_qty": 20, "rate": 10, "uom": "Meters"}
        line = build_grn_line(0, request_item, 20)

        assert line["ordered_quantity"] == 20
        assert line["shortage_quantity"] == 0
        assert line["discrepancy_flag"] is False

    def test_missing_uom_uses_default(self):
        line = build_grn_line(1, {"product_name": "Zip", "quantity": 5, "rate": 1}, 5, default_uom="Pcs")
        assert line["uom"] == "Pcs"

    def test_summarize_lines(self):
        lines = [
            build_grn_line(0, PO_ITEM, 80),
            build_grn_line(1, {"product_name": "Thread", "quantity": 50, "rate": 4}, 60),
            build_grn_line(2, {"product_name": "Buttons", "quantity": 20, "rate": 2.5}, 20, invoiced_quantity=18),
        ]
        totals = summarize_lines(lines)

        assert totals.ordered_quantity == Decimal("170")
        assert totals.received_quantity == Decimal("160")
        assert totals.shortage_quantity == Decimal("20")
        assert totals.overage_quantity == Decimal("10")
        assert totals.received_value == Decimal("1090.00")
        assert (totals.shortage_lines, totals.overage_lines, totals.invoice_mismatch_lines) == (1, 1, 1)
        assert totals.has_discrepancy


class TestShortageReturn:

    def test_total_is_sum_of_line_values(self):
        claim = compute_shortage_return([
            {"item_index": 0, "shortage_quantity": 20, "rate": 50},
            {"item_index": 1, "shortage_quantity": 5, "rate": 200},
        ])
        assert [item["shortage_value"] for item in claim.items] == [1000, 1000]
        assert claim.total_value == Decimal("2000.00")

    def test_lines_without_shortage_are_dropped(self):
        claim = compute_shortage_return([
            {"item_index": 0, "shortage_quantity": 0, "rate": 10},
            {"item_index": 1, "shortage_quantity": 3, "rate": 10},
        ])
        assert [item["item_index"] for item in claim.items] == [1]
        assert claim.total_value == Decimal("30.00")

    def test_empty_claim_is_falsy(self):
        claim = compute_shortage_return([build_grn_line(0, PO_ITEM, 100)])
        assert not claim
        assert claim.total_value == 0

    def test_grn_lines_and_complaint_lines_give_the_same_claim(self):
        grn_lines = [build_grn_line(0, PO_ITEM, 80)]
        from_grn = compute_shortage_return(grn_lines)
        from_complaint = compute_shortage_return(from_grn.items)

        assert from_complaint.items == from_grn.items
        assert from_complaint.total_value == from_grn.total_value == Decimal("200.00")

    def test_claim_line_shape(self):
        claim = compute_shortage_return([build_grn_line(0, PO_ITEM, 80)])
        item = claim.items[0]
        assert item["ordered_qty"] == 100
        assert item["received_qty"] == 80
        assert item["shortage_qty"] == 20
        assert item["material_name"] == "Cotton Poplin"

    def test_excess_return(self):
        claim = compute_excess_return([build_grn_line(0, PO_ITEM, 120)])
        assert claim.items[0]["return_qty"] == 20
        assert claim.total_value == Decimal("200.00")

    def test_manual_return_total(self):
        total = compute_manual_return_total([
            {"return_qty": 4, "rate": 12.5},
            {"shortage_qty": 2, "rate": 10},
        ])
        assert total == Decimal("70.00")


def test_as_json_number_keeps_integers():
    assert as_json_number(Decimal("20")) == 20
    assert isinstance(as_json_number(Decimal("20.000")), int)
    assert as_json_number(Decimal("2.5")) == 2.5


@pytest.mark.parametrize("lines,short,over", [
    ([{"shortage_quantity": "20", "overage_quantity": "0"}], True, False),
    ([{"shortage_quantity": "0.000", "overage_quantity": "2.5"}], False, True),
    ([{"shortage_quantity": None}, {}], False, False),
    ([], False, False),
])
def test_grn_discrepancy_flags_read_stored_quantities(lines, short, over):
    grn = GoodsReceiptNote(items_received=lines)
    assert grn.has_shortages is short
    assert grn.has_overages is over
