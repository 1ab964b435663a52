"""
Receipt discrepancy math.

Pure functions, no database access. Both the GRN engine and the approval
gate derive vendor claims through compute_shortage_return so the claimed
value can never differ between the two paths.

Per GRN line:
    invoiced  = invoiced_qty if supplied else ordered
    shortage  = min(ordered, invoiced) - received   when received is below both
    overage   = received - max(ordered, invoiced)   when received is above both
    discrepancy_flag = shortage or overage or invoiced != ordered
    total     = received * rate
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from erp_receiving.exceptions import ValidationError


TWO_PLACES = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce JSON/str/float quantities to Decimal without float noise."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValidationError(f"Invalid numeric value: {value!r}")


def money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def as_json_number(value: Decimal) -> float | int:
    """JSON-friendly number: integral values stay ints."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass
class LineDiscrepancy:
    """Outcome of comparing one received line against the order."""
    ordered_quantity: Decimal
    invoiced_quantity: Decimal
    received_quantity: Decimal
    shortage_quantity: Decimal
    overage_quantity: Decimal
    discrepancy_flag: bool
    rate: Decimal
    total: Decimal

    @property
    def has_shortage(self) -> bool:
        return self.shortage_quantity > 0

    @property
    def has_overage(self) -> bool:
        return self.overage_quantity > 0

    @property
    def has_invoice_mismatch(self) -> bool:
        return self.invoiced_quantity != self.ordered_quantity


def compute_line(
    ordered_quantity: Any,
    received_quantity: Any,
    rate: Any = 0,
    invoiced_quantity: Any = None,
) -> LineDiscrepancy:
    """
    Compare received against ordered/invoiced quantities for one line.

    Raises:
        ValidationError: on negative quantities or rate
    """
    ordered = to_decimal(ordered_quantity)
    received = to_decimal(received_quantity)
    invoiced = ordered if invoiced_quantity is None else to_decimal(invoiced_quantity)
    unit_rate = to_decimal(rate)

    for name, value in (
        ("ordered_quantity", ordered),
        ("invoiced_quantity", invoiced),
        ("received_quantity", received),
        ("rate", unit_rate),
    ):
        if value < 0:
            raise ValidationError(f"{name} cannot be negative", details={"field": name})

    lower = min(ordered, invoiced)
    upper = max(ordered, invoiced)
    shortage = lower - received if received < lower else Decimal("0")
    overage = received - upper if received > upper else Decimal("0")

    return LineDiscrepancy(
        ordered_quantity=ordered,
        invoiced_quantity=invoiced,
        received_quantity=received,
        shortage_quantity=shortage,
        overage_quantity=overage,
        discrepancy_flag=shortage > 0 or overage > 0 or invoiced != ordered,
        rate=unit_rate,
        total=money(received * unit_rate),
    )


def build_grn_line(
    item_index: int,
    source_item: Dict[str, Any],
    received_quantity: Any,
    invoiced_quantity: Any = None,
    remarks: Optional[str] = None,
    default_uom: str = "Meters",
) -> Dict[str, Any]:
    """
    Build the JSON line stored on a GRN from a PO (or vendor request) item.

    ``source_item`` is an order snapshot line: ``quantity`` (or a shortage
    line's ``shortage_qty``), ``rate``, ``product_name``/``material_name``,
    ``product_code``, ``uom``.
    """
    ordered = source_item.get("quantity")
    if ordered is None:
        ordered = source_item.get("shortage_qty", source_item.get("shortage_quantity"))
    line = compute_line(ordered, received_quantity, source_item.get("rate", 0), invoiced_quantity)

    return {
        "item_index": item_index,
        "material_name": source_item.get("product_name") or source_item.get("material_name") or "",
        "product_code": source_item.get("product_code") or "",
        "color": source_item.get("color") or "",
        "uom": source_item.get("uom") or source_item.get("unit") or default_uom,
        "ordered_quantity": as_json_number(line.ordered_quantity),
        "invoiced_quantity": as_json_number(line.invoiced_quantity),
        "received_quantity": as_json_number(line.received_quantity),
        "accepted_quantity": as_json_number(line.received_quantity),
        "shortage_quantity": as_json_number(line.shortage_quantity),
        "overage_quantity": as_json_number(line.overage_quantity),
        "discrepancy_flag": line.discrepancy_flag,
        "rate": as_json_number(line.rate),
        "total": as_json_number(line.total),
        "remarks": remarks or "",
    }


@dataclass
class GRNTotals:
    """Header totals for a set of GRN lines."""
    ordered_quantity: Decimal = Decimal("0")
    received_quantity: Decimal = Decimal("0")
    shortage_quantity: Decimal = Decimal("0")
    overage_quantity: Decimal = Decimal("0")
    received_value: Decimal = Decimal("0")
    shortage_lines: int = 0
    overage_lines: int = 0
    invoice_mismatch_lines: int = 0

    @property
    def has_discrepancy(self) -> bool:
        return bool(self.shortage_lines or self.overage_lines or self.invoice_mismatch_lines)


def summarize_lines(lines: Iterable[Dict[str, Any]]) -> GRNTotals:
    totals = GRNTotals()
    for line in lines:
        totals.ordered_quantity += to_decimal(line.get("ordered_quantity"))
        totals.received_quantity += to_decimal(line.get("received_quantity"))
        totals.shortage_quantity += to_decimal(line.get("shortage_quantity"))
        totals.overage_quantity += to_decimal(line.get("overage_quantity"))
        totals.received_value += to_decimal(line.get("total"))
        if to_decimal(line.get("shortage_quantity")) > 0:
            totals.shortage_lines += 1
        if to_decimal(line.get("overage_quantity")) > 0:
            totals.overage_lines += 1
        if to_decimal(line.get("invoiced_quantity")) != to_decimal(line.get("ordered_quantity")):
            totals.invoice_mismatch_lines += 1
    totals.received_value = money(totals.received_value)
    return totals


@dataclass
class ShortageReturn:
    """Claim lines plus their total value. Empty means: raise nothing."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_value: Decimal = Decimal("0")

    def __bool__(self) -> bool:
        return bool(self.items)


def _first_present(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def compute_shortage_return(items: Iterable[Dict[str, Any]]) -> ShortageReturn:
    """
    Derive a vendor shortage claim from line items.

    Accepts GRN lines (``shortage_quantity``, ``ordered_quantity`` ...) as
    well as complaint payload lines (``shortage_qty``, ``ordered_qty`` ...).
    Lines without a positive shortage are dropped; each kept line carries
    ``shortage_value = shortage_qty * rate`` and the total is their sum.
    """
    result = ShortageReturn()
    for item in items or []:
        shortage = to_decimal(_first_present(item, "shortage_quantity", "shortage_qty"))
        if shortage <= 0:
            continue
        rate = to_decimal(item.get("rate"))
        value = money(shortage * rate)
        result.items.append({
            "item_index": item.get("item_index"),
            "material_name": item.get("material_name") or "",
            "product_code": item.get("product_code") or "",
            "color": item.get("color") or "",
            "uom": item.get("uom") or "",
            "ordered_qty": as_json_number(to_decimal(_first_present(item, "ordered_quantity", "ordered_qty"))),
            "invoiced_qty": as_json_number(to_decimal(_first_present(item, "invoiced_quantity", "invoiced_qty"))),
            "received_qty": as_json_number(to_decimal(_first_present(item, "received_quantity", "received_qty"))),
            "shortage_qty": as_json_number(shortage),
            "rate": as_json_number(rate),
            "shortage_value": as_json_number(value),
            "remarks": item.get("remarks") or "",
        })
        result.total_value += value
    result.total_value = money(result.total_value)
    return result


def compute_excess_return(items: Iterable[Dict[str, Any]]) -> ShortageReturn:
    """Derive a vendor claim for quantities received above order/invoice."""
    result = ShortageReturn()
    for item in items or []:
        overage = to_decimal(item.get("overage_quantity"))
        if overage <= 0:
            continue
        rate = to_decimal(item.get("rate"))
        value = money(overage * rate)
        result.items.append({
            "item_index": item.get("item_index"),
            "material_name": item.get("material_name") or "",
            "product_code": item.get("product_code") or "",
            "uom": item.get("uom") or "",
            "ordered_qty": item.get("ordered_quantity"),
            "received_qty": item.get("received_quantity"),
            "return_qty": as_json_number(overage),
            "rate": as_json_number(rate),
            "return_value": as_json_number(value),
            "reason": "Excess quantity rejected at receipt",
        })
        result.total_value += value
    result.total_value = money(result.total_value)
    return result


def compute_manual_return_total(items: Iterable[Dict[str, Any]]) -> Decimal:
    """Total of a manually raised return: (shortage_qty or return_qty) * rate per line."""
    total = Decimal("0")
    for item in items or []:
        qty = to_decimal(item.get("shortage_qty") or item.get("return_qty") or 0)
        total += qty * to_decimal(item.get("rate"))
    return money(total)
