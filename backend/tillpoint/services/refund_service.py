# Overview: Service-layer operations for refunds; reverses all or part of a committed sale atomically.

"""
Refunds are new documents, never edits of the original sale lines.

Per refund, in one unit of work:
- stock comes back on each product/variant (REFUND adjustment, positive)
- the sale moves to PARTIALLY_REFUNDED or REFUNDED
- the customer's total spent drops by the refunded amount (floored at 0)
- loyalty points the customer *paid with* are restored pro rata

Points *earned* on the sale stay with the customer unless
LOYALTY_CLAWBACK_ON_REFUND is set.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR

from flask import current_app
from sqlalchemy import func

from ..errors import (
    InvalidInput,
    InvalidLineItem,
    InvalidQuantity,
    RefundExceedsOriginal,
    SaleNotFound,
)
from ..extensions import db
from ..models import Customer, Refund, RefundItem, Sale, SaleItem
from ..models.sales import REFUNDABLE_STATUSES, REFUND_METHODS, REFUND_REASONS
from ..pricing import format_money, parse_money, to_cents
from .concurrency import atomic, lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import apply_stock_change


def _parse_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise InvalidInput("items must be a non-empty list")

    parsed = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise InvalidLineItem("Refund line must be an object", {"line": index})

        refs = [k for k in ("sale_item_id", "product_id", "variant_id") if raw.get(k) is not None]
        if len(refs) != 1:
            raise InvalidLineItem(
                "Exactly one of sale_item_id, product_id or variant_id must be set",
                {"line": index},
            )

        quantity = raw.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidQuantity("Quantity must be a positive integer", {"line": index, "quantity": quantity})

        reason = (raw.get("reason") or "CUSTOMER_REQUEST").upper()
        if reason not in REFUND_REASONS:
            raise InvalidInput(f"reason must be one of {', '.join(REFUND_REASONS)}", {"line": index})

        parsed.append({
            "line": index,
            "ref": refs[0],
            "ref_id": raw[refs[0]],
            "quantity": quantity,
            "reason": reason,
        })
    return parsed


def refunded_quantities(sale_id: int) -> dict[int, int]:
    """sale_item_id -> units already refunded."""
    rows = (
        db.session.query(RefundItem.sale_item_id, func.sum(RefundItem.quantity))
        .join(Refund, Refund.id == RefundItem.refund_id)
        .filter(Refund.sale_id == sale_id)
        .group_by(RefundItem.sale_item_id)
        .all()
    )
    return {sale_item_id: int(total or 0) for sale_item_id, total in rows}


def _allocate(sale: Sale, requests: list[dict], already: dict[int, int]) -> dict[int, dict]:
    """
    Map each requested line onto concrete sale items.

    Product/variant references spread over every matching line of the sale,
    most-remaining first. Returns sale_item_id -> {"item", "quantity", "reason"}.
    """
    remaining = {item.id: item.quantity - already.get(item.id, 0) for item in sale.items}
    allocations: dict[int, dict] = {}

    for req in requests:
        if req["ref"] == "sale_item_id":
            candidates = [item for item in sale.items if item.id == req["ref_id"]]
        elif req["ref"] == "variant_id":
            candidates = [item for item in sale.items if item.variant_id == req["ref_id"]]
        else:
            candidates = [
                item for item in sale.items
                if item.product_id == req["ref_id"] and item.variant_id is None
            ] or [item for item in sale.items if item.product_id == req["ref_id"]]

        if not candidates:
            raise InvalidLineItem(
                "Item is not part of this sale",
                {"line": req["line"], req["ref"]: req["ref_id"]},
            )

        available = sum(remaining[item.id] for item in candidates)
        if req["quantity"] > available:
            raise RefundExceedsOriginal(
                "Refund quantity exceeds the quantity sold net of earlier refunds",
                {
                    "line": req["line"],
                    req["ref"]: req["ref_id"],
                    "requested": req["quantity"],
                    "refundable": available,
                },
            )

        needed = req["quantity"]
        for item in sorted(candidates, key=lambda i: (-remaining[i.id], i.id)):
            if needed == 0:
                break
            take = min(needed, remaining[item.id])
            if take <= 0:
                continue
            remaining[item.id] -= take
            needed -= take
            slot = allocations.setdefault(item.id, {"item": item, "quantity": 0, "reason": req["reason"]})
            slot["quantity"] += take

    return allocations


def _line_value(item: SaleItem, quantity: int) -> Decimal:
    """Value of `quantity` units of a sale line, after its line discount."""
    if item.quantity <= 0:
        return Decimal(0)
    return Decimal(item.total_price_cents) * quantity / item.quantity


def _line_share_cents(sale: Sale, item: SaleItem, quantity: int) -> int:
    """The part of the sale total (after tax and sale-level discounts) owed for `quantity` units."""
    if sale.subtotal_cents <= 0:
        return 0
    share = Decimal(sale.total_cents) * _line_value(item, quantity) / Decimal(sale.subtotal_cents)
    return int(share.to_integral_value(rounding=ROUND_FLOOR))


def _goods_share(sale: Sale, allocations: dict[int, dict]) -> Decimal:
    """
    Fraction of the sale's goods being returned, by line value.

    Loyalty points follow the goods, not the cash: a sale paid entirely in
    points has a zero total but its points still come back line by line.
    """
    if sale.subtotal_cents <= 0:
        return Decimal(0)
    value = sum((_line_value(slot["item"], slot["quantity"]) for slot in allocations.values()), Decimal(0))
    return min(Decimal(1), value / Decimal(sale.subtotal_cents))


def _prorated_points(points: int, share: Decimal) -> int:
    if points <= 0 or share <= 0:
        return 0
    return int((Decimal(points) * share).to_integral_value(rounding=ROUND_FLOOR))


def _apply_customer_reversal(sale: Sale, refund: Refund, amount_cents: int, share: Decimal, fully_refunded: bool) -> None:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=sale.customer_id)).first()
    if not customer:
        return

    customer.total_spent_cents = max(0, customer.total_spent_cents - amount_cents)

    outstanding_used = sale.loyalty_points_used - sale.loyalty_points_restored
    if fully_refunded:
        restored = outstanding_used
    else:
        restored = min(outstanding_used, _prorated_points(sale.loyalty_points_used, share))

    clawed_back = 0
    if current_app.config.get("LOYALTY_CLAWBACK_ON_REFUND"):
        outstanding_earned = sale.loyalty_points_earned - sale.loyalty_points_clawed_back
        if fully_refunded:
            wanted = outstanding_earned
        else:
            wanted = min(outstanding_earned, _prorated_points(sale.loyalty_points_earned, share))
        # Never drive the balance negative; points already spent elsewhere stay spent
        clawed_back = max(0, min(wanted, customer.loyalty_points + restored))

    customer.loyalty_points = customer.loyalty_points + restored - clawed_back

    sale.loyalty_points_restored += restored
    sale.loyalty_points_clawed_back += clawed_back
    refund.loyalty_points_restored = restored
    refund.loyalty_points_clawed_back = clawed_back


def refund_sale(
    sale_id: int,
    *,
    items,
    actor_id: int,
    refund_amount=None,
    refund_method: str = "CASH",
    notes: str | None = None,
) -> tuple[Refund, Sale]:
    """
    Refund some or all units of a committed sale.

    Raises SaleNotFound for unknown or fully refunded sales and
    RefundExceedsOriginal when quantities or the amount go beyond what is
    left to refund.
    """
    requests = _parse_items(items)

    method = (refund_method or "CASH").upper() if isinstance(refund_method, str) else None
    if method not in REFUND_METHODS:
        raise InvalidInput(f"refund_method must be one of {', '.join(REFUND_METHODS)}")

    requested_cents = None
    if refund_amount is not None:
        try:
            requested_cents = to_cents(parse_money(refund_amount, field="refund_amount"))
        except ValueError as exc:
            raise InvalidInput(str(exc))
        if requested_cents < 0:
            raise InvalidInput("refund_amount cannot be negative")

    def _op():
        with atomic():
            sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
            if not sale or sale.sale_status not in REFUNDABLE_STATUSES:
                raise SaleNotFound(
                    "Sale not found or not refundable",
                    {"sale_id": sale_id, "sale_status": sale.sale_status if sale else None},
                )

            already = refunded_quantities(sale.id)
            allocations = _allocate(sale, requests, already)

            fully_refunded = all(
                already.get(item.id, 0) + allocations.get(item.id, {}).get("quantity", 0) >= item.quantity
                for item in sale.items
            )
            remaining_cents = sale.total_cents - sale.refunded_cents

            line_amounts = {
                item_id: _line_share_cents(sale, slot["item"], slot["quantity"])
                for item_id, slot in allocations.items()
            }
            if requested_cents is None:
                amount_cents = remaining_cents if fully_refunded else min(sum(line_amounts.values()), remaining_cents)
            else:
                amount_cents = requested_cents
            if amount_cents > remaining_cents:
                raise RefundExceedsOriginal(
                    "Refund amount exceeds the sale total net of earlier refunds",
                    {
                        "requested": format_money(amount_cents),
                        "refundable": format_money(remaining_cents),
                    },
                )

            refund = Refund(
                refund_number=next_document_number(prefix=current_app.config.get("REFUND_PREFIX", "RF")),
                sale_id=sale.id,
                amount_cents=amount_cents,
                refund_method=method,
                notes=notes,
                processed_by_id=actor_id,
            )
            db.session.add(refund)
            db.session.flush()

            # When the cashier overrides the amount, spread it by line share
            share_total = sum(line_amounts.values())
            for item_id, slot in sorted(allocations.items()):
                item = slot["item"]
                target = item.variant if item.variant_id is not None else item.product
                adjustment = apply_stock_change(
                    target,
                    slot["quantity"],
                    reason="REFUND",
                    actor_id=actor_id,
                    notes=f"Refund {refund.refund_number} of {sale.invoice_number}",
                    sale_id=sale.id,
                    refund_id=refund.id,
                )
                if share_total > 0:
                    item_amount = amount_cents * line_amounts[item_id] // share_total
                else:
                    item_amount = 0
                refund.items.append(RefundItem(
                    sale_item_id=item.id,
                    quantity=slot["quantity"],
                    reason=slot["reason"],
                    amount_cents=item_amount,
                    inventory_adjustment_id=adjustment.id,
                ))

            sale.refunded_cents += amount_cents
            sale.sale_status = "REFUNDED" if fully_refunded else "PARTIALLY_REFUNDED"
            sale.payment_status = sale.sale_status

            if sale.customer_id is not None:
                _apply_customer_reversal(sale, refund, amount_cents, _goods_share(sale, allocations), fully_refunded)

        return refund, sale

    refund, sale = run_with_retry(_op)
    current_app.logger.info(
        "Refund committed: %s for %s amount=%s status=%s by user=%s",
        refund.refund_number, sale.invoice_number, format_money(refund.amount_cents),
        sale.sale_status, actor_id,
    )
    return refund, sale


def list_refunds(sale_id: int) -> list[Refund]:
    if not db.session.get(Sale, sale_id):
        raise SaleNotFound("Sale not found", {"sale_id": sale_id})
    return (
        db.session.query(Refund)
        .filter(Refund.sale_id == sale_id)
        .order_by(Refund.id)
        .all()
    )
