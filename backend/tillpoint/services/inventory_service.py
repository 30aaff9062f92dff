# Overview: Service-layer operations for inventory; every stock change goes through here with its ledger row.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..errors import InsufficientStock, InvalidInput, ItemNotFound
from ..extensions import db
from ..models import InventoryAdjustment, Product, Variant
from ..models.inventory import ADJUSTMENT_REASONS, SYSTEM_REASONS
from .concurrency import atomic, run_with_retry


class NegativeStockError(Exception):
    """A conditional decrement found less stock than it needed."""
    def __init__(self, item, requested: int):
        super().__init__(f"Stock for {item!r} cannot go below zero")
        self.item = item
        self.requested = requested


def apply_stock_change(
    item: Product | Variant,
    quantity_change: int,
    *,
    reason: str,
    actor_id: int | None,
    notes: str | None = None,
    sale_id: int | None = None,
    refund_id: int | None = None,
) -> InventoryAdjustment:
    """
    Move stock on one product or variant and append its ledger row.

    The decrement is a conditional UPDATE (stock >= needed) so two writers
    can never both take the last unit. Does not commit; runs inside the
    caller's unit of work. Raises NegativeStockError when the row no longer
    has enough stock.
    """
    if quantity_change == 0:
        raise InvalidInput("quantity_change must be non-zero")
    if reason not in ADJUSTMENT_REASONS:
        raise InvalidInput(f"reason must be one of {', '.join(ADJUSTMENT_REASONS)}")

    model = type(item)
    conditions = [model.id == item.id]
    if quantity_change < 0:
        conditions.append(model.stock_quantity >= -quantity_change)

    stmt = (
        update(model)
        .where(*conditions)
        .values(
            stock_quantity=model.stock_quantity + quantity_change,
            version_id=model.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NegativeStockError(item, -quantity_change)

    db.session.refresh(item)
    new_stock = item.stock_quantity
    previous_stock = new_stock - quantity_change

    adjustment = InventoryAdjustment(
        product_id=item.id if isinstance(item, Product) else None,
        variant_id=item.id if isinstance(item, Variant) else None,
        quantity_change=quantity_change,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        notes=notes,
        sale_id=sale_id,
        refund_id=refund_id,
        adjusted_by_id=actor_id,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def _resolve_target(product_id, variant_id) -> Product | Variant:
    if (product_id is None) == (variant_id is None):
        raise InvalidInput("Exactly one of product_id or variant_id is required")
    if product_id is not None:
        item = db.session.get(Product, product_id)
        kind = "Product"
    else:
        item = db.session.get(Variant, variant_id)
        kind = "Variant"
    if not item:
        raise ItemNotFound(f"{kind} not found", {"product_id": product_id, "variant_id": variant_id})
    return item


def _parse_adjustment(entry: dict, index: int | None = None) -> dict:
    if not isinstance(entry, dict):
        raise InvalidInput("Each adjustment must be an object")
    quantity = entry.get("quantity_change")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity == 0:
        raise InvalidInput("quantity_change must be a non-zero integer", {"index": index})
    reason = (entry.get("reason") or "MANUAL").upper()
    if reason in SYSTEM_REASONS:
        raise InvalidInput(f"{reason} adjustments are recorded by sales and refunds only", {"index": index})
    if reason not in ADJUSTMENT_REASONS:
        raise InvalidInput(f"reason must be one of {', '.join(ADJUSTMENT_REASONS)}", {"index": index})
    return {
        "product_id": entry.get("product_id"),
        "variant_id": entry.get("variant_id"),
        "quantity_change": quantity,
        "reason": reason,
        "notes": entry.get("notes"),
    }


def _apply_manual(parsed: dict, actor_id: int, index: int | None = None) -> InventoryAdjustment:
    item = _resolve_target(parsed["product_id"], parsed["variant_id"])
    try:
        return apply_stock_change(
            item,
            parsed["quantity_change"],
            reason=parsed["reason"],
            actor_id=actor_id,
            notes=parsed["notes"],
        )
    except NegativeStockError:
        db.session.refresh(item)
        raise InsufficientStock(
            "Adjustment would make stock negative",
            {
                "index": index,
                "product_id": parsed["product_id"],
                "variant_id": parsed["variant_id"],
                "available": item.stock_quantity,
                "requested": -parsed["quantity_change"],
            },
        )


def adjust_stock(payload: dict, actor_id: int) -> InventoryAdjustment:
    """Manual stock adjustment (receiving, damage, count corrections, ...)."""
    parsed = _parse_adjustment(payload)

    def _op():
        with atomic():
            adjustment = _apply_manual(parsed, actor_id)
        return adjustment

    adjustment = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjusted: product=%s variant=%s change=%s reason=%s by user=%s",
        adjustment.product_id, adjustment.variant_id, adjustment.quantity_change,
        adjustment.reason, actor_id,
    )
    return adjustment


def bulk_adjust(entries: list, actor_id: int) -> list[InventoryAdjustment]:
    """Apply many adjustments; all of them commit or none do."""
    if not isinstance(entries, list) or not entries:
        raise InvalidInput("adjustments must be a non-empty list")
    parsed = [_parse_adjustment(entry, index) for index, entry in enumerate(entries)]

    def _op():
        with atomic():
            rows = [_apply_manual(p, actor_id, index) for index, p in enumerate(parsed)]
        return rows

    rows = run_with_retry(_op)
    current_app.logger.info("Bulk stock adjustment: %s rows by user=%s", len(rows), actor_id)
    return rows


def list_adjustments(
    *,
    product_id: int | None = None,
    variant_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[InventoryAdjustment], int]:
    query = db.session.query(InventoryAdjustment)
    if product_id is not None:
        query = query.filter(InventoryAdjustment.product_id == product_id)
    if variant_id is not None:
        query = query.filter(InventoryAdjustment.variant_id == variant_id)
    if reason:
        query = query.filter(InventoryAdjustment.reason == reason.upper())
    if sale_id is not None:
        query = query.filter(InventoryAdjustment.sale_id == sale_id)

    total = query.count()
    limit = max(1, min(limit, 500))
    rows = (
        query.order_by(InventoryAdjustment.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )
    return rows, total
