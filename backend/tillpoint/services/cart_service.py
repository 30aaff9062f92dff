# Overview: Service-layer operations for carts; resolves and checks every line, collecting all problems.

"""
Cart validation.

validate_cart() never stops at the first problem: every line is checked
and every issue is reported together, so the till can show the cashier
the complete list. It performs no writes, and calling it twice on the
same data gives the same answer.

Inside a sale's unit of work it is called with lock=True, which selects
the product, variant and customer rows FOR UPDATE in ascending id order
so concurrent sales lock in a consistent order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import CartValidationError
from ..extensions import db
from ..models import Customer, Product, Variant
from ..pricing import ZERO, from_cents, parse_money, to_money
from ..validation import MAX_INT
from .concurrency import lock_for_update


@dataclass
class ResolvedLine:
    index: int
    product: Product
    variant: Variant | None
    quantity: int
    unit_price: Decimal
    discount: Decimal = ZERO
    client_unit_price: Decimal | None = None

    @property
    def item(self) -> Product | Variant:
        return self.variant if self.variant is not None else self.product

    @property
    def stock_key(self) -> tuple[str, int]:
        if self.variant is not None:
            return ("variant", self.variant.id)
        return ("product", self.product.id)

    @property
    def name(self) -> str:
        if self.variant is not None:
            return f"{self.product.name} - {self.variant.name}"
        return self.product.name

    @property
    def sku(self) -> str:
        return self.item.sku

    @property
    def available(self) -> int:
        return self.item.stock_quantity

    @property
    def gross(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "line": self.index,
            "product_id": self.product.id,
            "variant_id": self.variant.id if self.variant is not None else None,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "discount": str(self.discount),
            "line_total": str(self.gross - self.discount),
            "available_stock": self.available,
        }


@dataclass
class ValidatedCart:
    lines: list[ResolvedLine]
    customer: Customer | None = None
    loyalty_points: int = 0
    issues: list[dict] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def subtotal(self) -> Decimal:
        return to_money(sum((line.gross - line.discount for line in self.lines), ZERO))


def _issue(kind: str, message: str, line: int | None = None, **extra) -> dict:
    issue = {"kind": kind, "message": message}
    if line is not None:
        issue["line"] = line
    issue.update({k: v for k, v in extra.items() if v is not None})
    return issue


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= MAX_INT


def _parse_line(index: int, raw, issues: list[dict]) -> dict | None:
    """Shape checks for one line. Returns the parsed line or None when unusable."""
    if not isinstance(raw, dict):
        issues.append(_issue("InvalidLineItem", "Line must be an object", index))
        return None

    product_id = raw.get("product_id")
    variant_id = raw.get("variant_id")
    ok = True

    if (product_id is None) == (variant_id is None):
        issues.append(_issue(
            "InvalidLineItem",
            "Exactly one of product_id or variant_id must be set",
            index,
            product_id=product_id,
            variant_id=variant_id,
        ))
        ok = False
    elif not _is_id(product_id if product_id is not None else variant_id):
        issues.append(_issue("InvalidLineItem", "Item id must be a positive integer", index))
        ok = False

    quantity = raw.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        issues.append(_issue(
            "InvalidQuantity",
            "Quantity must be a positive integer",
            index,
            quantity=quantity,
        ))
        ok = False

    discount = ZERO
    if raw.get("discount") is not None:
        try:
            discount = parse_money(raw["discount"], field="discount")
        except ValueError as exc:
            issues.append(_issue("InvalidDiscount", str(exc), index))
            ok = False
        else:
            if discount < 0:
                issues.append(_issue("InvalidDiscount", "Line discount cannot be negative", index))
                ok = False

    client_unit_price = None
    if raw.get("unit_price") is not None:
        try:
            client_unit_price = parse_money(raw["unit_price"], field="unit_price")
        except ValueError as exc:
            issues.append(_issue("InvalidLineItem", str(exc), index))
            ok = False
        else:
            if client_unit_price < 0:
                issues.append(_issue("InvalidLineItem", "unit_price cannot be negative", index))
                ok = False

    if not ok:
        return None
    return {
        "index": index,
        "product_id": product_id,
        "variant_id": variant_id,
        "quantity": quantity,
        "discount": discount,
        "client_unit_price": client_unit_price,
    }


def _load(model, ids: set[int], lock: bool) -> dict[int, object]:
    if not ids:
        return {}
    query = db.session.query(model).filter(model.id.in_(ids)).order_by(model.id)
    if lock:
        query = lock_for_update(query)
    return {row.id: row for row in query.all()}


def inspect_cart(
    items,
    *,
    customer_id: int | None = None,
    loyalty_points=0,
    lock: bool = False,
) -> ValidatedCart:
    """
    Resolve and check a cart, returning every issue found.

    The returned cart holds the lines that resolved cleanly; `issues`
    lists all problems. validate_cart() is the raising wrapper.
    """
    issues: list[dict] = []
    max_lines = current_app.config.get("MAX_CART_LINES", 100)

    if not isinstance(items, list) or not items:
        issues.append(_issue("InvalidLineItem", "Cart must contain at least one item"))
        items = []
    elif len(items) > max_lines:
        issues.append(_issue(
            "InvalidLineItem",
            f"Cart cannot contain more than {max_lines} items",
            count=len(items),
        ))
        items = []

    parsed = [p for p in (_parse_line(i, raw, issues) for i, raw in enumerate(items)) if p]

    variants = _load(Variant, {p["variant_id"] for p in parsed if p["variant_id"] is not None}, lock)
    product_ids = {p["product_id"] for p in parsed if p["product_id"] is not None}
    product_ids |= {v.product_id for v in variants.values()}
    products = _load(Product, product_ids, lock)

    candidates: list[ResolvedLine] = []
    for p in parsed:
        index = p["index"]
        variant = None
        if p["variant_id"] is not None:
            variant = variants.get(p["variant_id"])
            product = products.get(variant.product_id) if variant else None
            if not variant or not variant.is_active or not product or not product.is_active:
                issues.append(_issue(
                    "ItemNotFound",
                    "Variant not found or inactive",
                    index,
                    variant_id=p["variant_id"],
                ))
                continue
            unit_price = from_cents(variant.effective_price_cents)
        else:
            product = products.get(p["product_id"])
            if not product or not product.is_active:
                issues.append(_issue(
                    "ItemNotFound",
                    "Product not found or inactive",
                    index,
                    product_id=p["product_id"],
                ))
                continue
            unit_price = from_cents(product.price_cents)

        candidates.append(ResolvedLine(
            index=index,
            product=product,
            variant=variant,
            quantity=p["quantity"],
            unit_price=unit_price,
            discount=p["discount"],
            client_unit_price=p["client_unit_price"],
        ))

    # Stock is checked per item across all lines that reference it. Lines
    # of a short item are left out of the cart and never priced.
    requested: dict[tuple[str, int], list[ResolvedLine]] = {}
    for line in candidates:
        requested.setdefault(line.stock_key, []).append(line)
    short: set[tuple[str, int]] = set()
    for (kind, item_id), group in requested.items():
        total = sum(line.quantity for line in group)
        available = group[0].available
        if total > available:
            short.add((kind, item_id))
            issues.append(_issue(
                "InsufficientStock",
                f"Insufficient stock for {group[0].name}",
                group[0].index,
                lines=[line.index for line in group] if len(group) > 1 else None,
                product_id=group[0].product.id,
                variant_id=item_id if kind == "variant" else None,
                available=available,
                requested=total,
                shortfall=total - available,
            ))

    lines: list[ResolvedLine] = []
    for line in candidates:
        if line.stock_key in short:
            continue
        if line.discount > line.gross:
            issues.append(_issue(
                "InvalidDiscount",
                "Line discount exceeds line amount",
                line.index,
                discount=str(line.discount),
                line_amount=str(line.gross),
            ))
            continue
        if line.client_unit_price is not None and line.client_unit_price != line.unit_price:
            current_app.logger.info(
                "Client unit price %s ignored for %s (catalog price %s)",
                line.client_unit_price, line.sku, line.unit_price,
            )
        lines.append(line)

    customer = None
    points = 0
    if customer_id is not None:
        if not _is_id(customer_id):
            issues.append(_issue("ItemNotFound", "Customer not found", customer_id=customer_id))
        else:
            query = db.session.query(Customer).filter(Customer.id == customer_id)
            if lock:
                query = lock_for_update(query)
            customer = query.first()
            if not customer or not customer.is_active:
                issues.append(_issue("ItemNotFound", "Customer not found or inactive", customer_id=customer_id))
                customer = None

    if loyalty_points not in (None, 0):
        if not isinstance(loyalty_points, int) or isinstance(loyalty_points, bool) or loyalty_points < 0:
            issues.append(_issue(
                "InvalidDiscount",
                "loyalty_points_used must be a non-negative integer",
                loyalty_points_used=loyalty_points,
            ))
        elif customer is None:
            if customer_id is None:
                issues.append(_issue(
                    "InsufficientLoyaltyBalance",
                    "Loyalty points require a customer",
                    requested=loyalty_points,
                    available=0,
                ))
        elif loyalty_points > customer.loyalty_points:
            issues.append(_issue(
                "InsufficientLoyaltyBalance",
                "Customer does not have enough loyalty points",
                customer_id=customer.id,
                requested=loyalty_points,
                available=customer.loyalty_points,
            ))
        else:
            points = loyalty_points

    # Line order keeps the batch stable for callers that show it as a list
    issues.sort(key=lambda issue: (issue.get("line") is None, issue.get("line", 0)))

    return ValidatedCart(lines=lines, customer=customer, loyalty_points=points, issues=issues)


def validate_cart(
    items,
    *,
    customer_id: int | None = None,
    loyalty_points=0,
    lock: bool = False,
) -> ValidatedCart:
    """Raise CartValidationError with every issue, or return the resolved cart."""
    cart = inspect_cart(items, customer_id=customer_id, loyalty_points=loyalty_points, lock=lock)
    if cart.issues:
        raise CartValidationError(cart.issues)
    return cart
