"""
Sales Service - one atomic unit of work per sale

A sale is either committed whole (Sale, SaleItems, stock decrements with
their SALE adjustments, customer totals and loyalty reward) or not at all.
There is no draft document: the cart lives on the till until checkout.

Flow:
    validate request fields -> open unit of work -> validate cart with row
    locks -> price -> allocate invoice number -> write -> commit

Stock is re-checked inside the unit of work, and every decrement is a
conditional UPDATE, so a concurrent sale that got there first surfaces
as ConcurrentStockConflict instead of negative stock.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..errors import (
    CartValidationError,
    ConcurrentStockConflict,
    InsufficientLoyaltyBalance,
    InvalidDiscount,
    InvalidInput,
    SaleNotFound,
)
from ..extensions import db
from ..models import Customer, LoyaltyReward, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS, SALE_STATUSES
from ..pricing import (
    ZERO,
    PricingPolicy,
    compute_totals,
    format_money,
    parse_money,
    price_line,
    to_cents,
)
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from . import cart_service
from .concurrency import atomic, run_with_retry
from .document_service import next_document_number
from .inventory_service import NegativeStockError, apply_stock_change


def _pricing_policy() -> PricingPolicy:
    return PricingPolicy.from_config(current_app.config)


def _parse_request(payment_method, discount_amount, loyalty_points_used) -> tuple[str, Decimal, int, list[dict]]:
    """
    Check the sale-level fields. Problems come back as issues, in the same
    shape as cart issues, so they can be reported in one batch.
    """
    issues: list[dict] = []

    method = payment_method.upper() if isinstance(payment_method, str) else None
    if method not in PAYMENT_METHODS:
        issues.append({
            "kind": "InvalidInput",
            "message": f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            "payment_method": payment_method,
        })

    discount = ZERO
    if discount_amount is not None:
        try:
            discount = parse_money(discount_amount, field="discount_amount")
            if discount < 0:
                raise ValueError("Discount cannot be negative")
        except ValueError as exc:
            issues.append({"kind": "InvalidDiscount", "message": str(exc), "discount_amount": str(discount_amount)})
            discount = ZERO

    points = loyalty_points_used or 0
    if not isinstance(points, int) or isinstance(points, bool) or points < 0:
        issues.append({
            "kind": "InvalidDiscount",
            "message": "loyalty_points_used must be a non-negative integer",
            "loyalty_points_used": loyalty_points_used,
        })
        points = 0
    return method, discount, points, issues


def _price(cart: cart_service.ValidatedCart, discount: Decimal, points: int):
    priced = [price_line(line.unit_price, line.quantity, line.discount) for line in cart.lines]
    totals = compute_totals(
        priced,
        _pricing_policy(),
        discount_amount=discount,
        loyalty_points_used=points,
    )
    return priced, totals


def _update_customer(customer: Customer, totals, now: datetime) -> None:
    """Conditional balance update; the WHERE clause re-checks the points balance."""
    points_used = totals.loyalty_points_used
    stmt = (
        update(Customer)
        .where(Customer.id == customer.id, Customer.loyalty_points >= points_used)
        .values(
            loyalty_points=Customer.loyalty_points - points_used + totals.loyalty_points_earned,
            total_spent_cents=Customer.total_spent_cents + to_cents(totals.total_amount),
            total_visits=Customer.total_visits + 1,
            last_visit_at=now,
            version_id=Customer.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise InsufficientLoyaltyBalance(
            "Customer loyalty balance changed during checkout",
            {"customer_id": customer.id, "requested": points_used},
        )
    db.session.refresh(customer)


def _commit_sale(
    *,
    items,
    cashier_id: int,
    payment_method: str,
    customer_id: int | None,
    discount: Decimal,
    points: int,
    notes: str | None,
) -> Sale:
    with atomic():
        # Validation is repeated here, under the write lock, so nothing
        # checked earlier is trusted at commit time.
        cart = cart_service.validate_cart(
            items,
            customer_id=customer_id,
            loyalty_points=points,
            lock=True,
        )
        priced, totals = _price(cart, discount, points)
        now = utcnow()

        sale = Sale(
            invoice_number=next_document_number(
                prefix=current_app.config.get("INVOICE_PREFIX", "INV"),
                on=now,
            ),
            customer_id=cart.customer.id if cart.customer else None,
            cashier_id=cashier_id,
            subtotal_cents=to_cents(totals.subtotal),
            tax_cents=to_cents(totals.tax_amount),
            discount_cents=to_cents(totals.discount_amount),
            loyalty_points_used=totals.loyalty_points_used,
            loyalty_discount_cents=to_cents(totals.loyalty_discount),
            total_cents=to_cents(totals.total_amount),
            loyalty_points_earned=totals.loyalty_points_earned if cart.customer else 0,
            payment_method=payment_method,
            payment_status="PAID",
            sale_status="COMPLETED",
            notes=notes,
            created_at=now,
        )
        db.session.add(sale)

        for line, priced_line in zip(cart.lines, priced):
            sale.items.append(SaleItem(
                product_id=line.product.id,
                variant_id=line.variant.id if line.variant is not None else None,
                quantity=line.quantity,
                unit_price_cents=to_cents(priced_line.unit_price),
                discount_cents=to_cents(priced_line.discount),
                total_price_cents=to_cents(priced_line.total),
                product_name=line.name,
                sku=line.sku,
            ))
        db.session.flush()

        for line in cart.lines:
            try:
                apply_stock_change(
                    line.item,
                    -line.quantity,
                    reason="SALE",
                    actor_id=cashier_id,
                    notes=f"Sale {sale.invoice_number}",
                    sale_id=sale.id,
                )
            except NegativeStockError:
                raise ConcurrentStockConflict(
                    "Stock changed while the sale was being committed; validate the cart again",
                    {
                        "line": line.index,
                        "product_id": line.product.id,
                        "variant_id": line.variant.id if line.variant is not None else None,
                        "requested": line.quantity,
                    },
                )

        if cart.customer is not None:
            _update_customer(cart.customer, totals, now)
            # Redeemed points are recorded on the sale itself; a reward row
            # only exists for points earned.
            if totals.loyalty_points_earned > 0:
                expiry_days = current_app.config.get("LOYALTY_REWARD_EXPIRY_DAYS", 365)
                db.session.add(LoyaltyReward(
                    customer_id=cart.customer.id,
                    sale_id=sale.id,
                    points_used=totals.loyalty_points_used,
                    reward_type="POINTS_EARNED",
                    reward_value=totals.loyalty_points_earned,
                    description=f"Points earned on {sale.invoice_number}",
                    is_redeemed=False,
                    expires_at=now + timedelta(days=expiry_days),
                    created_at=now,
                ))

    return sale


def create_sale(
    *,
    items,
    cashier_id: int,
    payment_method: str,
    customer_id: int | None = None,
    discount_amount=None,
    loyalty_points_used=0,
    notes: str | None = None,
) -> Sale:
    """
    Validate, price and commit a sale in one atomic unit of work.

    Raises CartValidationError with every cart and request-level problem
    at once, InvalidDiscount when discounts exceed the sale, or
    ConcurrentStockConflict when another writer took the stock first.
    Nothing is written unless the whole sale commits.
    """
    method, discount, points, request_issues = _parse_request(payment_method, discount_amount, loyalty_points_used)
    if request_issues:
        cart = cart_service.inspect_cart(items, customer_id=customer_id, loyalty_points=points)
        exc = CartValidationError(cart.issues + request_issues)
        current_app.logger.info("Sale rejected: %s", ", ".join(sorted(exc.kinds)))
        raise exc

    def _op():
        return _commit_sale(
            items=items,
            cashier_id=cashier_id,
            payment_method=method,
            customer_id=customer_id,
            discount=discount,
            points=points,
            notes=notes,
        )

    try:
        sale = run_with_retry(_op)
    except CartValidationError as exc:
        current_app.logger.info("Sale rejected: %s", ", ".join(sorted(exc.kinds)))
        raise
    except ConcurrentStockConflict as exc:
        current_app.logger.warning("Sale conflict: %s", exc.details)
        raise

    current_app.logger.info(
        "Sale committed: %s total=%s items=%s cashier=%s customer=%s",
        sale.invoice_number, format_money(sale.total_cents),
        len(sale.items), cashier_id, sale.customer_id,
    )
    return sale


def preview_cart(
    *,
    items,
    customer_id: int | None = None,
    discount_amount=None,
    loyalty_points_used=0,
) -> dict:
    """
    Dry run of checkout: every validation issue plus the prices the valid
    lines would be charged. Never writes.
    """
    cart = cart_service.inspect_cart(items, customer_id=customer_id, loyalty_points=loyalty_points_used)
    errors = list(cart.issues)

    discount = ZERO
    if discount_amount is not None:
        try:
            discount = parse_money(discount_amount, field="discount_amount")
            if discount < 0:
                raise ValueError("Discount cannot be negative")
        except ValueError as exc:
            errors.append({"kind": "InvalidDiscount", "message": str(exc)})
            discount = ZERO

    totals = None
    if cart.lines:
        try:
            _, totals = _price(cart, discount, cart.loyalty_points)
        except InvalidDiscount as exc:
            errors.append({"kind": exc.kind, "message": exc.message, **exc.details})

    result = {
        "valid": not errors,
        "errors": errors,
        "lines": [line.to_dict() for line in cart.lines],
        "customer_id": cart.customer.id if cart.customer else None,
    }
    if totals is not None:
        result.update(totals.to_dict())
    else:
        result.update({
            "subtotal": str(ZERO),
            "tax_amount": str(ZERO),
            "discount_amount": str(discount),
            "loyalty_points_used": 0,
            "loyalty_discount": str(ZERO),
            "total_amount": str(ZERO),
            "loyalty_points_earned": 0,
        })
    return result


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start: str | None = None,
    end: str | None = None,
    customer_id: int | None = None,
    cashier_id: int | None = None,
    payment_method: str | None = None,
    sale_status: str | None = None,
    min_total=None,
    max_total=None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale)

    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        raise InvalidInput("start/end must be ISO-8601 dates")
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)

    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method.upper())
    if sale_status:
        if sale_status.upper() not in SALE_STATUSES:
            raise InvalidInput(f"sale_status must be one of {', '.join(SALE_STATUSES)}")
        query = query.filter(Sale.sale_status == sale_status.upper())

    try:
        if min_total is not None:
            query = query.filter(Sale.total_cents >= to_cents(parse_money(min_total, field="min_total")))
        if max_total is not None:
            query = query.filter(Sale.total_cents <= to_cents(parse_money(max_total, field="max_total")))
    except ValueError as exc:
        raise InvalidInput(str(exc))

    total = query.count()
    limit = max(1, min(limit, 200))
    sales = query.order_by(Sale.id.desc()).offset(max(offset, 0)).limit(limit).all()
    return sales, total


def build_receipt(sale_id: int) -> dict:
    """Printable receipt view of a committed sale."""
    sale = get_sale(sale_id)
    data = sale.to_dict()
    customer = sale.customer
    cashier = sale.cashier
    return {
        "invoice_number": sale.invoice_number,
        "date": to_utc_z(sale.created_at),
        "cashier": cashier.username if cashier else None,
        "customer": {
            "id": customer.id,
            "name": customer.full_name,
            "loyalty_points": customer.loyalty_points,
        } if customer else None,
        "items": [
            {
                "name": item["product_name"],
                "sku": item["sku"],
                "quantity": item["quantity"],
                "unit_price": item["unit_price"],
                "discount": item["discount"],
                "total": item["total_price"],
            }
            for item in data["items"]
        ],
        "subtotal": data["subtotal"],
        "tax_amount": data["tax_amount"],
        "discount_amount": data["discount_amount"],
        "loyalty_discount": data["loyalty_discount"],
        "total_amount": data["total_amount"],
        "payment_method": sale.payment_method,
        "loyalty_points_earned": sale.loyalty_points_earned,
        "sale_status": sale.sale_status,
    }
