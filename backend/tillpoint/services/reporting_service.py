# Overview: Service-layer operations for reporting; read-only rollups over sales, stock and customers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import InvalidInput
from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem, Variant
from ..pricing import format_money
from ..time_utils import parse_iso_datetime, period_key, to_utc_z

GROUP_BY_CHOICES = ("day", "week", "month")

# Period spending thresholds in cents for customer segments
HIGH_VALUE_CENTS = 100_000
MEDIUM_VALUE_CENTS = 10_000


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise InvalidInput("start and end must be ISO-8601 dates")
    if start_dt and end_dt and start_dt > end_dt:
        raise InvalidInput("start must not be after end")
    return start_dt, end_dt


def _filtered_sales(start_dt, end_dt, payment_method=None, category_id=None):
    query = db.session.query(Sale)
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method.upper())
    if category_id is not None:
        in_category = (
            db.session.query(SaleItem.sale_id)
            .join(Product, Product.id == SaleItem.product_id)
            .filter(Product.category_id == category_id)
        )
        query = query.filter(Sale.id.in_(in_category))
    return query


def sales_report(
    *,
    start: str | None = None,
    end: str | None = None,
    group_by: str = "day",
    payment_method: str | None = None,
    category_id: int | None = None,
    top: int = 10,
) -> dict:
    """
    Sales rollup for a date range. An empty range yields zeroed figures.

    Revenue figures are the committed totals; refunds are reported
    separately and netted into net_revenue.
    """
    if group_by not in GROUP_BY_CHOICES:
        raise InvalidInput("group_by must be day, week, or month")
    start_dt, end_dt = _parse_range(start, end)

    sales = _filtered_sales(start_dt, end_dt, payment_method, category_id).order_by(Sale.created_at).all()
    sale_ids = [s.id for s in sales]

    revenue = sum(s.total_cents for s in sales)
    refunded = sum(s.refunded_cents for s in sales)
    count = len(sales)

    by_method: dict[str, dict] = {}
    by_period: dict[str, dict] = {}
    for sale in sales:
        method = by_method.setdefault(sale.payment_method, {"count": 0, "cents": 0})
        method["count"] += 1
        method["cents"] += sale.total_cents
        bucket = by_period.setdefault(period_key(sale.created_at, group_by), {"count": 0, "cents": 0})
        bucket["count"] += 1
        bucket["cents"] += sale.total_cents

    items_sold = 0
    top_products: list[dict] = []
    if sale_ids:
        items_query = db.session.query(
            SaleItem.product_id,
            func.max(SaleItem.product_name).label("name"),
            func.coalesce(func.sum(SaleItem.quantity), 0).label("quantity"),
            func.coalesce(func.sum(SaleItem.total_price_cents), 0).label("revenue_cents"),
        ).filter(SaleItem.sale_id.in_(sale_ids))
        if category_id is not None:
            items_query = items_query.join(Product, Product.id == SaleItem.product_id).filter(
                Product.category_id == category_id
            )
        rows = items_query.group_by(SaleItem.product_id).all()
        items_sold = sum(int(r.quantity) for r in rows)
        rows.sort(key=lambda r: (-int(r.quantity), -int(r.revenue_cents), r.product_id))
        top_products = [
            {
                "product_id": r.product_id,
                "name": r.name,
                "quantity_sold": int(r.quantity),
                "revenue": format_money(int(r.revenue_cents)),
            }
            for r in rows[:top]
        ]

    top_customers: list[dict] = []
    if sale_ids:
        rows = (
            db.session.query(
                Sale.customer_id,
                func.count(Sale.id).label("sales_count"),
                func.coalesce(func.sum(Sale.total_cents), 0).label("spent_cents"),
            )
            .filter(Sale.id.in_(sale_ids), Sale.customer_id.isnot(None))
            .group_by(Sale.customer_id)
            .all()
        )
        rows.sort(key=lambda r: (-int(r.spent_cents), r.customer_id))
        names = {
            c.id: c.full_name
            for c in db.session.query(Customer).filter(Customer.id.in_([r.customer_id for r in rows[:top]]))
        }
        top_customers = [
            {
                "customer_id": r.customer_id,
                "name": names.get(r.customer_id),
                "sales_count": int(r.sales_count),
                "total_spent": format_money(int(r.spent_cents)),
            }
            for r in rows[:top]
        ]

    return {
        "range": {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt), "group_by": group_by},
        "summary": {
            "sales_count": count,
            "items_sold": items_sold,
            "gross_revenue": format_money(revenue),
            "tax_collected": format_money(sum(s.tax_cents for s in sales)),
            "discounts_given": format_money(sum(s.discount_cents + s.loyalty_discount_cents for s in sales)),
            "refunds": format_money(refunded),
            "net_revenue": format_money(revenue - refunded),
            "average_order_value": format_money(revenue // count if count else 0),
        },
        "by_payment_method": [
            {"payment_method": method, "count": data["count"], "total": format_money(data["cents"])}
            for method, data in sorted(by_method.items())
        ],
        "by_period": [
            {"period": period, "count": data["count"], "total": format_money(data["cents"])}
            for period, data in sorted(by_period.items())
        ],
        "top_products": top_products,
        "top_customers": top_customers,
    }


def inventory_report(*, category_id: int | None = None) -> dict:
    """Stock position and value at cost for active products and their variants."""
    query = db.session.query(Product).filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    products = query.order_by(Product.name, Product.id).all()

    variants = []
    if products:
        variants = (
            db.session.query(Variant)
            .filter(Variant.is_active.is_(True), Variant.product_id.in_([p.id for p in products]))
            .order_by(Variant.id)
            .all()
        )

    units = 0
    value_cents = 0
    low_stock: list[dict] = []
    out_of_stock: list[dict] = []

    def _track(entry: dict, stock: int, min_level: int) -> None:
        if stock == 0:
            out_of_stock.append(entry)
        elif stock <= min_level:
            low_stock.append(entry)

    for product in products:
        units += product.stock_quantity
        value_cents += product.stock_quantity * (product.cost_cents or 0)
        _track(
            {"product_id": product.id, "sku": product.sku, "name": product.name,
             "stock_quantity": product.stock_quantity, "min_stock_level": product.min_stock_level},
            product.stock_quantity,
            product.min_stock_level,
        )

    for variant in variants:
        units += variant.stock_quantity
        value_cents += variant.stock_quantity * (variant.effective_cost_cents or 0)
        _track(
            {"product_id": variant.product_id, "variant_id": variant.id, "sku": variant.sku,
             "name": variant.name, "stock_quantity": variant.stock_quantity,
             "min_stock_level": variant.min_stock_level},
            variant.stock_quantity,
            variant.min_stock_level,
        )

    return {
        "summary": {
            "product_count": len(products),
            "variant_count": len(variants),
            "total_units": units,
            "inventory_value": format_money(value_cents),
            "low_stock_count": len(low_stock),
            "out_of_stock_count": len(out_of_stock),
        },
        "low_stock": low_stock,
        "out_of_stock": out_of_stock,
    }


def customer_report(*, start: str | None = None, end: str | None = None) -> dict:
    """
    Customer base and spending segments.

    Segments are by spending within the range: high value (> 1000.00),
    medium (> 100.00), low, and inactive (no purchases).
    """
    start_dt, end_dt = _parse_range(start, end)

    customers = db.session.query(Customer).filter(Customer.is_active.is_(True)).all()

    spend_query = db.session.query(
        Sale.customer_id,
        func.coalesce(func.sum(Sale.total_cents - Sale.refunded_cents), 0),
    ).filter(Sale.customer_id.isnot(None))
    if start_dt:
        spend_query = spend_query.filter(Sale.created_at >= start_dt)
    if end_dt:
        spend_query = spend_query.filter(Sale.created_at <= end_dt)
    spending = {cid: int(cents) for cid, cents in spend_query.group_by(Sale.customer_id).all()}

    segments = {"high_value": 0, "medium_value": 0, "low_value": 0, "inactive": 0}
    for customer in customers:
        cents = spending.get(customer.id, 0)
        if cents <= 0:
            segments["inactive"] += 1
        elif cents > HIGH_VALUE_CENTS:
            segments["high_value"] += 1
        elif cents > MEDIUM_VALUE_CENTS:
            segments["medium_value"] += 1
        else:
            segments["low_value"] += 1

    return {
        "summary": {
            "customer_count": len(customers),
            "loyalty_points_outstanding": sum(c.loyalty_points for c in customers),
            "lifetime_spent": format_money(sum(c.total_spent_cents for c in customers)),
        },
        "segments": segments,
    }
