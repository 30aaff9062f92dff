"""
Reporting tests: sales, inventory and customer rollups.
"""

from datetime import timedelta

import pytest

from tillpoint.errors import InvalidInput
from tillpoint.services import refund_service, reporting_service, sales_service
from tillpoint.time_utils import period_key, to_utc_z, utcnow


def _sell(cashier, items, **kwargs):
    kwargs.setdefault("payment_method", "CASH")
    return sales_service.create_sale(items=items, cashier_id=cashier.id, **kwargs)


class TestSalesReport:

    def test_empty_range_is_zeroed(self, db_session):
        report = reporting_service.sales_report()
        assert report["summary"] == {
            "sales_count": 0,
            "items_sold": 0,
            "gross_revenue": "0.00",
            "tax_collected": "0.00",
            "discounts_given": "0.00",
            "refunds": "0.00",
            "net_revenue": "0.00",
            "average_order_value": "0.00",
        }
        assert report["by_payment_method"] == []
        assert report["by_period"] == []
        assert report["top_products"] == []
        assert report["top_customers"] == []

    def test_figures(self, product, cheap_product, customer, manager_user):
        _sell(manager_user, [{"product_id": product.id, "quantity": 2}], customer_id=customer.id)
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 3}], payment_method="CARD")
        refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )

        report = reporting_service.sales_report()
        summary = report["summary"]
        assert summary["sales_count"] == 2
        assert summary["items_sold"] == 5
        assert summary["gross_revenue"] == "253.00"
        assert summary["tax_collected"] == "23.00"
        assert summary["refunds"] == "11.00"
        assert summary["net_revenue"] == "242.00"
        assert summary["average_order_value"] == "126.50"

        assert report["by_payment_method"] == [
            {"payment_method": "CARD", "count": 1, "total": "33.00"},
            {"payment_method": "CASH", "count": 1, "total": "220.00"},
        ]
        assert report["by_period"] == [
            {"period": period_key(utcnow(), "day"), "count": 2, "total": "253.00"},
        ]
        assert [p["name"] for p in report["top_products"]] == ["Gadget", "Widget"]
        assert report["top_customers"][0]["name"] == "Alice Walker"
        assert report["top_customers"][0]["total_spent"] == "220.00"

    def test_filters(self, product, cheap_product, manager_user):
        _sell(manager_user, [{"product_id": product.id, "quantity": 1}])
        _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 1}], payment_method="CARD")

        assert reporting_service.sales_report(payment_method="card")["summary"]["sales_count"] == 1

        tomorrow = to_utc_z(utcnow() + timedelta(days=1))
        assert reporting_service.sales_report(start=tomorrow)["summary"]["sales_count"] == 0

    def test_month_grouping(self, product, manager_user):
        _sell(manager_user, [{"product_id": product.id, "quantity": 1}])
        report = reporting_service.sales_report(group_by="month")
        assert report["by_period"][0]["period"] == utcnow().strftime("%Y-%m")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"group_by": "year"},
            {"start": "yesterday"},
            {"start": "2026-02-01", "end": "2026-01-01"},
        ],
    )
    def test_bad_parameters(self, db_session, kwargs):
        with pytest.raises(InvalidInput):
            reporting_service.sales_report(**kwargs)


class TestInventoryReport:

    def test_empty(self, db_session):
        report = reporting_service.inventory_report()
        assert report["summary"]["product_count"] == 0
        assert report["summary"]["inventory_value"] == "0.00"

    def test_stock_positions(self, db_session, product, cheap_product, variant):
        report = reporting_service.inventory_report()
        summary = report["summary"]
        assert summary["product_count"] == 3
        assert summary["variant_count"] == 1
        assert summary["total_units"] == 25 + 50 + 0 + 10
        # 25 x 40.00 + 50 x 3.00 + 10 x 8.00 (variant cost falls back to the product's)
        assert summary["inventory_value"] == "1230.00"
        # the T-shirt parent holds no stock of its own
        assert [row["sku"] for row in report["out_of_stock"]] == ["TEE-001"]
        assert report["low_stock"] == []

    def test_low_stock(self, db_session, product):
        product.stock_quantity = 5
        db_session.commit()
        report = reporting_service.inventory_report()
        assert [row["sku"] for row in report["low_stock"]] == ["WIDGET-001"]


class TestCustomerReport:

    def test_segments(self, db_session, product, cheap_product, customer, loyal_customer, manager_user):
        _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 2}], customer_id=customer.id)

        report = reporting_service.customer_report()
        assert report["summary"]["customer_count"] == 2
        assert report["segments"] == {"high_value": 0, "medium_value": 0, "low_value": 1, "inactive": 1}

        _sell(manager_user, [{"product_id": product.id, "quantity": 10}], customer_id=loyal_customer.id)
        report = reporting_service.customer_report()
        assert report["segments"]["high_value"] == 1

    def test_empty(self, db_session):
        report = reporting_service.customer_report()
        assert report["summary"] == {
            "customer_count": 0,
            "loyalty_points_outstanding": 0,
            "lifetime_spent": "0.00",
        }
