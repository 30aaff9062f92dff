"""
Inventory ledger tests: manual and bulk adjustments.
"""

import pytest

from tillpoint.errors import InsufficientStock, InvalidInput, ItemNotFound
from tillpoint.models import InventoryAdjustment, Product, Variant
from tillpoint.services import inventory_service


class TestAdjustStock:

    def test_receiving_stock(self, db_session, product, manager_user):
        row = inventory_service.adjust_stock(
            {"product_id": product.id, "quantity_change": 10, "reason": "purchase", "notes": "PO-17"},
            manager_user.id,
        )
        assert row.reason == "PURCHASE"
        assert (row.previous_stock, row.new_stock) == (25, 35)
        assert row.adjusted_by_id == manager_user.id
        assert db_session.get(Product, product.id).stock_quantity == 35

    def test_variant_adjustment(self, db_session, variant, manager_user):
        inventory_service.adjust_stock(
            {"variant_id": variant.id, "quantity_change": -3, "reason": "DAMAGED"}, manager_user.id
        )
        assert db_session.get(Variant, variant.id).stock_quantity == 7

    def test_cannot_go_negative(self, db_session, product, manager_user):
        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.adjust_stock({"product_id": product.id, "quantity_change": -26}, manager_user.id)
        assert exc_info.value.details["available"] == 25
        assert db_session.query(InventoryAdjustment).count() == 0

    @pytest.mark.parametrize("reason", ["SALE", "REFUND", "STOLEN"])
    def test_reserved_and_unknown_reasons(self, product, manager_user, reason):
        with pytest.raises(InvalidInput):
            inventory_service.adjust_stock(
                {"product_id": product.id, "quantity_change": 1, "reason": reason}, manager_user.id
            )

    @pytest.mark.parametrize("change", [0, 1.5, "3", None])
    def test_quantity_change_must_be_nonzero_int(self, product, manager_user, change):
        with pytest.raises(InvalidInput):
            inventory_service.adjust_stock({"product_id": product.id, "quantity_change": change}, manager_user.id)

    def test_needs_exactly_one_target(self, product, variant, manager_user):
        with pytest.raises(InvalidInput):
            inventory_service.adjust_stock(
                {"product_id": product.id, "variant_id": variant.id, "quantity_change": 1}, manager_user.id
            )

    def test_unknown_target(self, db_session, manager_user):
        with pytest.raises(ItemNotFound):
            inventory_service.adjust_stock({"product_id": 999999, "quantity_change": 1}, manager_user.id)


class TestBulkAdjust:

    def test_all_applied(self, db_session, product, cheap_product, manager_user):
        rows = inventory_service.bulk_adjust([
            {"product_id": product.id, "quantity_change": 5, "reason": "PURCHASE"},
            {"product_id": cheap_product.id, "quantity_change": -10, "reason": "EXPIRED"},
        ], manager_user.id)
        assert len(rows) == 2
        assert db_session.get(Product, product.id).stock_quantity == 30
        assert db_session.get(Product, cheap_product.id).stock_quantity == 40

    def test_one_failure_applies_nothing(self, db_session, product, cheap_product, manager_user):
        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.bulk_adjust([
                {"product_id": product.id, "quantity_change": 5},
                {"product_id": cheap_product.id, "quantity_change": -51},
            ], manager_user.id)
        assert exc_info.value.details["index"] == 1
        assert db_session.get(Product, product.id).stock_quantity == 25
        assert db_session.query(InventoryAdjustment).count() == 0

    def test_empty_batch(self, db_session, manager_user):
        with pytest.raises(InvalidInput):
            inventory_service.bulk_adjust([], manager_user.id)


class TestListAdjustments:

    def test_filters(self, product, cheap_product, manager_user):
        inventory_service.adjust_stock({"product_id": product.id, "quantity_change": 1}, manager_user.id)
        inventory_service.adjust_stock({"product_id": product.id, "quantity_change": -1, "reason": "DAMAGED"}, manager_user.id)
        inventory_service.adjust_stock({"product_id": cheap_product.id, "quantity_change": 2}, manager_user.id)

        rows, total = inventory_service.list_adjustments(product_id=product.id)
        assert total == 2
        # newest first
        assert [r.reason for r in rows] == ["DAMAGED", "MANUAL"]

        rows, total = inventory_service.list_adjustments(reason="manual")
        assert total == 2


class TestInventoryApi:

    def test_manager_adjusts(self, client, manager_headers, product):
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product.id, "quantity_change": 4, "reason": "PURCHASE"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["adjustment"]["new_stock"] == 29

    def test_cashier_cannot_adjust(self, client, cashier_headers, product):
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product.id, "quantity_change": 4},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    def test_negative_stock_is_400(self, client, manager_headers, product):
        resp = client.post(
            "/api/inventory/adjust",
            json={"product_id": product.id, "quantity_change": -100},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert resp.json["kind"] == "InsufficientStock"

    def test_bulk_endpoint(self, client, manager_headers, product, cheap_product):
        resp = client.post(
            "/api/inventory/bulk-adjust",
            json={"adjustments": [
                {"product_id": product.id, "quantity_change": 1},
                {"product_id": cheap_product.id, "quantity_change": 1},
            ]},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert len(resp.json["adjustments"]) == 2

        resp = client.get(f"/api/inventory/adjustments?product_id={product.id}", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["total"] == 1
