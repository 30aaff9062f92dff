"""
Sales API tests.

Verifies the HTTP contract of checkout and refunds: status codes and the
error kind carried in every failure body.
"""

from tillpoint.models import Product, Sale
from tillpoint.services import catalog_service, sales_service
from tillpoint.services.inventory_service import NegativeStockError


class TestCheckoutApi:

    def test_sale_created(self, client, db_session, cashier_headers, product):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 2, "unit_price": 100.00}], "payment_method": "CASH"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["subtotal"] == "200.00"
        assert sale["tax_amount"] == "20.00"
        assert sale["total_amount"] == "220.00"
        assert sale["invoice_number"].startswith("INV-")
        assert len(sale["items"]) == 1
        assert db_session.get(Product, product.id).stock_quantity == 23

    def test_every_cart_error_returned(self, client, db_session, cashier_headers, product):
        resp = client.post(
            "/api/sales",
            json={
                "items": [
                    {"product_id": product.id, "variant_id": 1, "quantity": 1},
                    {"product_id": product.id, "quantity": 999999},
                ],
                "payment_method": "CASH",
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        body = resp.json
        assert body["kind"] == "InvalidLineItem"
        assert [e["kind"] for e in body["errors"]] == ["InvalidLineItem", "InsufficientStock"]
        assert db_session.query(Sale).count() == 0

    def test_bad_payment_method(self, client, cashier_headers, product):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "IOU"},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.json["kind"] == "InvalidInput"

    def test_oversized_values_are_400(self, client, db_session, cashier_headers, product):
        huge = {"items": [{"product_id": product.id, "quantity": 10**30}], "payment_method": "CASH"}
        resp = client.post("/api/sales", json=huge, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["kind"] == "InsufficientStock"

        resp = client.post("/api/sales/cart/validate", json=huge, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["valid"] is False
        assert resp.json["errors"][0]["kind"] == "InsufficientStock"

        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "CASH", "discount_amount": "1e40"},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.json["kind"] == "InvalidDiscount"
        assert db_session.query(Sale).count() == 0

    def test_stock_conflict_is_409(self, client, cashier_headers, product, monkeypatch):
        def taken(item, quantity_change, **kwargs):
            raise NegativeStockError(item, -quantity_change)

        monkeypatch.setattr(sales_service, "apply_stock_change", taken)
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "CASH"},
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        assert resp.json["kind"] == "ConcurrentStockConflict"

    def test_validate_endpoint_is_a_dry_run(self, client, db_session, cashier_headers, product):
        resp = client.post(
            "/api/sales/cart/validate",
            json={"items": [{"product_id": product.id, "quantity": 2}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.json["valid"] is True
        assert resp.json["total_amount"] == "220.00"
        assert db_session.get(Product, product.id).stock_quantity == 25

        resp = client.post(
            "/api/sales/cart/validate",
            json={"items": [{"product_id": 999999, "quantity": 1}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.json["valid"] is False
        assert resp.json["errors"][0]["kind"] == "ItemNotFound"

    def test_get_list_and_receipt(self, client, cashier_headers, product):
        created = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 1}], "payment_method": "CARD"},
            headers=cashier_headers,
        ).json["sale"]

        resp = client.get(f"/api/sales/{created['id']}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["invoice_number"] == created["invoice_number"]

        resp = client.get("/api/sales?payment_method=card", headers=cashier_headers)
        assert resp.json["total"] == 1
        assert "items" not in resp.json["sales"][0]

        resp = client.get(f"/api/sales/{created['id']}/receipt", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["receipt"]["total_amount"] == "110.00"

    def test_unknown_sale_is_404(self, client, cashier_headers):
        resp = client.get("/api/sales/999999", headers=cashier_headers)
        assert resp.status_code == 404
        assert resp.json["kind"] == "SaleNotFound"


class TestRefundApi:

    def _sale(self, client, headers, product, quantity=2):
        return client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": quantity}], "payment_method": "CASH"},
            headers=headers,
        ).json["sale"]

    def test_manager_refunds(self, client, db_session, manager_headers, product):
        sale = self._sale(client, manager_headers, product)
        resp = client.post(
            f"/api/sales/{sale['id']}/refund",
            json={"items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 2, "reason": "DEFECTIVE"}]},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json["sale"]["sale_status"] == "REFUNDED"
        assert resp.json["refund"]["amount"] == "220.00"
        assert resp.json["refund"]["items"][0]["reason"] == "DEFECTIVE"
        assert db_session.get(Product, product.id).stock_quantity == 25

        resp = client.get(f"/api/sales/{sale['id']}/refunds", headers=manager_headers)
        assert len(resp.json["refunds"]) == 1

    def test_refund_exceeding_sale(self, client, manager_headers, product):
        sale = self._sale(client, manager_headers, product)
        resp = client.post(
            f"/api/sales/{sale['id']}/refund",
            json={"items": [{"product_id": product.id, "quantity": 3}]},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert resp.json["kind"] == "RefundExceedsOriginal"

    def test_refund_unknown_sale(self, client, manager_headers):
        resp = client.post(
            "/api/sales/999999/refund",
            json={"items": [{"product_id": 1, "quantity": 1}]},
            headers=manager_headers,
        )
        assert resp.status_code == 404
        assert resp.json["kind"] == "SaleNotFound"

    def test_cashier_cannot_refund(self, client, cashier_headers, product):
        sale = self._sale(client, cashier_headers, product)
        resp = client.post(
            f"/api/sales/{sale['id']}/refund",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 403


class TestErrorBodies:

    def test_duplicate_sku_is_409(self, client, manager_headers, product):
        resp = client.post(
            "/api/products",
            json={"name": "Copy", "sku": "WIDGET-001", "price": "1.00"},
            headers=manager_headers,
        )
        assert resp.status_code == 409
        assert resp.json["kind"] == "DuplicateEntry"
        assert resp.json["details"]["field"] == "sku"

    def test_oversized_product_price_is_400(self, client, manager_headers):
        resp = client.post(
            "/api/products",
            json={"name": "Gold", "sku": "GOLD-1", "price": "1e40"},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert resp.json["kind"] == "InvalidInput"

    def test_unexpected_failure_is_500_with_correlation_id(self, client, manager_headers, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(catalog_service, "list_products", boom)
        resp = client.get("/api/products", headers=manager_headers)
        assert resp.status_code == 500
        assert resp.json["kind"] == "InternalError"
        assert resp.json["correlation_id"]
        assert "disk on fire" not in resp.get_data(as_text=True)

    def test_error_details_exposed_when_enabled(self, app, client, manager_headers, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setitem(app.config, "EXPOSE_ERROR_DETAILS", True)
        monkeypatch.setattr(catalog_service, "list_products", boom)
        resp = client.get("/api/products", headers=manager_headers)
        assert "disk on fire" in resp.json["details"]["exception"]

    def test_unknown_route_is_json(self, client, db_session):
        resp = client.get("/api/nowhere")
        assert resp.status_code == 404
        assert resp.json["kind"] == "NotFound"

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["database"] == "ok"
