"""
Cart validation tests.

Verifies:
- Every problem in a cart is reported together, in line order
- Stock is checked per item across lines
- Inactive catalog rows and customers are not found
- Validation never writes
"""

from decimal import Decimal

import pytest

from tillpoint.errors import CartValidationError
from tillpoint.models import InventoryAdjustment, Product, Sale
from tillpoint.services import cart_service, sales_service


def _kinds(exc_info):
    return [e["kind"] for e in exc_info.value.errors]


# =============================================================================
# VALID CARTS
# =============================================================================


class TestValidCart:

    def test_resolves_lines_at_catalog_price(self, product, variant):
        cart = cart_service.validate_cart([
            {"product_id": product.id, "quantity": 2},
            {"variant_id": variant.id, "quantity": 1},
        ])
        assert cart.is_valid
        assert [line.unit_price for line in cart.lines] == [Decimal("100.00"), Decimal("24.99")]
        assert cart.lines[1].name == "T-Shirt - Large"
        assert cart.subtotal == Decimal("224.99")

    def test_client_price_is_not_trusted(self, product):
        cart = cart_service.validate_cart([{"product_id": product.id, "quantity": 1, "unit_price": "1.00"}])
        assert cart.lines[0].unit_price == Decimal("100.00")

    def test_variant_without_override_uses_product_price(self, db_session, variant):
        variant.price_cents = None
        db_session.commit()
        cart = cart_service.validate_cart([{"variant_id": variant.id, "quantity": 1}])
        assert cart.lines[0].unit_price == Decimal("19.99")

    def test_same_answer_twice(self, product):
        items = [{"product_id": product.id, "quantity": 30}, {"product_id": 999999, "quantity": 1}]
        first = cart_service.inspect_cart(items)
        second = cart_service.inspect_cart(items)
        assert first.issues == second.issues
        assert len(first.issues) == 2

    def test_customer_and_points_accepted(self, product, loyal_customer):
        cart = cart_service.validate_cart(
            [{"product_id": product.id, "quantity": 1}],
            customer_id=loyal_customer.id,
            loyalty_points=400,
        )
        assert cart.customer.id == loyal_customer.id
        assert cart.loyalty_points == 400


# =============================================================================
# BATCHED ERRORS
# =============================================================================


class TestBatchedErrors:

    def test_quantity_above_stock(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 999999}])
        assert _kinds(exc_info) == ["InsufficientStock"]
        error = exc_info.value.errors[0]
        assert error["available"] == 25
        assert error["requested"] == 999999
        assert exc_info.value.status_code == 400

    def test_rejected_sale_writes_nothing(self, db_session, product, cashier_user):
        with pytest.raises(CartValidationError):
            sales_service.create_sale(
                items=[{"product_id": product.id, "quantity": 999999}],
                cashier_id=cashier_user.id,
                payment_method="CASH",
            )
        assert db_session.query(Sale).count() == 0
        assert db_session.query(InventoryAdjustment).count() == 0
        assert db_session.get(Product, product.id).stock_quantity == 25

    def test_both_ids_batched_with_other_line_errors(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([
                {"product_id": product.id, "variant_id": 1, "quantity": 1},
                {"product_id": product.id, "quantity": 0},
                {"product_id": 999999, "quantity": 1},
                {"quantity": 1},
            ])
        errors = exc_info.value.errors
        assert [(e["line"], e["kind"]) for e in errors] == [
            (0, "InvalidLineItem"),
            (1, "InvalidQuantity"),
            (2, "ItemNotFound"),
            (3, "InvalidLineItem"),
        ]
        assert exc_info.value.kind == "InvalidLineItem"
        assert exc_info.value.to_dict()["error"] == "Cart validation failed"

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True, None])
    def test_bad_quantities(self, product, quantity):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": quantity}])
        assert _kinds(exc_info) == ["InvalidQuantity"]

    @pytest.mark.parametrize("items", [[], None, "not-a-list"])
    def test_empty_cart(self, items):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart(items)
        assert _kinds(exc_info) == ["InvalidLineItem"]

    def test_too_many_lines(self, app, product, monkeypatch):
        monkeypatch.setitem(app.config, "MAX_CART_LINES", 2)
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1}] * 3)
        assert _kinds(exc_info) == ["InvalidLineItem"]

    def test_stock_checked_across_lines(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([
                {"product_id": product.id, "quantity": 15},
                {"product_id": product.id, "quantity": 15},
            ])
        error = exc_info.value.errors[0]
        assert error["kind"] == "InsufficientStock"
        assert error["requested"] == 30
        assert error["shortfall"] == 5
        assert error["lines"] == [0, 1]

    def test_line_discount_above_line_amount(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1, "discount": "100.01"}])
        assert _kinds(exc_info) == ["InvalidDiscount"]

    def test_negative_line_discount(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1, "discount": "-1"}])
        assert _kinds(exc_info) == ["InvalidDiscount"]


# =============================================================================
# INACTIVE ROWS
# =============================================================================


class TestInactive:

    def test_inactive_product_not_found(self, db_session, product):
        product.is_active = False
        db_session.commit()
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1}])
        assert _kinds(exc_info) == ["ItemNotFound"]

    def test_variant_of_inactive_product_not_found(self, db_session, variant):
        variant.product.is_active = False
        db_session.commit()
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"variant_id": variant.id, "quantity": 1}])
        assert _kinds(exc_info) == ["ItemNotFound"]

    def test_inactive_customer_not_found(self, db_session, product, customer):
        customer.is_active = False
        db_session.commit()
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1}], customer_id=customer.id)
        assert _kinds(exc_info) == ["ItemNotFound"]


# =============================================================================
# LOYALTY
# =============================================================================


class TestLoyaltyChecks:

    def test_points_without_customer(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1}], loyalty_points=10)
        assert _kinds(exc_info) == ["InsufficientLoyaltyBalance"]

    def test_points_above_balance(self, product, loyal_customer):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart(
                [{"product_id": product.id, "quantity": 1}],
                customer_id=loyal_customer.id,
                loyalty_points=1001,
            )
        error = exc_info.value.errors[0]
        assert error["kind"] == "InsufficientLoyaltyBalance"
        assert error["available"] == 1000

    def test_negative_points(self, product, loyal_customer):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart(
                [{"product_id": product.id, "quantity": 1}],
                customer_id=loyal_customer.id,
                loyalty_points=-5,
            )
        assert _kinds(exc_info) == ["InvalidDiscount"]

    def test_cart_errors_and_loyalty_errors_together(self, product, loyal_customer):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart(
                [{"product_id": product.id, "quantity": 26}],
                customer_id=loyal_customer.id,
                loyalty_points=5000,
            )
        assert exc_info.value.kinds == {"InsufficientStock", "InsufficientLoyaltyBalance"}
        # line-level issues first
        assert _kinds(exc_info)[0] == "InsufficientStock"


# =============================================================================
# OVERSIZED INPUT
# =============================================================================


class TestOversizedInput:

    def test_huge_quantity_is_short_stock(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 10**30}])
        assert _kinds(exc_info) == ["InsufficientStock"]
        assert exc_info.value.errors[0]["requested"] == 10**30

    def test_short_lines_are_not_priced(self, product, cheap_product):
        cart = cart_service.inspect_cart([
            {"product_id": product.id, "quantity": 10**30, "discount": "5.00"},
            {"product_id": cheap_product.id, "quantity": 2},
        ])
        assert [e["kind"] for e in cart.issues] == ["InsufficientStock"]
        assert [line.sku for line in cart.lines] == ["GADGET-001"]
        assert cart.subtotal == Decimal("20.00")

    @pytest.mark.parametrize(
        "field,value,kind",
        [
            ("discount", "1e40", "InvalidDiscount"),
            ("unit_price", "1e40", "InvalidLineItem"),
            ("unit_price", 10**30, "InvalidLineItem"),
        ],
    )
    def test_amounts_over_the_ceiling(self, product, field, value, kind):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart([{"product_id": product.id, "quantity": 1, field: value}])
        assert _kinds(exc_info) == [kind]

    def test_ids_out_of_range(self, product):
        with pytest.raises(CartValidationError) as exc_info:
            cart_service.validate_cart(
                [{"product_id": 10**30, "quantity": 1}],
                customer_id=10**30,
            )
        assert set(_kinds(exc_info)) == {"InvalidLineItem", "ItemNotFound"}
