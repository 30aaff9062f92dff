"""
Refund tests.

Verifies:
- Full and partial refunds restore stock and move the sale status
- Quantities and amounts can never exceed what was sold
- Customer totals drop and points paid with come back
- Earned points stay unless clawback is switched on
"""

import re

import pytest

from tillpoint.errors import (
    InvalidInput,
    InvalidLineItem,
    InvalidQuantity,
    RefundExceedsOriginal,
    SaleNotFound,
)
from tillpoint.models import Customer, InventoryAdjustment, Product, Refund, Sale, SaleItem, Variant
from tillpoint.services import refund_service, sales_service


def _sell(cashier, items, **kwargs):
    kwargs.setdefault("payment_method", "CASH")
    return sales_service.create_sale(items=items, cashier_id=cashier.id, **kwargs)


@pytest.fixture
def no_tax(app, monkeypatch):
    monkeypatch.setitem(app.config, "TAX_RATE", "0")


# =============================================================================
# FULL AND PARTIAL
# =============================================================================


class TestRefundFlow:

    def test_full_refund_of_hundred_dollar_sale(self, db_session, no_tax, product, customer, manager_user):
        sale = _sell(manager_user, [{"product_id": product.id, "quantity": 1}], customer_id=customer.id)
        assert sale.total_cents == 10000
        assert db_session.get(Customer, customer.id).total_spent_cents == 10000

        refund, sale = refund_service.refund_sale(
            sale.id,
            items=[{"product_id": product.id, "quantity": 1, "reason": "DEFECTIVE"}],
            actor_id=manager_user.id,
        )

        assert sale.sale_status == "REFUNDED"
        assert sale.payment_status == "REFUNDED"
        assert refund.to_dict()["amount"] == "100.00"
        assert re.fullmatch(r"RF-\d{8}-\d{3}", refund.refund_number)
        assert db_session.get(Product, product.id).stock_quantity == 25
        assert db_session.get(Customer, customer.id).total_spent_cents == 0

    def test_partial_then_rest(self, db_session, cheap_product, manager_user):
        # 3 x 10.00 + 10% tax = 33.00
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 3}])
        item_id = sale.items[0].id

        refund, sale = refund_service.refund_sale(
            sale.id, items=[{"sale_item_id": item_id, "quantity": 1}], actor_id=manager_user.id
        )
        assert sale.sale_status == "PARTIALLY_REFUNDED"
        assert refund.amount_cents == 1100
        assert db_session.get(Product, cheap_product.id).stock_quantity == 48

        refund, sale = refund_service.refund_sale(
            sale.id, items=[{"sale_item_id": item_id, "quantity": 2}], actor_id=manager_user.id
        )
        assert sale.sale_status == "REFUNDED"
        assert refund.amount_cents == 2200
        assert sale.refunded_cents == sale.total_cents
        assert db_session.get(Product, cheap_product.id).stock_quantity == 50

    def test_original_lines_are_not_modified(self, db_session, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 3}])
        refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 2}], actor_id=manager_user.id
        )
        item = db_session.query(SaleItem).filter_by(sale_id=sale.id).one()
        assert item.quantity == 3
        assert refund_service.refunded_quantities(sale.id) == {item.id: 2}

    def test_refund_adjustments_recorded(self, db_session, variant, manager_user):
        sale = _sell(manager_user, [{"variant_id": variant.id, "quantity": 2}])
        refund, _ = refund_service.refund_sale(
            sale.id, items=[{"variant_id": variant.id, "quantity": 2}], actor_id=manager_user.id
        )
        row = db_session.query(InventoryAdjustment).filter_by(refund_id=refund.id).one()
        assert (row.reason, row.variant_id, row.quantity_change, row.new_stock) == ("REFUND", variant.id, 2, 10)
        assert refund.items[0].inventory_adjustment_id == row.id
        assert db_session.get(Variant, variant.id).stock_quantity == 10

    def test_listing_refunds(self, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 2}])
        refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )
        refunds = refund_service.list_refunds(sale.id)
        assert len(refunds) == 1
        assert refunds[0].items[0].quantity == 1


# =============================================================================
# LIMITS
# =============================================================================


class TestRefundLimits:

    def test_more_than_sold(self, db_session, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 3}])
        with pytest.raises(RefundExceedsOriginal) as exc_info:
            refund_service.refund_sale(
                sale.id, items=[{"product_id": cheap_product.id, "quantity": 4}], actor_id=manager_user.id
            )
        assert exc_info.value.details["refundable"] == 3
        assert db_session.query(Refund).count() == 0
        assert db_session.get(Product, cheap_product.id).stock_quantity == 47
        assert db_session.get(Sale, sale.id).sale_status == "COMPLETED"

    def test_more_than_left_after_earlier_refund(self, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 3}])
        refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 2}], actor_id=manager_user.id
        )
        with pytest.raises(RefundExceedsOriginal) as exc_info:
            refund_service.refund_sale(
                sale.id, items=[{"product_id": cheap_product.id, "quantity": 2}], actor_id=manager_user.id
            )
        assert exc_info.value.details["refundable"] == 1

    def test_amount_above_remaining(self, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 1}])
        with pytest.raises(RefundExceedsOriginal):
            refund_service.refund_sale(
                sale.id,
                items=[{"product_id": cheap_product.id, "quantity": 1}],
                actor_id=manager_user.id,
                refund_amount="11.01",
            )

    def test_amount_override(self, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 2}])
        refund, sale = refund_service.refund_sale(
            sale.id,
            items=[{"product_id": cheap_product.id, "quantity": 1}],
            actor_id=manager_user.id,
            refund_amount="5.00",
            refund_method="STORE_CREDIT",
        )
        assert refund.amount_cents == 500
        assert refund.refund_method == "STORE_CREDIT"
        assert refund.items[0].amount_cents == 500
        assert sale.refunded_cents == 500

    @pytest.mark.parametrize("amount", ["1e40", 10**30])
    def test_oversized_amount_is_rejected(self, cheap_product, manager_user, amount):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 1}])
        with pytest.raises(InvalidInput):
            refund_service.refund_sale(
                sale.id,
                items=[{"product_id": cheap_product.id, "quantity": 1}],
                actor_id=manager_user.id,
                refund_amount=amount,
            )

    def test_unknown_sale(self, db_session, manager_user):
        with pytest.raises(SaleNotFound):
            refund_service.refund_sale(999999, items=[{"product_id": 1, "quantity": 1}], actor_id=manager_user.id)

    def test_fully_refunded_sale_cannot_be_refunded_again(self, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 1}])
        refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )
        with pytest.raises(SaleNotFound):
            refund_service.refund_sale(
                sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
            )

    def test_item_not_on_sale(self, product, cheap_product, manager_user):
        sale = _sell(manager_user, [{"product_id": cheap_product.id, "quantity": 1}])
        with pytest.raises(InvalidLineItem):
            refund_service.refund_sale(
                sale.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=manager_user.id
            )

    @pytest.mark.parametrize(
        "items,error",
        [
            (None, InvalidInput),
            ([], InvalidInput),
            ([{"quantity": 1}], InvalidLineItem),
            ([{"product_id": 1, "variant_id": 1, "quantity": 1}], InvalidLineItem),
            ([{"product_id": 1, "quantity": 0}], InvalidQuantity),
            ([{"product_id": 1, "quantity": 1, "reason": "BORED"}], InvalidInput),
        ],
    )
    def test_malformed_requests(self, db_session, manager_user, items, error):
        with pytest.raises(error):
            refund_service.refund_sale(1, items=items, actor_id=manager_user.id)


# =============================================================================
# CUSTOMER AND LOYALTY
# =============================================================================


class TestRefundLoyalty:

    def test_points_paid_with_come_back(self, db_session, product, loyal_customer, manager_user):
        sale = _sell(
            manager_user,
            [{"product_id": product.id, "quantity": 1}],
            customer_id=loyal_customer.id,
            loyalty_points_used=500,
        )
        # 1000 - 500 used + 105 earned
        assert db_session.get(Customer, loyal_customer.id).loyalty_points == 605

        refund, _ = refund_service.refund_sale(
            sale.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=manager_user.id
        )

        customer = db_session.get(Customer, loyal_customer.id)
        assert refund.loyalty_points_restored == 500
        assert refund.loyalty_points_clawed_back == 0
        assert customer.loyalty_points == 1105
        assert customer.total_spent_cents == 0

    def test_partial_refund_restores_points_pro_rata(self, db_session, cheap_product, loyal_customer, manager_user):
        # 4 x 10.00 + 4.00 tax - 4.00 in points = 40.00
        sale = _sell(
            manager_user,
            [{"product_id": cheap_product.id, "quantity": 4}],
            customer_id=loyal_customer.id,
            loyalty_points_used=400,
        )
        refund, _ = refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert refund.amount_cents == 1000
        assert refund.loyalty_points_restored == 100

    def test_points_come_back_when_points_paid_for_everything(
        self, db_session, cheap_product, loyal_customer, manager_user
    ):
        loyal_customer.loyalty_points = 5000
        db_session.commit()
        # 2 x 10.00 + 2.00 tax, all of it in points
        sale = _sell(
            manager_user,
            [{"product_id": cheap_product.id, "quantity": 2}],
            customer_id=loyal_customer.id,
            loyalty_points_used=2200,
        )
        assert sale.total_cents == 0

        refund, sale = refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert sale.sale_status == "PARTIALLY_REFUNDED"
        assert refund.amount_cents == 0
        assert refund.loyalty_points_restored == 1100
        assert db_session.get(Customer, loyal_customer.id).loyalty_points == 5000 - 2200 + 1100

        refund, sale = refund_service.refund_sale(
            sale.id, items=[{"product_id": cheap_product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert sale.sale_status == "REFUNDED"
        assert refund.loyalty_points_restored == 1100
        assert db_session.get(Customer, loyal_customer.id).loyalty_points == 5000

    def test_clawback_when_enabled(self, app, db_session, product, customer, manager_user, monkeypatch):
        monkeypatch.setitem(app.config, "LOYALTY_CLAWBACK_ON_REFUND", True)
        sale = _sell(manager_user, [{"product_id": product.id, "quantity": 1}], customer_id=customer.id)
        assert db_session.get(Customer, customer.id).loyalty_points == 110

        refund, sale = refund_service.refund_sale(
            sale.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert refund.loyalty_points_clawed_back == 110
        assert sale.loyalty_points_clawed_back == 110
        assert db_session.get(Customer, customer.id).loyalty_points == 0

    def test_clawback_never_goes_negative(self, app, db_session, product, customer, manager_user, monkeypatch):
        monkeypatch.setitem(app.config, "LOYALTY_CLAWBACK_ON_REFUND", True)
        sale = _sell(manager_user, [{"product_id": product.id, "quantity": 1}], customer_id=customer.id)

        # points spent elsewhere before the refund
        spent = db_session.get(Customer, customer.id)
        spent.loyalty_points = 30
        db_session.commit()

        refund, _ = refund_service.refund_sale(
            sale.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert refund.loyalty_points_clawed_back == 30
        assert db_session.get(Customer, customer.id).loyalty_points == 0

    def test_earned_points_kept_by_default(self, db_session, product, customer, manager_user):
        sale = _sell(manager_user, [{"product_id": product.id, "quantity": 1}], customer_id=customer.id)
        refund_service.refund_sale(
            sale.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=manager_user.id
        )
        assert db_session.get(Customer, customer.id).loyalty_points == 110
