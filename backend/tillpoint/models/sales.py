from __future__ import annotations

from ..extensions import db
from ..pricing import format_money
from ..time_utils import to_utc_z, utcnow

PAYMENT_METHODS = ("CASH", "CARD", "UPI", "BANK_TRANSFER", "MOBILE_MONEY", "CHECK", "GIFT_CARD")
SALE_STATUSES = ("COMPLETED", "PARTIALLY_REFUNDED", "REFUNDED")
REFUNDABLE_STATUSES = ("COMPLETED", "PARTIALLY_REFUNDED")
REFUND_METHODS = ("CASH", "CARD_REFUND", "STORE_CREDIT")
REFUND_REASONS = ("DEFECTIVE", "WRONG_ITEM", "CUSTOMER_REQUEST", "OTHER")


class Sale(db.Model):
    """
    Completed sale.

    A Sale row only exists once the whole transaction committed: stock was
    decremented, adjustments written and the customer updated in the same
    unit of work. There is no draft state.

    INVARIANT: total = subtotal + tax - discount - loyalty_discount
    (enforced by a CHECK constraint on the cents columns).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.CheckConstraint(
            "total_cents = subtotal_cents + tax_cents - discount_cents - loyalty_discount_cents",
            name="ck_sales_total_balances",
        ),
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_nonnegative"),
        db.CheckConstraint("refunded_cents >= 0 AND refunded_cents <= total_cents", name="ck_sales_refunded_bounds"),
        db.Index("ix_sales_status_created", "sale_status", "created_at"),
        db.Index("ix_sales_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "INV-20261019-001")
    invoice_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    # Refund bookkeeping
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_restored = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_clawed_back = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="PAID")  # PAID, PARTIALLY_REFUNDED, REFUNDED
    sale_status = db.Column(db.String(24), nullable=False, default="COMPLETED", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "subtotal": format_money(self.subtotal_cents),
            "tax_amount": format_money(self.tax_cents),
            "discount_amount": format_money(self.discount_cents),
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_discount": format_money(self.loyalty_discount_cents),
            "total_amount": format_money(self.total_cents),
            "loyalty_points_earned": self.loyalty_points_earned,
            "refunded_amount": format_money(self.refunded_cents),
            "loyalty_points_restored": self.loyalty_points_restored,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "sale_status": self.sale_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale. Never modified after the sale commits.

    product_id always points at the owning product, also for variant
    lines, so reports can roll variants up to products. Name, SKU and unit
    price are snapshots taken at sale time.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sale_items_discount_nonnegative"),
        db.Index("ix_sale_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")
    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": format_money(self.unit_price_cents),
            "discount": format_money(self.discount_cents),
            "total_price": format_money(self.total_price_cents),
        }


class Refund(db.Model):
    """Money and goods returned against one sale."""
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("refund_number", name="uq_refunds_refund_number"),
        db.CheckConstraint("amount_cents >= 0", name="ck_refunds_amount_nonnegative"),
        db.Index("ix_refunds_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_number = db.Column(db.String(64), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    refund_method = db.Column(db.String(32), nullable=False, default="CASH")
    notes = db.Column(db.Text, nullable=True)

    loyalty_points_restored = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_clawed_back = db.Column(db.Integer, nullable=False, default=0)

    processed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))
    items = db.relationship("RefundItem", back_populates="refund", cascade="all, delete-orphan", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_number": self.refund_number,
            "sale_id": self.sale_id,
            "amount": format_money(self.amount_cents),
            "refund_method": self.refund_method,
            "notes": self.notes,
            "loyalty_points_restored": self.loyalty_points_restored,
            "loyalty_points_clawed_back": self.loyalty_points_clawed_back,
            "processed_by_id": self.processed_by_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class RefundItem(db.Model):
    __tablename__ = "refund_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_refund_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, default="CUSTOMER_REQUEST")
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    inventory_adjustment_id = db.Column(db.Integer, db.ForeignKey("inventory_adjustments.id"), nullable=True)

    refund = db.relationship("Refund", back_populates="items")
    sale_item = db.relationship("SaleItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.sale_item.product_id if self.sale_item else None,
            "variant_id": self.sale_item.variant_id if self.sale_item else None,
            "quantity": self.quantity,
            "reason": self.reason,
            "amount": format_money(self.amount_cents),
            "inventory_adjustment_id": self.inventory_adjustment_id,
        }
