from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ADJUSTMENT_REASONS = ("SALE", "REFUND", "PURCHASE", "MANUAL", "DAMAGED", "EXPIRED", "TRANSFER")
# Reasons only the sale and refund processors may write
SYSTEM_REASONS = ("SALE", "REFUND")


class InventoryAdjustment(db.Model):
    """
    Append-only stock ledger.

    Every change to Product.stock_quantity or Variant.stock_quantity has
    exactly one row here, targeting either the product or the variant.

    INVARIANT: new_stock = previous_stock + quantity_change, new_stock >= 0.
    Both are CHECK constraints so a bad row cannot be written at all.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.CheckConstraint(
            "(product_id IS NOT NULL AND variant_id IS NULL) OR (product_id IS NULL AND variant_id IS NOT NULL)",
            name="ck_inventory_adjustments_one_target",
        ),
        db.CheckConstraint(
            "new_stock = previous_stock + quantity_change",
            name="ck_inventory_adjustments_balances",
        ),
        db.CheckConstraint("new_stock >= 0", name="ck_inventory_adjustments_nonnegative"),
        db.CheckConstraint("quantity_change <> 0", name="ck_inventory_adjustments_nonzero"),
        db.Index("ix_inventory_adjustments_product_created", "product_id", "created_at"),
        db.Index("ix_inventory_adjustments_variant_created", "variant_id", "created_at"),
        db.Index("ix_inventory_adjustments_reason", "reason"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=True, index=True)

    adjusted_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity_change": self.quantity_change,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "notes": self.notes,
            "sale_id": self.sale_id,
            "refund_id": self.refund_id,
            "adjusted_by_id": self.adjusted_by_id,
            "created_at": to_utc_z(self.created_at),
        }
