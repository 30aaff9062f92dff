from __future__ import annotations

from ..extensions import db
from ..pricing import format_money
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    WHY: Enables customer lifetime value tracking, repeat purchase
    analysis, and the points program.

    loyalty_points and total_spent_cents are denormalized aggregates,
    written only by the sale and refund processors.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        db.CheckConstraint("total_spent_cents >= 0", name="ck_customers_spent_nonnegative"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "is_active": self.is_active,
            "loyalty_points": self.loyalty_points,
            "total_spent": format_money(self.total_spent_cents),
            "total_visits": self.total_visits,
            "last_visit_at": to_utc_z(self.last_visit_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class LoyaltyReward(db.Model):
    """Points earned (and optionally redeemed) by a customer on a sale."""
    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        db.Index("ix_loyalty_rewards_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    points_used = db.Column(db.Integer, nullable=False, default=0)
    reward_type = db.Column(db.String(32), nullable=False, default="POINTS_EARNED")
    reward_value = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(255), nullable=True)

    is_redeemed = db.Column(db.Boolean, nullable=False, default=False)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("loyalty_rewards", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "points_used": self.points_used,
            "reward_type": self.reward_type,
            "reward_value": self.reward_value,
            "description": self.description,
            "is_redeemed": self.is_redeemed,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
