# Overview: Service-layer operations for customers; registration, lookup, soft delete and loyalty rewards.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientLoyaltyBalance, InvalidInput, ItemNotFound, duplicate_entry_from
from ..extensions import db
from ..models import Customer, LoyaltyReward
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from .concurrency import atomic, run_with_retry

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"first_name", "last_name", "email", "phone", "address"},
    required_on_create={"first_name", "last_name"},
)


def create_customer(payload: dict) -> Customer:
    """
    Balances (points, total spent, visits) always start at zero; only
    sales and refunds move them.
    """
    data = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY)
    if data.get("email"):
        email = data["email"].lower()
        if "@" not in email:
            raise ValidationError("email must be a valid email address")
        data["email"] = email
    elif "email" in data:
        data["email"] = None

    customer = Customer(**data)
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        duplicate = duplicate_entry_from(exc)
        if duplicate is None:
            raise
        raise duplicate
    return customer


def get_customer(customer_id: int, *, include_inactive: bool = False) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer or (not customer.is_active and not include_inactive):
        raise ItemNotFound("Customer not found", {"customer_id": customer_id})
    return customer


def deactivate_customer(customer_id: int) -> Customer:
    customer = get_customer(customer_id)
    customer.is_active = False
    db.session.commit()
    return customer


def list_customers(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    query = db.session.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    total = query.count()
    limit = max(1, min(limit, 200))
    customers = (
        query.order_by(Customer.last_name, Customer.first_name, Customer.id)
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )
    return customers, total


def list_rewards(customer_id: int) -> list[LoyaltyReward]:
    get_customer(customer_id, include_inactive=True)
    return (
        db.session.query(LoyaltyReward)
        .filter(LoyaltyReward.customer_id == customer_id)
        .order_by(LoyaltyReward.id.desc())
        .all()
    )


REWARD_TYPES = ("DISCOUNT", "FREE_PRODUCT", "CASHBACK", "POINTS_MULTIPLIER")

REWARD_POLICY = ModelValidationPolicy(
    writable_fields={"points_used", "reward_type", "reward_value", "description", "expires_at"},
    required_on_create={"points_used", "reward_type", "reward_value", "description"},
)


def _debit_points(customer: Customer, points: int) -> None:
    """Conditional decrement; the WHERE clause re-checks the balance."""
    stmt = (
        update(Customer)
        .where(Customer.id == customer.id, Customer.loyalty_points >= points)
        .values(loyalty_points=Customer.loyalty_points - points, version_id=Customer.version_id + 1)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        raise InsufficientLoyaltyBalance(
            "Insufficient loyalty points",
            {"customer_id": customer.id, "requested": points, "available": customer.loyalty_points},
        )
    db.session.refresh(customer)


def create_reward(customer_id: int, payload: dict, actor_id: int | None = None) -> LoyaltyReward:
    """
    Issue a reward to a customer, paid for with ``points_used`` points.

    reward_value is a whole number in the reward's own unit: percent for
    DISCOUNT and POINTS_MULTIPLIER, cents for CASHBACK, units for
    FREE_PRODUCT.
    """
    data = validate_payload(model=LoyaltyReward, payload=payload, policy=REWARD_POLICY)
    if data["reward_type"].upper() not in REWARD_TYPES:
        raise ValidationError(f"reward_type must be one of {', '.join(REWARD_TYPES)}")
    data["reward_type"] = data["reward_type"].upper()
    if data["points_used"] < 0:
        raise ValidationError("points_used must be >= 0")
    if data["reward_value"] <= 0:
        raise ValidationError("reward_value must be > 0")
    if data.get("expires_at") is not None and data["expires_at"] < utcnow():
        raise ValidationError("expires_at must be in the future")

    def _op() -> LoyaltyReward:
        with atomic():
            customer = get_customer(customer_id)
            if data["points_used"] > customer.loyalty_points:
                raise InsufficientLoyaltyBalance(
                    "Insufficient loyalty points",
                    {
                        "customer_id": customer_id,
                        "requested": data["points_used"],
                        "available": customer.loyalty_points,
                    },
                )
            if data["points_used"]:
                _debit_points(customer, data["points_used"])
            reward = LoyaltyReward(customer_id=customer_id, is_redeemed=False, **data)
            db.session.add(reward)
        return reward

    reward = run_with_retry(_op)
    current_app.logger.info(
        "Loyalty reward %s issued: customer=%s type=%s points=%s by user=%s",
        reward.id, customer_id, reward.reward_type, reward.points_used, actor_id,
    )
    return reward


def redeem_reward(customer_id: int, reward_id: int, actor_id: int | None = None) -> LoyaltyReward:
    """Mark a reward as used. A reward redeems once and never after it expires."""
    get_customer(customer_id)
    reward = (
        db.session.query(LoyaltyReward)
        .filter(LoyaltyReward.id == reward_id, LoyaltyReward.customer_id == customer_id)
        .first()
    )
    if reward is None:
        raise ItemNotFound("Loyalty reward not found", {"customer_id": customer_id, "reward_id": reward_id})
    if reward.is_redeemed:
        raise InvalidInput("Loyalty reward has already been redeemed", {"reward_id": reward_id})
    now = utcnow()
    if reward.expires_at is not None and reward.expires_at < now:
        raise InvalidInput("Loyalty reward has expired", {"reward_id": reward_id})

    reward.is_redeemed = True
    reward.redeemed_at = now
    db.session.commit()
    current_app.logger.info(
        "Loyalty reward %s redeemed: customer=%s by user=%s", reward_id, customer_id, actor_id
    )
    return reward
