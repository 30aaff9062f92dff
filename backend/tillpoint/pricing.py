# Overview: Pure money arithmetic for carts: line totals, tax, discounts and loyalty points.

"""
Pricing engine.

All amounts are decimal.Decimal quantized to 0.01 with ROUND_HALF_UP.
Nothing in this module touches the database or the Flask app; callers
pass in a PricingPolicy built from configuration.

Formula (every aggregation is quantized):
    subtotal         = sum(unit_price * quantity) - sum(line discount)
    tax_amount       = subtotal * tax_rate
    loyalty_discount = loyalty_points_used * loyalty_point_value
    total_amount     = subtotal + tax_amount - discount_amount - loyalty_discount
    points_earned    = floor(total_amount * loyalty_points_per_unit)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Context, Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Iterable, Mapping

from .errors import InvalidDiscount

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest amount a client may send for any money field, 9,999,999.99
MAX_PRICE_CENTS = 999_999_999
MAX_AMOUNT = Decimal(MAX_PRICE_CENTS) / 100

# Wide enough that quantizing any line or sale amount cannot overflow
_MONEY_CONTEXT = Context(prec=60, rounding=ROUND_HALF_UP)


def to_money(value) -> Decimal:
    """Quantize to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, context=_MONEY_CONTEXT)


def parse_money(value, *, field: str = "amount") -> Decimal:
    """
    Parse a client-supplied amount.

    Accepts int, float, str and Decimal. Floats go through repr() so 0.1
    stays 0.1. Raises ValueError for booleans, NaN/Infinity, garbage and
    anything larger than MAX_AMOUNT either way.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        parsed = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number")
    if not parsed.is_finite():
        raise ValueError(f"{field} must be a finite number")
    if abs(parsed) > MAX_AMOUNT:
        raise ValueError(f"{field} cannot exceed {MAX_AMOUNT:,}")
    return to_money(parsed)


def to_cents(amount: Decimal) -> int:
    return int(to_money(amount) * 100)


def from_cents(cents: int | None) -> Decimal:
    return to_money(Decimal(cents or 0) / 100)


def format_money(cents: int | None) -> str:
    """Cents column to the JSON representation ("12.50")."""
    return str(from_cents(cents))


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.08")
    loyalty_point_value: Decimal = Decimal("0.01")
    loyalty_points_per_unit: Decimal = Decimal("1")

    @classmethod
    def from_config(cls, config: Mapping) -> "PricingPolicy":
        return cls(
            tax_rate=Decimal(str(config.get("TAX_RATE", "0.08"))),
            loyalty_point_value=Decimal(str(config.get("LOYALTY_POINT_VALUE", "0.01"))),
            loyalty_points_per_unit=Decimal(str(config.get("LOYALTY_POINTS_PER_UNIT", "1"))),
        )


@dataclass(frozen=True)
class PricedLine:
    unit_price: Decimal
    quantity: int
    gross: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    loyalty_points_used: int
    loyalty_discount: Decimal
    total_amount: Decimal
    loyalty_points_earned: int

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "discount_amount": str(self.discount_amount),
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_discount": str(self.loyalty_discount),
            "total_amount": str(self.total_amount),
            "loyalty_points_earned": self.loyalty_points_earned,
        }


def price_line(unit_price, quantity: int, discount=ZERO) -> PricedLine:
    unit_price = to_money(unit_price)
    discount = to_money(discount)
    if discount < 0:
        raise InvalidDiscount("Line discount cannot be negative", {"discount": str(discount)})
    gross = to_money(unit_price * quantity)
    if discount > gross:
        raise InvalidDiscount(
            "Line discount exceeds line amount",
            {"discount": str(discount), "line_amount": str(gross)},
        )
    return PricedLine(
        unit_price=unit_price,
        quantity=quantity,
        gross=gross,
        discount=discount,
        total=gross - discount,
    )


def loyalty_discount_for(points: int, policy: PricingPolicy) -> Decimal:
    return to_money(Decimal(points) * policy.loyalty_point_value)


def points_earned_for(total_amount: Decimal, policy: PricingPolicy) -> int:
    if total_amount <= 0:
        return 0
    earned = (total_amount * policy.loyalty_points_per_unit).to_integral_value(rounding=ROUND_FLOOR)
    return int(earned)


def compute_totals(
    lines: Iterable[PricedLine],
    policy: PricingPolicy,
    *,
    discount_amount=ZERO,
    loyalty_points_used: int = 0,
) -> SaleTotals:
    lines = list(lines)
    discount_amount = to_money(discount_amount)
    if discount_amount < 0:
        raise InvalidDiscount("Discount cannot be negative", {"discount_amount": str(discount_amount)})
    if loyalty_points_used < 0:
        raise InvalidDiscount("Loyalty points cannot be negative", {"loyalty_points_used": loyalty_points_used})

    gross = to_money(sum((line.gross for line in lines), ZERO))
    line_discounts = to_money(sum((line.discount for line in lines), ZERO))
    subtotal = gross - line_discounts
    tax_amount = to_money(subtotal * policy.tax_rate)
    loyalty_discount = loyalty_discount_for(loyalty_points_used, policy)

    total_amount = to_money(subtotal + tax_amount - discount_amount - loyalty_discount)
    if total_amount < 0:
        raise InvalidDiscount(
            "Discounts exceed the sale amount",
            {
                "subtotal": str(subtotal),
                "tax_amount": str(tax_amount),
                "discount_amount": str(discount_amount),
                "loyalty_discount": str(loyalty_discount),
            },
        )

    return SaleTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        loyalty_points_used=loyalty_points_used,
        loyalty_discount=loyalty_discount,
        total_amount=total_amount,
        loyalty_points_earned=points_earned_for(total_amount, policy),
    )

