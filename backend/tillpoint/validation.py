from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .errors import InvalidInput
from .pricing import parse_money, to_cents
from .time_utils import parse_iso_datetime


class ValidationError(InvalidInput):
    """Payload rejected before it reaches the database."""


# Integer columns are 32-bit on every supported database
MAX_INT = 2**31 - 1


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which request fields a service accepts for one model.

    writable_fields is the allowlist; anything else in the body is rejected.
    money_fields maps a decimal request field ("price") onto its cents
    column ("price_cents").
    """
    writable_fields: set[str]
    required_on_create: set[str] = frozenset()
    money_fields: dict[str, str] | None = None


def _to_int(key: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false is never a count
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an integer")
    text = value.strip()
    digits = text[1:] if text.startswith("-") else text
    if not digits.isdigit():
        raise ValidationError(f"{key} must be a plain integer")
    return int(text)


def _to_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false")
    return value


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 timestamp")
    return parsed


def _to_mapping(key: str, value: Any) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return value


def _to_text(key: str, value: Any) -> str:
    return str(value).strip()


# Checked in order; Text is a String subclass so one entry covers both.
_COERCERS = (
    (Boolean, _to_bool),
    (Integer, _to_int),
    (DateTime, _to_datetime),
    (JSON, _to_mapping),
    (String, _to_text),
)


def _coerce(column, value: Any):
    for column_type, coercer in _COERCERS:
        if isinstance(column.type, column_type):
            return coercer(column.key, value)
    return value


def _coerce_money(field: str, value: Any) -> int:
    try:
        amount = parse_money(value, field=field)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if amount < Decimal("0"):
        raise ValidationError(f"{field} must be >= 0")
    return to_cents(amount)


def _check_text(key: str, column, value: str) -> None:
    if value == "" and not column.nullable:
        raise ValidationError(f"{key} cannot be blank")
    limit = getattr(column.type, "length", None)
    if limit and len(value) > limit:
        raise ValidationError(f"{key} is longer than {limit} characters")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Turn a JSON body into column values for ``model``.

    Types, nullability and String lengths come from the mapped columns.
    On create (partial=False) every required field must be present and
    non-empty; on update only the supplied keys are checked. Money fields
    come back already converted to cents under their column name.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    money_fields = policy.money_fields or {}

    rejected = [k for k in payload if k not in policy.writable_fields]
    if rejected:
        raise ValidationError(f"Field not allowed: {rejected[0]}")
    unknown = [k for k in payload if k not in columns and k not in money_fields]
    if unknown:
        raise ValidationError(f"Unknown field: {unknown[0]}")

    cleaned: dict = {}
    for key, raw in payload.items():
        target = money_fields.get(key, key)
        column = columns[target]

        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[target] = None
            continue

        if key in money_fields:
            cleaned[target] = _coerce_money(key, raw)
            continue

        value = _coerce(column, raw)
        if isinstance(value, str):
            _check_text(key, column, value)
        elif isinstance(value, int) and not isinstance(value, bool):
            if abs(value) > MAX_INT:
                raise ValidationError(f"{key} is out of range")
            if key.endswith(("quantity", "level")) and value < 0:
                raise ValidationError(f"{key} must be >= 0")

        cleaned[target] = value

    return cleaned
