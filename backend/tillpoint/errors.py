# Overview: Domain error taxonomy and the Flask handlers that render it as JSON.

from __future__ import annotations

import re
import uuid

from flask import current_app, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from .extensions import db
from .time_utils import utcnow, to_utc_z


class PosError(Exception):
    """
    Base class for every failure a client is allowed to see.

    `kind` is the stable machine-readable name, `status_code` the HTTP
    status the API answers with.
    """
    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"kind": self.kind, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInput(PosError):
    """Malformed request body outside of cart lines."""
    kind = "InvalidInput"
    status_code = 400


class InvalidLineItem(PosError):
    kind = "InvalidLineItem"
    status_code = 400


class ItemNotFound(PosError):
    kind = "ItemNotFound"
    status_code = 404


class InvalidQuantity(PosError):
    kind = "InvalidQuantity"
    status_code = 400


class InsufficientStock(PosError):
    kind = "InsufficientStock"
    status_code = 400


class InsufficientLoyaltyBalance(PosError):
    kind = "InsufficientLoyaltyBalance"
    status_code = 400


class InvalidDiscount(PosError):
    kind = "InvalidDiscount"
    status_code = 400


class ConcurrentStockConflict(PosError):
    kind = "ConcurrentStockConflict"
    status_code = 409


class DuplicateEntry(PosError):
    kind = "DuplicateEntry"
    status_code = 409


class SaleNotFound(PosError):
    kind = "SaleNotFound"
    status_code = 404


class RefundExceedsOriginal(PosError):
    kind = "RefundExceedsOriginal"
    status_code = 400


class Unauthorized(PosError):
    kind = "Unauthorized"
    status_code = 401


class Forbidden(Unauthorized):
    """Authenticated, but the policy denies the action."""
    status_code = 403


class InternalError(PosError):
    kind = "InternalError"
    status_code = 500


class CartValidationError(PosError):
    """
    All problems found in one cart, reported together.

    Every entry in `errors` is a dict with at least `kind` and `message`;
    line-level entries also carry the zero-based `line` index.
    """
    status_code = 400

    def __init__(self, errors: list[dict]):
        super().__init__("Cart validation failed", {})
        self.errors = list(errors)
        self.kind = self.errors[0]["kind"] if self.errors else "InvalidLineItem"

    @property
    def kinds(self) -> set[str]:
        return {e["kind"] for e in self.errors}

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message, "errors": self.errors}


_UNIQUE_PATTERNS = (
    # sqlite: UNIQUE constraint failed: products.sku
    re.compile(r"UNIQUE constraint failed: (?P<table>\w+)\.(?P<field>\w+)"),
    # postgres: Key (sku)=(ABC) already exists.
    re.compile(r"Key \((?P<field>[\w, ]+)\)=\(.*\) already exists"),
    # mysql: Duplicate entry 'ABC' for key 'products.sku'
    re.compile(r"Duplicate entry .* for key '(?:(?P<table>\w+)\.)?(?P<field>\w+)'"),
)


def duplicate_entry_from(exc: IntegrityError) -> DuplicateEntry | None:
    """Translate a unique-constraint IntegrityError, or None for other integrity failures."""
    text = str(exc.orig) if exc.orig is not None else str(exc)
    for pattern in _UNIQUE_PATTERNS:
        match = pattern.search(text)
        if match:
            field = match.group("field")
            return DuplicateEntry(
                f"A record with this {field} already exists",
                details={"field": field},
            )
    if "unique" in text.lower() or "duplicate" in text.lower():
        return DuplicateEntry("A record with this value already exists")
    return None


def _internal_error_response(exc: Exception):
    correlation_id = uuid.uuid4().hex
    current_app.logger.exception("Unhandled error (correlation_id=%s)", correlation_id)
    payload = {
        "kind": InternalError.kind,
        "error": "Internal server error",
        "correlation_id": correlation_id,
        "timestamp": to_utc_z(utcnow()),
    }
    if current_app.config.get("EXPOSE_ERROR_DETAILS"):
        payload["details"] = {"exception": repr(exc)}
    return jsonify(payload), 500


def register_error_handlers(app) -> None:
    """Render every failure as a JSON body carrying its error kind."""

    @app.errorhandler(PosError)
    def handle_pos_error(exc: PosError):
        db.session.rollback()
        if isinstance(exc, InternalError):
            return _internal_error_response(exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc: IntegrityError):
        db.session.rollback()
        duplicate = duplicate_entry_from(exc)
        if duplicate is not None:
            return jsonify(duplicate.to_dict()), duplicate.status_code
        return _internal_error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"kind": exc.name.replace(" ", ""), "error": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        return _internal_error_response(exc)
