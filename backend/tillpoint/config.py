# backend/tillpoint/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillpoint.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Never enable in production: leaks exception text to clients
    EXPOSE_ERROR_DETAILS = _env_bool("EXPOSE_ERROR_DETAILS")

    # Pricing (decimal strings, parsed by pricing.PricingPolicy)
    TAX_RATE = os.environ.get("TAX_RATE", "0.08")
    LOYALTY_POINT_VALUE = os.environ.get("LOYALTY_POINT_VALUE", "0.01")  # 100 points = 1.00
    LOYALTY_POINTS_PER_UNIT = os.environ.get("LOYALTY_POINTS_PER_UNIT", "1")  # points per 1.00 spent
    LOYALTY_REWARD_EXPIRY_DAYS = int(os.environ.get("LOYALTY_REWARD_EXPIRY_DAYS", "365"))
    LOYALTY_CLAWBACK_ON_REFUND = _env_bool("LOYALTY_CLAWBACK_ON_REFUND")

    # Document numbering
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    REFUND_PREFIX = os.environ.get("REFUND_PREFIX", "RF")

    MAX_CART_LINES = int(os.environ.get("MAX_CART_LINES", "100"))

    # Auth
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
