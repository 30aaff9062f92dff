# Overview: Service-layer operations for auth; password hashing and staff accounts.

"""
Authentication service.

Passwords are hashed with bcrypt. The cost factor comes from
BCRYPT_ROUNDS so the test suite can use a cheap one.
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateEntry, InvalidInput, duplicate_entry_from
from ..extensions import db
from ..models import User
from ..permissions import ROLES
from ..time_utils import utcnow
from . import session_service


class PasswordValidationError(InvalidInput):
    """Password too weak to store."""


MIN_PASSWORD_LENGTH = 8

_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"\d"), "a digit"),
)


def validate_password_strength(password: str) -> None:
    """At least eight characters mixing upper case, lower case and digits."""
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password needs at least {MIN_PASSWORD_LENGTH} characters")
    for pattern, label in _PASSWORD_RULES:
        if not pattern.search(password):
            raise PasswordValidationError(f"Password needs {label}")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored hash is not a bcrypt string
        return False


def create_user(
    *,
    username: str,
    email: str,
    password: str,
    role: str = "CASHIER",
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    role = (role or "").upper()
    if role not in ROLES:
        raise InvalidInput(f"role must be one of {', '.join(ROLES)}")
    if not username or not email:
        raise InvalidInput("username and email are required")

    user = User(
        username=username.strip(),
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        first_name=first_name,
        last_name=last_name,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise duplicate_entry_from(exc) or DuplicateEntry("User already exists")
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """Look up an active user by username or email and check the password."""
    if not identifier or not password:
        return None
    user = db.session.query(User).filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def login(identifier: str, password: str) -> tuple[User, str] | None:
    user = authenticate(identifier, password)
    if not user:
        current_app.logger.info("Failed login for %r", identifier)
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    _, token = session_service.create_session(user.id)
    return user, token
