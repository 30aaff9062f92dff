# Overview: Service-layer operations for session; issues, validates and revokes bearer tokens.

"""
Bearer tokens for the till API.

A token is 32 random bytes shown to the client once; only its SHA-256
digest is kept. Sessions expire SESSION_TTL_HOURS after login and are
revoked on logout or as soon as the owning user is found deactivated.
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry full entropy, so a fast digest is enough here.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_open(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def _close(record: SessionToken, reason: str, when=None) -> None:
    record.is_revoked = True
    record.revoked_at = when or utcnow()
    record.revoked_reason = reason
    db.session.commit()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """Open a session for ``user_id`` and return it with the plaintext token."""
    if db.session.get(User, user_id) is None:
        raise ValueError("User not found")

    token = generate_token()
    issued = utcnow()
    lifetime = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))

    record = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=issued,
        last_used_at=issued,
        expires_at=issued + lifetime,
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    return record, token


def validate_session(token: str) -> User | None:
    """
    Resolve a bearer token to its user.

    Unknown, expired and revoked tokens give None. A token whose user has
    been deactivated is revoked here and also gives None.
    """
    record = _find_open(token)
    if record is None:
        return None

    now = utcnow()
    if record.expires_at < now:
        return None

    owner = record.user
    if owner is None or not owner.is_active:
        _close(record, "Account deactivated", now)
        return None

    record.last_used_at = now
    db.session.commit()
    return owner


def revoke_session(token: str, reason: str = "Logout") -> bool:
    """False when there was no open session for ``token``."""
    record = _find_open(token)
    if record is None:
        return False
    _close(record, reason)
    return True
