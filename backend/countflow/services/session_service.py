# Overview: Bearer session tokens establishing the identity context for API calls.

"""
Session Token Management

Tokens are issued by the CLI (or another trusted caller) for an existing
user; there is no password login. Only the SHA-256 hash is stored.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Absolute timeout from SESSION_TTL_HOURS
- Revocable
- Deactivated users lose their sessions on next use
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Identity context resolved from a bearer token."""
    user: User
    session: SessionToken

    @property
    def location_id(self) -> int | None:
        return self.user.location_id


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is sufficient for high-entropy tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Issue a new session token.

    Returns (session_record, plaintext_token); only the hash is persisted.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    if not user.is_active:
        raise ValidationError(f"User {user.username} is not active")

    plaintext_token = generate_token()
    now = utcnow()
    ttl_hours = int(current_app.config.get("SESSION_TTL_HOURS", 24))

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a plaintext token to its SessionContext.

    Returns None if the token is unknown, expired, revoked, or belongs to a
    deactivated user. Updates last_used_at on success.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
