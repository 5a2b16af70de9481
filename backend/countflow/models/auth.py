from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Workflow actor.

    WHY: Every transition must be attributable. The role decides which
    transitions the user may attempt; location_id scopes managers and counters.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.Index("ix_users_location_role", "location_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # admin, manager, inventory_coordinator, inventory_auditor, adjustment_approver, user
    role = db.Column(db.String(32), nullable=False, default="user", index=True)

    # Location association (nullable for org-level roles such as coordinators)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location", backref=db.backref("users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "location_id": self.location_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session token establishing the identity context.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute timeout from SESSION_TTL_HOURS
    - Revocable
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at),
        }
