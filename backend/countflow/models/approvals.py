from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


APPROVAL_STATUS_PENDING = "pending"
APPROVAL_STATUS_APPROVED = "approved"
APPROVAL_STATUS_REJECTED = "rejected"


class DivisionApprover(db.Model):
    """Configured approver set per division code."""
    __tablename__ = "inventory_division_approvers"
    __table_args__ = (
        db.UniqueConstraint("division_code", "user_id", name="uq_division_approvers_division_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    division_code = db.Column(db.String(32), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "division_code": self.division_code,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AdjustmentApproval(db.Model):
    """
    Division-scoped approval gate for a request's reconciled items.

    approver_ids is frozen at creation; reconfiguring a division's approvers
    does not change gates already opened.

    INVARIANT: once status leaves "pending" the row is immutable.
    """
    __tablename__ = "inventory_adjustment_approvals"
    __table_args__ = (
        db.Index("ix_adjustment_approvals_request_division", "request_id", "division_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("inventory_requests.id"), nullable=False, index=True)
    division_code = db.Column(db.String(32), nullable=True)

    approver_ids = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=APPROVAL_STATUS_PENDING, index=True)

    comment = db.Column(db.Text, nullable=True)
    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    decided_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<AdjustmentApproval id={self.id} division={self.division_code!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "division_code": self.division_code,
            "approver_ids": self.approver_ids or [],
            "status": self.status,
            "comment": self.comment,
            "opened_by": self.opened_by,
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }
