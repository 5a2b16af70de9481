from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryHistory(db.Model):
    """
    Append-only audit trail for the counting workflow.

    APPEND-ONLY: rows are only ever inserted (history_service.record_event).
    """
    __tablename__ = "inventory_history"
    __table_args__ = (
        db.Index("ix_inventory_history_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # request, count_item, audit_document, audit_sample, adjustment_approval
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    action = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "description": self.description,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
