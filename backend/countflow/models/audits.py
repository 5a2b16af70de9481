from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


AUDIT_STATUS_DRAFT = "draft"
AUDIT_STATUS_IN_PROGRESS = "in_progress"
AUDIT_STATUS_COMPLETED = "completed"
AUDIT_STATUS_APPROVED = "approved"
AUDIT_STATUS_REJECTED = "rejected"

# Documents in these states still own their samples
AUDIT_UNDECIDED_STATUSES = (
    AUDIT_STATUS_DRAFT,
    AUDIT_STATUS_IN_PROGRESS,
    AUDIT_STATUS_COMPLETED,
)

SAMPLING_RANDOM = "random"
SAMPLING_MANUAL = "manual"
SAMPLING_MIXED = "mixed"
SAMPLING_TYPES = (SAMPLING_RANDOM, SAMPLING_MANUAL, SAMPLING_MIXED)


class AuditDocument(db.Model):
    """
    One auditor's sampling pass over a location's approved count items.

    LIFECYCLE:
    1. draft: header created, samples being drawn
    2. in_progress: samples drawn, results being recorded
    3. completed: derived, every sample has a result
    4. approved / rejected: supervisory decision over the whole document
    """
    __tablename__ = "inventory_audit_documents"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_audit_documents_number"),
        db.Index("ix_audit_documents_location_status", "location_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(32), nullable=False)

    auditor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    # Optional restriction of the population to one request
    request_id = db.Column(db.Integer, db.ForeignKey("inventory_requests.id"), nullable=True, index=True)

    sampling_type = db.Column(db.String(16), nullable=False)
    sampling_percentage = db.Column(db.Integer, nullable=True)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    sampled_items = db.Column(db.Integer, nullable=False, default=0)
    # Ids of the approved items the sample was drawn from; approval audits only these
    population_item_ids = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=AUDIT_STATUS_DRAFT, index=True)
    approval_result = db.Column(db.String(16), nullable=True)
    result_comments = db.Column(db.Text, nullable=True)
    mismatched_samples = db.Column(db.Integer, nullable=True)

    decided_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    samples = db.relationship(
        "AuditSample",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AuditSample.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<AuditDocument id={self.id} number={self.document_number!r} status={self.status!r}>"

    def to_dict(self, include_samples: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "auditor_id": self.auditor_id,
            "location_id": self.location_id,
            "request_id": self.request_id,
            "sampling_type": self.sampling_type,
            "sampling_percentage": self.sampling_percentage,
            "total_items": self.total_items,
            "sampled_items": self.sampled_items,
            "status": self.status,
            "approval_result": self.approval_result,
            "result_comments": self.result_comments,
            "mismatched_samples": self.mismatched_samples,
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_samples:
            data["samples"] = [sample.to_dict() for sample in self.samples]
        return data


class AuditSample(db.Model):
    """
    One sampled count item within an audit document.

    matches_original stays NULL until a result is recorded.
    """
    __tablename__ = "inventory_audit_samples"
    __table_args__ = (
        db.UniqueConstraint("audit_document_id", "count_item_id", name="uq_audit_samples_document_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_document_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory_audit_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    count_item_id = db.Column(db.Integer, db.ForeignKey("inventory_count_items.id"), nullable=False, index=True)

    audit_physical_count = db.Column(db.Integer, nullable=True)
    audit_difference = db.Column(db.Integer, nullable=True)
    matches_original = db.Column(db.Boolean, nullable=True)
    approved = db.Column(db.Boolean, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    audited_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    audited_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    document = db.relationship("AuditDocument", back_populates="samples")
    count_item = db.relationship("CountItem")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def has_result(self) -> bool:
        return self.audited_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_document_id": self.audit_document_id,
            "count_item_id": self.count_item_id,
            "item_code": self.count_item.item_code if self.count_item else None,
            "original_physical_count": self.count_item.physical_count if self.count_item else None,
            "audit_physical_count": self.audit_physical_count,
            "audit_difference": self.audit_difference,
            "matches_original": self.matches_original,
            "approved": self.approved,
            "rejection_reason": self.rejection_reason,
            "audited_by": self.audited_by,
            "audited_at": to_utc_z(self.audited_at),
        }
