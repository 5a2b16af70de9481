from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Request status constants
REQUEST_STATUS_DRAFT = "draft"
REQUEST_STATUS_SENT = "sent"
REQUEST_STATUS_IN_PROGRESS = "in_progress"
REQUEST_STATUS_COMPLETED = "completed"
REQUEST_STATUS_CANCELLED = "cancelled"

# Request type constants
REQUEST_TYPES = ("manual", "automatic", "division", "category", "group")

# Count item status constants
ITEM_STATUS_PENDING = "pending"
ITEM_STATUS_ASSIGNED = "assigned"
ITEM_STATUS_COUNTED = "counted"
ITEM_STATUS_REVIEWING = "reviewing"
ITEM_STATUS_APPROVED = "approved"
ITEM_STATUS_REJECTED = "rejected"
ITEM_STATUS_AUDITED = "audited"
ITEM_STATUS_SENT_FOR_APPROVAL = "sent_for_approval"
ITEM_STATUS_ADJUSTMENT_APPROVED = "adjustment_approved"
ITEM_STATUS_ADJUSTMENT_REJECTED = "adjustment_rejected"
ITEM_STATUS_ADJUSTED = "adjusted"

# Statuses in which the count itself is accepted; a request whose items are
# all settled is completed. Rejected items loop back to the counter.
SETTLED_ITEM_STATUSES = (
    ITEM_STATUS_APPROVED,
    ITEM_STATUS_AUDITED,
    ITEM_STATUS_SENT_FOR_APPROVAL,
    ITEM_STATUS_ADJUSTMENT_APPROVED,
    ITEM_STATUS_ADJUSTMENT_REJECTED,
    ITEM_STATUS_ADJUSTED,
)

ADJUSTMENT_POSITIVE = "positive"
ADJUSTMENT_NEGATIVE = "negative"
ADJUSTMENT_NONE = "none"


class InventoryRequest(db.Model):
    """
    One counting campaign.

    LIFECYCLE:
    1. draft: created, count items seeded per target location
    2. sent: released to the locations (explicit action)
    3. in_progress: derived, some item left "pending"
    4. completed: derived, every item settled
    5. cancelled: explicit, before counting results exist

    The filter is either explicit item codes or division/category/group sets.
    """
    __tablename__ = "inventory_requests"
    __table_args__ = (
        db.UniqueConstraint("request_number", name="uq_inventory_requests_number"),
        db.Index("ix_inventory_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # INV-<year>-<seq>, allocated from DocumentSequence
    request_number = db.Column(db.String(32), nullable=False)
    request_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REQUEST_STATUS_DRAFT, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Target locations (ids) and filter sets, JSON arrays
    location_ids = db.Column(db.JSON, nullable=False)
    filter_divisions = db.Column(db.JSON, nullable=True)
    filter_categories = db.Column(db.JSON, nullable=True)
    filter_groups = db.Column(db.JSON, nullable=True)
    filter_specific_codes = db.Column(db.JSON, nullable=True)

    comments = db.Column(db.Text, nullable=True)
    # Opaque references to files kept by the storage collaborator
    attachment_files = db.Column(db.JSON, nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    creator = db.relationship("User", foreign_keys=[created_by])
    items = db.relationship(
        "CountItem",
        back_populates="request",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<InventoryRequest id={self.id} number={self.request_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_number": self.request_number,
            "request_type": self.request_type,
            "status": self.status,
            "created_by": self.created_by,
            "location_ids": self.location_ids or [],
            "filter_divisions": self.filter_divisions,
            "filter_categories": self.filter_categories,
            "filter_groups": self.filter_groups,
            "filter_specific_codes": self.filter_specific_codes,
            "comments": self.comments,
            "attachment_files": self.attachment_files,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }


class CountItem(db.Model):
    """
    One product at one location within one request.

    Product identity, classification, system quantity and unit cost are
    snapshotted when the request is created and never re-fetched.

    INVARIANT: when physical_count is set,
        difference = physical_count - system_inventory
        adjustment_type = sign(difference)
        cost_impact_cents = difference * unit_cost_cents
    Only count_item_service.apply_physical_count writes these fields.
    """
    __tablename__ = "inventory_count_items"
    __table_args__ = (
        db.UniqueConstraint("request_id", "location_id", "item_code", name="uq_count_items_request_location_item"),
        db.Index("ix_count_items_location_status", "location_id", "status"),
        db.Index("ix_count_items_assignee_status", "assigned_to", "status"),
        db.Index("ix_count_items_request_division", "request_id", "division_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    # Product snapshot
    item_code = db.Column(db.String(64), nullable=False)
    item_description = db.Column(db.String(255), nullable=True)
    item_description2 = db.Column(db.String(255), nullable=True)
    division_code = db.Column(db.String(32), nullable=True, index=True)
    division_name = db.Column(db.String(120), nullable=True)
    category_code = db.Column(db.String(32), nullable=True)
    category_name = db.Column(db.String(120), nullable=True)
    group_code = db.Column(db.String(32), nullable=True)
    group_name = db.Column(db.String(120), nullable=True)
    subgroup_code = db.Column(db.String(32), nullable=True)
    subgroup_name = db.Column(db.String(120), nullable=True)
    brand_code = db.Column(db.String(32), nullable=True)
    brand_name = db.Column(db.String(120), nullable=True)
    unit_measure_code = db.Column(db.String(16), nullable=True)

    # System quantity and cost at seed time (authoritative storage in cents)
    system_inventory = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    # Count result and derived reconciliation
    physical_count = db.Column(db.Integer, nullable=True)
    difference = db.Column(db.Integer, nullable=True)
    adjustment_type = db.Column(db.String(16), nullable=True)
    cost_impact_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(24), nullable=False, default=ITEM_STATUS_PENDING, index=True)

    # Actor attribution per stage
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    counted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    audited_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    audited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    adjusted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    adjusted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Free-text comments per role
    counter_comment = db.Column(db.Text, nullable=True)
    manager_comment = db.Column(db.Text, nullable=True)
    auditor_comment = db.Column(db.Text, nullable=True)
    coordinator_comment = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    request = db.relationship("InventoryRequest", back_populates="items")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CountItem id={self.id} item_code={self.item_code!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "location_id": self.location_id,
            "item_code": self.item_code,
            "item_description": self.item_description,
            "item_description2": self.item_description2,
            "division_code": self.division_code,
            "division_name": self.division_name,
            "category_code": self.category_code,
            "category_name": self.category_name,
            "group_code": self.group_code,
            "group_name": self.group_name,
            "subgroup_code": self.subgroup_code,
            "subgroup_name": self.subgroup_name,
            "brand_code": self.brand_code,
            "brand_name": self.brand_name,
            "unit_measure_code": self.unit_measure_code,
            "system_inventory": self.system_inventory,
            "unit_cost_cents": self.unit_cost_cents,
            "physical_count": self.physical_count,
            "difference": self.difference,
            "adjustment_type": self.adjustment_type,
            "cost_impact_cents": self.cost_impact_cents,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "assigned_at": to_utc_z(self.assigned_at),
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "audited_by": self.audited_by,
            "audited_at": to_utc_z(self.audited_at),
            "adjusted_by": self.adjusted_by,
            "adjusted_at": to_utc_z(self.adjusted_at),
            "counter_comment": self.counter_comment,
            "manager_comment": self.manager_comment,
            "auditor_comment": self.auditor_comment,
            "coordinator_comment": self.coordinator_comment,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AssignmentRule(db.Model):
    """
    Automatic assignment rule: items at a location whose division/category/group
    code is in `values` go to `user_id`.
    """
    __tablename__ = "inventory_assignment_rules"
    __table_args__ = (
        db.UniqueConstraint("location_id", "user_id", "rule_type", name="uq_assignment_rules_location_user_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # division, category, group
    rule_type = db.Column(db.String(16), nullable=False)
    values = db.Column(db.JSON, nullable=False)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "user_id": self.user_id,
            "rule_type": self.rule_type,
            "values": self.values or [],
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-year document sequences.

    WHY: Prevent race conditions when generating request and audit document
    numbers (INV-<year>-<seq>, AUD-<year>-<seq>).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
