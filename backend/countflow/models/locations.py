from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Location(db.Model):
    """
    Physical counting location (store, warehouse, branch).

    `code` is the code used by the catalog/inventory source, possibly with a
    local "T" prefix (e.g. "T01"). See catalog.fetcher.normalize_location_code.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_locations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
