from __future__ import annotations

from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..time_utils import to_utc_z


class ModuleRecord(db.Model):
    """
    One data row of a module.

    data is a flat JSON object keyed by field api_name. It is validated at
    write time only; rows written under an older schema may carry keys for
    fields that have since been removed or retyped.
    """
    __tablename__ = "module_records"
    __table_args__ = (
        db.Index("ix_module_records_module_deleted", "module_id", "deleted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    module_id = db.Column(db.Integer, db.ForeignKey("modules.id"), nullable=False, index=True)
    data = db.Column(db.JSON, nullable=False, default=dict)

    # Actor ids come from the caller's auth layer; users live outside this schema
    created_by = db.Column(db.Integer, nullable=True, index=True)
    updated_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    module = db.relationship("Module")

    def __repr__(self) -> str:
        return f"<ModuleRecord id={self.id} module_id={self.module_id}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def get_value(self, api_name: str, default=None):
        return (self.data or {}).get(api_name, default)

    def set_data(self, data: dict) -> None:
        """Replace the document. JSON columns do not track in-place mutation."""
        self.data = dict(data)
        flag_modified(self, "data")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "module_id": self.module_id,
            "data": dict(self.data or {}),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
