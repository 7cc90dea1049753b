from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ONE_TO_MANY = "one_to_many"
MANY_TO_MANY = "many_to_many"
RELATIONSHIP_TYPES = {ONE_TO_MANY, MANY_TO_MANY}

DEFAULT_RELATIONSHIP_SETTINGS = {
    "cascade_delete": False,
    "required": False,
    "allow_create_related": True,
    "display_field": "name",
    "sort_field": "created_at",
    "sort_direction": "desc",
    "filters": None,
}


class ModuleRelationship(db.Model):
    """
    Declared reference between two modules.

    api_name doubles as the document key holding the reference: a scalar
    record id for one_to_many, a list of record ids for many_to_many.
    There is no foreign key behind that key; integrity is maintained by
    services.relationship_service.
    """
    __tablename__ = "module_relationships"
    __table_args__ = (
        db.UniqueConstraint("from_module_id", "name", name="uq_module_relationships_from_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    to_module_id = db.Column(
        db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    api_name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    # one_to_many | many_to_many
    type = db.Column(db.String(32), nullable=False)
    settings = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_module = db.relationship("Module", foreign_keys=[from_module_id])
    to_module = db.relationship("Module", foreign_keys=[to_module_id])

    def __repr__(self) -> str:
        return f"<ModuleRelationship id={self.id} api_name={self.api_name!r} type={self.type!r}>"

    @property
    def is_one_to_many(self) -> bool:
        return self.type == ONE_TO_MANY

    @property
    def is_many_to_many(self) -> bool:
        return self.type == MANY_TO_MANY

    def setting(self, key: str):
        merged = {**DEFAULT_RELATIONSHIP_SETTINGS, **(self.settings or {})}
        return merged.get(key)

    @property
    def cascade_delete(self) -> bool:
        return bool(self.setting("cascade_delete"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_module_id": self.from_module_id,
            "to_module_id": self.to_module_id,
            "name": self.name,
            "api_name": self.api_name,
            "type": self.type,
            "settings": {**DEFAULT_RELATIONSHIP_SETTINGS, **(self.settings or {})},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
