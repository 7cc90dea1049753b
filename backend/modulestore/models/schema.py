from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Module(db.Model):
    """
    A runtime-defined record type.

    The schema of a module is its blocks and their fields. Records of the
    module live in module_records as JSON documents keyed by field api_name.
    """
    __tablename__ = "modules"
    __table_args__ = (
        db.Index("ix_modules_is_active", "is_active"),
        db.Index("ix_modules_order", "order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    singular_name = db.Column(db.String(255), nullable=False)
    api_name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    icon = db.Column(db.String(64), nullable=True, default="database")
    description = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # System modules cannot be edited or deleted
    is_system = db.Column(db.Boolean, nullable=False, default=False)

    settings = db.Column(db.JSON, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    blocks = db.relationship(
        "Block",
        back_populates="module",
        cascade="all, delete-orphan",
        order_by=lambda: [Block.order, Block.id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Module id={self.id} api_name={self.api_name!r}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def iter_fields(self):
        for block in self.blocks:
            for field in block.fields:
                yield field

    def fields_by_api_name(self) -> dict[str, "Field"]:
        """Current schema as api_name -> Field (later blocks win on collisions)."""
        return {f.api_name: f for f in self.iter_fields()}

    def to_dict(self, *, include_blocks: bool = False) -> dict:
        payload = {
            "id": self.id,
            "name": self.name,
            "singular_name": self.singular_name,
            "api_name": self.api_name,
            "icon": self.icon,
            "description": self.description,
            "is_active": bool(self.is_active),
            "is_system": bool(self.is_system),
            "settings": self.settings or {},
            "order": self.order,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
        if include_blocks:
            payload["blocks"] = [b.to_dict(include_fields=True) for b in self.blocks]
        return payload


class Block(db.Model):
    """Layout grouping of fields inside a module."""
    __tablename__ = "blocks"
    __table_args__ = (
        db.Index("ix_blocks_module_order", "module_id", "order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    module_id = db.Column(db.Integer, db.ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    # section | tab | accordion
    type = db.Column(db.String(32), nullable=False, default="section")
    order = db.Column(db.Integer, nullable=False, default=0)
    columns = db.Column(db.Integer, nullable=False, default=1)
    is_collapsible = db.Column(db.Boolean, nullable=False, default=False)
    is_collapsed = db.Column(db.Boolean, nullable=False, default=False)
    settings = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    module = db.relationship("Module", back_populates="blocks")
    fields = db.relationship(
        "Field",
        back_populates="block",
        cascade="all, delete-orphan",
        order_by=lambda: [Field.order, Field.id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Block id={self.id} module_id={self.module_id} name={self.name!r}>"

    def to_dict(self, *, include_fields: bool = False) -> dict:
        payload = {
            "id": self.id,
            "module_id": self.module_id,
            "name": self.name,
            "type": self.type,
            "order": self.order,
            "columns": self.columns,
            "is_collapsible": bool(self.is_collapsible),
            "is_collapsed": bool(self.is_collapsed),
            "settings": self.settings or {},
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_fields:
            payload["fields"] = [f.to_dict() for f in self.fields]
        return payload


class Field(db.Model):
    """
    One typed attribute of a module.

    api_name is the key of this field's value inside every record document,
    so renaming it strands the values already stored under the old key.
    """
    __tablename__ = "fields"
    __table_args__ = (
        db.UniqueConstraint("block_id", "api_name", name="uq_fields_block_api_name"),
        db.Index("ix_fields_block_order", "block_id", "order"),
        db.Index("ix_fields_type", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    block_id = db.Column(db.Integer, db.ForeignKey("blocks.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship_id = db.Column(
        db.Integer,
        db.ForeignKey("module_relationships.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    type = db.Column(db.String(32), nullable=False)
    api_name = db.Column(db.String(255), nullable=False)
    label = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    help_text = db.Column(db.Text, nullable=True)

    is_required = db.Column(db.Boolean, nullable=False, default=False)
    is_unique = db.Column(db.Boolean, nullable=False, default=False)
    is_searchable = db.Column(db.Boolean, nullable=False, default=False)
    is_visible_in_list = db.Column(db.Boolean, nullable=False, default=True)
    is_visible_in_detail = db.Column(db.Boolean, nullable=False, default=True)

    # {"min": .., "max": .., "min_length": .., "max_length": .., "pattern": ..}
    validation_rules = db.Column(db.JSON, nullable=True)
    settings = db.Column(db.JSON, nullable=True)
    default_value = db.Column(db.JSON, nullable=True)

    order = db.Column(db.Integer, nullable=False, default=0)
    width = db.Column(db.Integer, nullable=False, default=100)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    block = db.relationship("Block", back_populates="fields")
    relationship = db.relationship("ModuleRelationship")
    options = db.relationship(
        "FieldOption",
        back_populates="field",
        cascade="all, delete-orphan",
        order_by=lambda: [FieldOption.order, FieldOption.id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Field id={self.id} api_name={self.api_name!r} type={self.type!r}>"

    @property
    def module_id(self) -> int:
        return self.block.module_id

    def active_option_values(self) -> list:
        return [o.value for o in self.options if o.is_active]

    def default_option(self) -> "FieldOption | None":
        for option in self.options:
            if option.is_default and option.is_active:
                return option
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "block_id": self.block_id,
            "relationship_id": self.relationship_id,
            "type": self.type,
            "api_name": self.api_name,
            "label": self.label,
            "description": self.description,
            "help_text": self.help_text,
            "is_required": bool(self.is_required),
            "is_unique": bool(self.is_unique),
            "is_searchable": bool(self.is_searchable),
            "is_visible_in_list": bool(self.is_visible_in_list),
            "is_visible_in_detail": bool(self.is_visible_in_detail),
            "validation_rules": self.validation_rules or {},
            "settings": self.settings or {},
            "default_value": self.default_value,
            "order": self.order,
            "width": self.width,
            "options": [o.to_dict() for o in self.options],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class FieldOption(db.Model):
    """Allowed value of a select, multiselect or radio field."""
    __tablename__ = "field_options"
    __table_args__ = (
        db.UniqueConstraint("field_id", "value", name="uq_field_options_field_value"),
        db.Index("ix_field_options_field_order", "field_id", "order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    field_id = db.Column(db.Integer, db.ForeignKey("fields.id", ondelete="CASCADE"), nullable=False, index=True)
    label = db.Column(db.String(255), nullable=False)
    value = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(32), nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    field = db.relationship("Field", back_populates="options")

    def __repr__(self) -> str:
        return f"<FieldOption id={self.id} field_id={self.field_id} value={self.value!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "field_id": self.field_id,
            "label": self.label,
            "value": self.value,
            "color": self.color,
            "is_default": bool(self.is_default),
            "is_active": bool(self.is_active),
            "order": self.order,
        }
