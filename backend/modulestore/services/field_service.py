# Overview: Service-layer operations for fields and field options; encapsulates business logic and database work.

"""
Field Service

Fields are the typed attributes of a module; their api_name is the key of
the value inside every record document. Options hold the allowed values of
select / multiselect / radio fields.

INVARIANTS:
- api_name is snake_case and unique within its block
- option values are unique within their field
- at most one option per field has is_default = true
- fields and options of system modules cannot be changed
"""

from __future__ import annotations

from ..extensions import db
from ..field_types import (
    FIELD_TYPES,
    FIELD_WIDTHS,
    OPTION_TYPES,
    FieldType,
    check_rules_definition,
    check_value,
    is_empty,
)
from ..models import Block, Field, FieldOption, Module, ModuleRelationship
from ..validation import (
    ConflictError,
    NotFoundError,
    ProtectedResourceError,
    ValidationError,
    require_api_name,
    require_text,
    to_snake_case,
)
from .concurrency import atomic
from .ordering import apply_order


FIELD_MUTABLE_FIELDS = {
    "type", "api_name", "label", "description", "help_text",
    "is_required", "is_unique", "is_searchable",
    "is_visible_in_list", "is_visible_in_detail",
    "validation_rules", "settings", "default_value",
    "order", "width", "relationship_id",
}
OPTION_MUTABLE_FIELDS = {"label", "value", "color", "is_default", "is_active", "order"}


def _get_field(field_id: int) -> Field:
    field = db.session.query(Field).filter_by(id=field_id).first()
    if not field:
        raise NotFoundError(f"Field {field_id} not found")
    return field


def _get_option(option_id: int) -> FieldOption:
    option = db.session.query(FieldOption).filter_by(id=option_id).first()
    if not option:
        raise NotFoundError(f"Field option {option_id} not found")
    return option


def _ensure_editable(module: Module, action: str) -> None:
    if module.is_system:
        raise ProtectedResourceError(f"Cannot {action} in system modules.")


def _check_type(value) -> str:
    if value not in FIELD_TYPES:
        raise ValidationError(f"Invalid field type: {value}")
    return value


def _check_width(value) -> int:
    if isinstance(value, bool) or value not in FIELD_WIDTHS:
        allowed = ", ".join(str(w) for w in sorted(FIELD_WIDTHS))
        raise ValidationError(f"Field width must be one of: {allowed}")
    return value


def _check_relationship(relationship_id):
    if relationship_id is None:
        return None
    exists = db.session.query(ModuleRelationship.id).filter_by(id=relationship_id).first()
    if not exists:
        raise NotFoundError(f"Relationship {relationship_id} not found")
    return relationship_id


def _check_field_api_name(block_id: int, api_name: str, exclude_field_id: int | None = None) -> None:
    require_api_name(api_name, what="Field")
    query = db.session.query(Field.id).filter(Field.block_id == block_id, Field.api_name == api_name)
    if exclude_field_id:
        query = query.filter(Field.id != exclude_field_id)
    if query.first():
        raise ConflictError(f"Field with api_name '{api_name}' already exists in this block.")


def _check_default_value(field: Field) -> None:
    if is_empty(field.default_value):
        return
    error = check_value(field, field.default_value)
    if error is not None and error.code != "required":
        raise ValidationError(f"Invalid default_value: {error.message}", errors=[error])


def _clear_other_defaults(field: Field, keep: FieldOption | None = None) -> None:
    for option in field.options:
        if option is not keep and option.is_default:
            option.is_default = False


def build_field_option(field: Field, data: dict) -> FieldOption:
    """Add an option to field inside the caller's transaction."""
    if FieldType(field.type) not in OPTION_TYPES:
        raise ValidationError(f"Field type '{field.type}' does not support options.")
    if not isinstance(data, dict):
        raise ValidationError("Option payload must be an object")

    value = require_text(data.get("value"), what="Option value")
    if any(o.value == value for o in field.options):
        raise ConflictError(f"Option value '{value}' already exists for field '{field.label}'.")

    is_default = bool(data.get("is_default", False))
    if is_default:
        _clear_other_defaults(field)

    option = FieldOption(
        label=str(data.get("label") or value).strip(),
        value=value,
        color=data.get("color"),
        is_default=is_default,
        is_active=bool(data.get("is_active", True)),
        order=data.get("order", len(field.options)),
    )
    field.options.append(option)
    db.session.flush()
    return option


def build_field(block: Block, data: dict) -> Field:
    """Add a field (and nested options) to block inside the caller's transaction."""
    if not isinstance(data, dict):
        raise ValidationError("Field payload must be an object")

    field_type = _check_type(data.get("type"))
    label = require_text(data.get("label"), what="Field label")
    api_name = data.get("api_name") or to_snake_case(label)
    _check_field_api_name(block.id, api_name)

    field = Field(
        type=field_type,
        api_name=api_name,
        label=label,
        description=data.get("description"),
        help_text=data.get("help_text"),
        is_required=bool(data.get("is_required", False)),
        is_unique=bool(data.get("is_unique", False)),
        is_searchable=bool(data.get("is_searchable", False)),
        is_visible_in_list=bool(data.get("is_visible_in_list", True)),
        is_visible_in_detail=bool(data.get("is_visible_in_detail", True)),
        validation_rules=check_rules_definition(data.get("validation_rules")),
        settings=data.get("settings") or {},
        default_value=data.get("default_value"),
        order=data.get("order", len(block.fields)),
        width=_check_width(data.get("width", 100)),
        relationship_id=_check_relationship(data.get("relationship_id")),
    )
    block.fields.append(field)
    db.session.flush()

    options = data.get("options") or []
    if options and FieldType(field_type) not in OPTION_TYPES:
        raise ValidationError(f"Field type '{field_type}' does not support options.")
    for option_data in options:
        build_field_option(field, option_data)

    _check_default_value(field)
    return field


def create_field(*, block_id: int, data: dict) -> Field:
    """
    Create a field in a block, with optional nested options.

    Raises:
        NotFoundError: block (or referenced relationship) missing
        ProtectedResourceError: block belongs to a system module
        ValidationError / ConflictError / IntegrityViolationError: bad definition
    """
    with atomic():
        block = db.session.query(Block).filter_by(id=block_id).first()
        if not block:
            raise NotFoundError(f"Block {block_id} not found")
        _ensure_editable(block.module, "modify fields")
        field = build_field(block, data)
    return field


def update_field(*, field_id: int, data: dict) -> Field:
    with atomic():
        field = _get_field(field_id)
        _ensure_editable(field.block.module, "modify fields")

        for key in data.keys():
            if key not in FIELD_MUTABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        if "type" in data:
            field.type = _check_type(data["type"])
        if "api_name" in data and data["api_name"] != field.api_name:
            _check_field_api_name(field.block_id, data["api_name"], exclude_field_id=field.id)
            field.api_name = data["api_name"]
        if "label" in data:
            field.label = require_text(data["label"], what="Field label")
        if "validation_rules" in data:
            field.validation_rules = check_rules_definition(data["validation_rules"])
        if "width" in data:
            field.width = _check_width(data["width"])
        if "relationship_id" in data:
            field.relationship_id = _check_relationship(data["relationship_id"])
        for key in ("is_required", "is_unique", "is_searchable", "is_visible_in_list", "is_visible_in_detail"):
            if key in data:
                setattr(field, key, bool(data[key]))
        for key in ("description", "help_text", "default_value", "order"):
            if key in data:
                setattr(field, key, data[key])
        if "settings" in data:
            field.settings = data["settings"] or {}

        _check_default_value(field)
        db.session.flush()
    return field


def delete_field(*, field_id: int) -> None:
    """Delete a field and its options. Record documents keep the stale key."""
    with atomic():
        field = _get_field(field_id)
        _ensure_editable(field.block.module, "delete fields")
        db.session.delete(field)


def get_field(field_id: int) -> Field:
    return _get_field(field_id)


def list_fields(block_id: int) -> list[Field]:
    return (
        db.session.query(Field)
        .filter(Field.block_id == block_id)
        .order_by(Field.order.asc(), Field.label.asc())
        .all()
    )


def reorder_fields(*, block_id: int, order: dict) -> list[Field]:
    with atomic():
        block = db.session.query(Block).filter_by(id=block_id).first()
        if not block:
            raise NotFoundError(f"Block {block_id} not found")
        _ensure_editable(block.module, "reorder fields")
        return apply_order(Field, Field.block_id, block_id, order, what="field")


def create_field_option(*, field_id: int, data: dict) -> FieldOption:
    with atomic():
        field = _get_field(field_id)
        _ensure_editable(field.block.module, "modify field options")
        option = build_field_option(field, data)
    return option


def update_field_option(*, option_id: int, data: dict) -> FieldOption:
    with atomic():
        option = _get_option(option_id)
        field = option.field
        _ensure_editable(field.block.module, "modify field options")

        for key in data.keys():
            if key not in OPTION_MUTABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        if "value" in data:
            value = require_text(data["value"], what="Option value")
            if any(o.value == value and o is not option for o in field.options):
                raise ConflictError(f"Option value '{value}' already exists for field '{field.label}'.")
            option.value = value
        if "label" in data:
            option.label = require_text(data["label"], what="Option label")
        if data.get("is_default"):
            _clear_other_defaults(field, keep=option)
        if "is_default" in data:
            option.is_default = bool(data["is_default"])
        if "is_active" in data:
            option.is_active = bool(data["is_active"])
        for key in ("color", "order"):
            if key in data:
                setattr(option, key, data[key])
        db.session.flush()
    return option


def delete_field_option(*, option_id: int) -> None:
    with atomic():
        option = _get_option(option_id)
        _ensure_editable(option.field.block.module, "modify field options")
        option.field.options.remove(option)


def reorder_field_options(*, field_id: int, order: dict) -> list[FieldOption]:
    with atomic():
        field = _get_field(field_id)
        _ensure_editable(field.block.module, "reorder field options")
        return apply_order(FieldOption, FieldOption.field_id, field_id, order, what="option")
