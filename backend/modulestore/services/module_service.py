# Overview: Service-layer operations for modules; encapsulates business logic and database work.

"""
Module Service

A module is a record type defined at runtime. Its schema (blocks, fields,
options) can be created in one call by nesting blocks[].fields[].options[]
in the create payload.

INVARIANTS:
- name and api_name are unique across all modules (soft-deleted included)
- system modules cannot be edited, toggled or deleted
- a module that still owns records (live or trashed) cannot be deleted
"""

from __future__ import annotations

from ..extensions import db
from ..models import Block, Field, Module, ModuleRecord, ModuleRelationship
from ..time_utils import Clock, resolve_clock, to_utc_z
from ..validation import (
    ConflictError,
    NotFoundError,
    ProtectedResourceError,
    ValidationError,
    require_api_name,
    require_text,
    to_snake_case,
)
from .block_service import build_block
from .concurrency import atomic
from .ordering import normalize_order


MODULE_MUTABLE_FIELDS = {"name", "singular_name", "api_name", "icon", "description", "is_active", "settings", "order"}


def _get_module(module_id: int) -> Module:
    module = db.session.query(Module).filter_by(id=module_id).first()
    if not module or module.is_deleted:
        raise NotFoundError(f"Module {module_id} not found")
    return module


def _ensure_not_system(module: Module, action: str) -> None:
    if module.is_system:
        raise ProtectedResourceError(f"Cannot {action} system modules.")


def _check_unique_name(name: str, exclude_module_id: int | None = None) -> None:
    query = db.session.query(Module.id).filter(Module.name == name)
    if exclude_module_id:
        query = query.filter(Module.id != exclude_module_id)
    if query.first():
        raise ConflictError(f"Module with name '{name}' already exists.")


def _check_unique_api_name(api_name: str, exclude_module_id: int | None = None) -> None:
    require_api_name(api_name, what="Module")
    query = db.session.query(Module.id).filter(Module.api_name == api_name)
    if exclude_module_id:
        query = query.filter(Module.id != exclude_module_id)
    if query.first():
        raise ConflictError(f"Module with api_name '{api_name}' already exists.")


def create_module(*, data: dict) -> Module:
    """
    Create a module, optionally with its whole schema tree.

    data keys: name (required), singular_name, api_name (derived from name
    when omitted), icon, description, is_active, is_system, settings, order,
    blocks (list of block payloads, each with optional fields[].options[]).

    Raises:
        ValidationError: malformed payload
        IntegrityViolationError: api_name is not snake_case
        ConflictError: duplicate name / api_name (module or nested field)
    """
    if not isinstance(data, dict):
        raise ValidationError("Module payload must be an object")

    with atomic():
        name = require_text(data.get("name"), what="Module name")
        _check_unique_name(name)

        api_name = data.get("api_name") or to_snake_case(name)
        _check_unique_api_name(api_name)

        if "order" in data:
            order = data["order"]
        else:
            order = (db.session.query(db.func.max(Module.order)).scalar() or 0) + 1

        module = Module(
            name=name,
            singular_name=str(data.get("singular_name") or name).strip(),
            api_name=api_name,
            icon=data.get("icon") or "database",
            description=data.get("description"),
            is_active=bool(data.get("is_active", True)),
            is_system=bool(data.get("is_system", False)),
            settings=data.get("settings") or {},
            order=order,
        )
        db.session.add(module)
        db.session.flush()

        for block_data in data.get("blocks") or []:
            build_block(module, block_data)

    return module


def update_module(*, module_id: int, data: dict) -> Module:
    """Update module metadata. is_system is fixed at creation."""
    with atomic():
        module = _get_module(module_id)
        _ensure_not_system(module, "modify")

        for key in data.keys():
            if key not in MODULE_MUTABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        if "name" in data:
            name = require_text(data["name"], what="Module name")
            _check_unique_name(name, exclude_module_id=module.id)
            module.name = name
        if "api_name" in data and data["api_name"] != module.api_name:
            _check_unique_api_name(data["api_name"], exclude_module_id=module.id)
            module.api_name = data["api_name"]
        if "singular_name" in data:
            module.singular_name = require_text(data["singular_name"], what="Singular name")
        if "is_active" in data:
            module.is_active = bool(data["is_active"])
        if "settings" in data:
            module.settings = data["settings"] or {}
        for key in ("icon", "description", "order"):
            if key in data:
                setattr(module, key, data[key])
        db.session.flush()
    return module


def delete_module(*, module_id: int, clock: Clock | None = None) -> None:
    """
    Soft-delete a module and drop every relationship touching it.

    Raises:
        NotFoundError: module missing or already deleted
        ProtectedResourceError: system module
        ConflictError: module still owns records (trashed ones included)
    """
    now = resolve_clock(clock)
    with atomic():
        module = _get_module(module_id)
        _ensure_not_system(module, "delete")

        record_count = db.session.query(ModuleRecord.id).filter(ModuleRecord.module_id == module.id).count()
        if record_count:
            raise ConflictError(
                f"Cannot delete module with existing records. Delete all {record_count} records first."
            )

        relationships = (
            db.session.query(ModuleRelationship)
            .filter(
                db.or_(
                    ModuleRelationship.from_module_id == module.id,
                    ModuleRelationship.to_module_id == module.id,
                )
            )
            .all()
        )
        if relationships:
            rel_ids = [r.id for r in relationships]
            for field in db.session.query(Field).filter(Field.relationship_id.in_(rel_ids)).all():
                field.relationship_id = None
            for rel in relationships:
                db.session.delete(rel)

        module.deleted_at = now()
        module.is_active = False


def get_module(module_id: int) -> Module:
    return _get_module(module_id)


def get_module_by_api_name(api_name: str) -> Module:
    module = (
        db.session.query(Module)
        .filter(Module.api_name == api_name, Module.deleted_at.is_(None))
        .first()
    )
    if not module:
        raise NotFoundError(f"Module '{api_name}' not found")
    return module


def list_modules(*, active_only: bool = False) -> list[Module]:
    query = db.session.query(Module).filter(Module.deleted_at.is_(None))
    if active_only:
        query = query.filter(Module.is_active.is_(True))
    return query.order_by(Module.order.asc(), Module.name.asc()).all()


def toggle_module_status(*, module_id: int) -> Module:
    with atomic():
        module = _get_module(module_id)
        _ensure_not_system(module, "deactivate")
        module.is_active = not module.is_active
        db.session.flush()
    return module


def reorder_modules(*, order: dict) -> list[Module]:
    """Apply {module_id: position}. All ids are checked before any position changes."""
    positions = normalize_order(order)
    with atomic():
        modules = (
            db.session.query(Module)
            .filter(Module.id.in_(list(positions)), Module.deleted_at.is_(None))
            .all()
        )
        missing = set(positions) - {m.id for m in modules}
        if missing:
            raise NotFoundError(
                f"Invalid module IDs provided: {', '.join(str(i) for i in sorted(missing))}",
                missing_ids=missing,
            )
        for module in modules:
            module.order = positions[module.id]
        db.session.flush()
        return sorted(modules, key=lambda m: (m.order, m.id))


def get_module_stats(*, module_id: int) -> dict:
    module = _get_module(module_id)

    total_blocks = db.session.query(Block.id).filter(Block.module_id == module.id).count()
    total_fields = (
        db.session.query(Field.id)
        .join(Block, Field.block_id == Block.id)
        .filter(Block.module_id == module.id)
        .count()
    )
    records = db.session.query(ModuleRecord.id).filter(ModuleRecord.module_id == module.id)
    total_records = records.filter(ModuleRecord.deleted_at.is_(None)).count()
    trashed_records = records.filter(ModuleRecord.deleted_at.isnot(None)).count()
    total_relationships = (
        db.session.query(ModuleRelationship.id)
        .filter(
            db.or_(
                ModuleRelationship.from_module_id == module.id,
                ModuleRelationship.to_module_id == module.id,
            )
        )
        .count()
    )

    return {
        "id": module.id,
        "name": module.name,
        "api_name": module.api_name,
        "total_blocks": total_blocks,
        "total_fields": total_fields,
        "total_records": total_records,
        "trashed_records": trashed_records,
        "total_relationships": total_relationships,
        "is_active": bool(module.is_active),
        "is_system": bool(module.is_system),
        "created_at": to_utc_z(module.created_at),
    }
