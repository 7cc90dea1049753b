# Overview: Service-layer operations for module relationships; keeps JSON references between records consistent.

"""
Relationship Service

A relationship from module A to module B stores record references inside
record documents under the relationship's api_name: a scalar record id for
one_to_many, a list of ids for many_to_many. The datastore has no foreign
key behind those keys, so every delete, link and unlink goes through here.

DELETE OF A RECORD OF MODULE M:
- outgoing relationships (M is "from") with cascade_delete: B-records that
  reference the deleted id are soft-deleted, recursively
- outgoing relationships without cascade, and every incoming relationship
  (M is "to"): references are nulled (one_to_many) or the id is removed from
  the list (many_to_many); the referencing records keep their state, and
  trashed ones are rewritten as well

Recursion tracks visited (module_id, record_id) pairs and stops at
CASCADE_MAX_DEPTH, so cyclic relationship graphs terminate. A record at the
limit is not deleted; its reference to the parent is cleared instead.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Field, Module, ModuleRecord, ModuleRelationship
from ..models.relationships import DEFAULT_RELATIONSHIP_SETTINGS, RELATIONSHIP_TYPES
from ..time_utils import Clock, resolve_clock
from ..validation import (
    ConflictError,
    IntegrityViolationError,
    NotFoundError,
    TooManyTargetsError,
    ValidationError,
    require_api_name,
    require_text,
    to_snake_case,
)
from .concurrency import atomic, lock_for_update
from .query_service import reference_predicate


RELATIONSHIP_MUTABLE_FIELDS = {"name", "api_name", "type", "settings"}
SORT_DIRECTIONS = {"asc", "desc"}
BOOLEAN_SETTINGS = ("cascade_delete", "required", "allow_create_related")


# -----------------------------------------------------------------------------
# Definitions
# -----------------------------------------------------------------------------

def _get_relationship(relationship_id: int) -> ModuleRelationship:
    rel = db.session.query(ModuleRelationship).filter_by(id=relationship_id).first()
    if not rel:
        raise NotFoundError(f"Relationship {relationship_id} not found")
    return rel


def _get_live_module(module_id) -> Module:
    module = db.session.query(Module).filter_by(id=module_id).first() if module_id else None
    if not module or module.is_deleted:
        raise NotFoundError(f"Module {module_id} not found")
    return module


def _check_type(value) -> str:
    if value not in RELATIONSHIP_TYPES:
        raise ValidationError(f"Invalid relationship type: {value}")
    return value


def _check_settings(settings, base: dict | None = None) -> dict:
    if settings is None:
        settings = {}
    if not isinstance(settings, dict):
        raise ValidationError("Relationship settings must be an object")

    merged = {**DEFAULT_RELATIONSHIP_SETTINGS, **(base or {}), **settings}
    direction = merged.get("sort_direction")
    if not isinstance(direction, str) or direction.lower() not in SORT_DIRECTIONS:
        raise ValidationError("Relationship sort_direction must be 'asc' or 'desc'")
    merged["sort_direction"] = direction.lower()
    for key in BOOLEAN_SETTINGS:
        merged[key] = bool(merged.get(key))
    if merged.get("filters") is not None and not isinstance(merged["filters"], (dict, list)):
        raise ValidationError("Relationship filters must be an object or a list")
    return merged


def _check_api_name(api_name: str, exclude_id: int | None = None) -> None:
    require_api_name(api_name, what="Relationship")
    query = db.session.query(ModuleRelationship.id).filter(ModuleRelationship.api_name == api_name)
    if exclude_id:
        query = query.filter(ModuleRelationship.id != exclude_id)
    if query.first():
        raise ConflictError(f"Relationship with api_name '{api_name}' already exists.")


def _check_name(from_module_id: int, name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(ModuleRelationship.id).filter(
        ModuleRelationship.from_module_id == from_module_id,
        ModuleRelationship.name == name,
    )
    if exclude_id:
        query = query.filter(ModuleRelationship.id != exclude_id)
    if query.first():
        raise ConflictError(f"Relationship '{name}' already exists on this module.")


def create_relationship(*, data: dict) -> ModuleRelationship:
    """
    Declare a relationship between two distinct modules.

    data keys: from_module_id, to_module_id, name, api_name (derived from
    name when omitted), type (one_to_many | many_to_many), settings.

    Raises:
        NotFoundError: either module missing
        IntegrityViolationError: self-relationship or malformed api_name
        ConflictError: duplicate api_name, or duplicate name on the from module
        ValidationError: unknown type / sort direction, malformed settings
    """
    if not isinstance(data, dict):
        raise ValidationError("Relationship payload must be an object")

    with atomic():
        from_module = _get_live_module(data.get("from_module_id"))
        to_module = _get_live_module(data.get("to_module_id"))
        if from_module.id == to_module.id:
            raise IntegrityViolationError("Cannot create a relationship from a module to itself.")

        name = require_text(data.get("name"), what="Relationship name")
        _check_name(from_module.id, name)
        api_name = data.get("api_name") or to_snake_case(name)
        _check_api_name(api_name)

        rel = ModuleRelationship(
            from_module_id=from_module.id,
            to_module_id=to_module.id,
            name=name,
            api_name=api_name,
            type=_check_type(data.get("type")),
            settings=_check_settings(data.get("settings")),
        )
        db.session.add(rel)
        db.session.flush()
    return rel


def update_relationship(*, relationship_id: int, data: dict) -> ModuleRelationship:
    """Update name, api_name, type or settings. The two modules are fixed."""
    with atomic():
        rel = _get_relationship(relationship_id)

        for key in data.keys():
            if key not in RELATIONSHIP_MUTABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        if "name" in data:
            name = require_text(data["name"], what="Relationship name")
            _check_name(rel.from_module_id, name, exclude_id=rel.id)
            rel.name = name
        if "api_name" in data and data["api_name"] != rel.api_name:
            _check_api_name(data["api_name"], exclude_id=rel.id)
            rel.api_name = data["api_name"]
        if "type" in data:
            rel.type = _check_type(data["type"])
        if "settings" in data:
            rel.settings = _check_settings(data["settings"], base=rel.settings)
        db.session.flush()
    return rel


def delete_relationship(*, relationship_id: int) -> None:
    """Drop the definition. Stored reference values are left in the documents."""
    with atomic():
        rel = _get_relationship(relationship_id)
        for field in db.session.query(Field).filter(Field.relationship_id == rel.id).all():
            field.relationship_id = None
        db.session.delete(rel)


def get_relationship(relationship_id: int) -> ModuleRelationship:
    return _get_relationship(relationship_id)


def list_relationships(*, module_id: int | None = None) -> list[ModuleRelationship]:
    """All relationships, or those where module_id is on either side."""
    query = db.session.query(ModuleRelationship)
    if module_id is not None:
        query = query.filter(
            db.or_(
                ModuleRelationship.from_module_id == module_id,
                ModuleRelationship.to_module_id == module_id,
            )
        )
    return query.order_by(ModuleRelationship.name.asc(), ModuleRelationship.id.asc()).all()


# -----------------------------------------------------------------------------
# Reference helpers
# -----------------------------------------------------------------------------

def _same_id(stored, record_id: int) -> bool:
    # Documents written by clients may hold "7" where 7 is meant
    if stored is None or isinstance(stored, bool):
        return False
    try:
        return int(stored) == int(record_id)
    except (TypeError, ValueError):
        return False


def _references(value, record_id: int) -> bool:
    if isinstance(value, list):
        return any(_same_id(v, record_id) for v in value)
    return _same_id(value, record_id)


def _without(value, record_id: int):
    if isinstance(value, list):
        return [v for v in value if not _same_id(v, record_id)]
    return None


def _referencing_records(
    module_id: int, api_name: str, record_id: int, *, include_trashed: bool = False
) -> list[ModuleRecord]:
    """Records of module_id whose data[api_name] points at record_id, locked."""
    query = db.session.query(ModuleRecord).filter(
        ModuleRecord.module_id == module_id,
        reference_predicate(api_name, record_id),
    )
    if not include_trashed:
        query = query.filter(ModuleRecord.deleted_at.is_(None))
    rows = lock_for_update(query).order_by(ModuleRecord.id.asc()).all()
    return [r for r in rows if _references((r.data or {}).get(api_name), record_id)]


def _outgoing(module_id: int) -> list[ModuleRelationship]:
    return (
        db.session.query(ModuleRelationship)
        .filter(ModuleRelationship.from_module_id == module_id)
        .order_by(ModuleRelationship.id.asc())
        .all()
    )


def _incoming(module_id: int) -> list[ModuleRelationship]:
    return (
        db.session.query(ModuleRelationship)
        .filter(ModuleRelationship.to_module_id == module_id)
        .order_by(ModuleRelationship.id.asc())
        .all()
    )


def _coerce_ids(target_ids) -> list[int]:
    if target_ids is None:
        return []
    if not isinstance(target_ids, (list, tuple, set)):
        target_ids = [target_ids]
    ids: list[int] = []
    for raw in target_ids:
        if isinstance(raw, bool):
            raise ValidationError(f"Invalid record id: {raw!r}")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid record id: {raw!r}")
        if value not in ids:
            ids.append(value)
    return ids


def _as_id_list(value) -> list:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    out: list = []
    for item in items:
        try:
            item = int(item)
        except (TypeError, ValueError):
            pass
        if item not in out:
            out.append(item)
    return out


# -----------------------------------------------------------------------------
# Integrity operations
# -----------------------------------------------------------------------------

def _detach(holder: ModuleRecord, api_name: str, record_id: int, *, now, actor_id) -> None:
    data = dict(holder.data or {})
    data[api_name] = _without(data.get(api_name), record_id)
    holder.set_data(data)
    holder.updated_at = now
    holder.updated_by = actor_id


def _cascade(
    module_id: int, record_id: int, *, now, actor_id, visited: set, depth: int, max_depth: int
) -> list:
    deleted: list[tuple[int, int]] = []
    for rel in _outgoing(module_id):
        if not rel.cascade_delete:
            continue
        for child in _referencing_records(rel.to_module_id, rel.api_name, record_id):
            key = (rel.to_module_id, child.id)
            if key in visited:
                continue
            if depth >= max_depth:
                # Past the limit the child survives but loses the dangling reference
                _detach(child, rel.api_name, record_id, now=now, actor_id=actor_id)
                db.session.flush()
                current_app.logger.warning(
                    "Cascade depth limit reached; reference cleared",
                    extra={"relationship": rel.api_name, "module_id": rel.to_module_id, "record_id": child.id},
                )
                continue
            visited.add(key)
            child.deleted_at = now
            child.updated_at = now
            child.updated_by = actor_id
            db.session.flush()
            current_app.logger.info(
                "Cascade deleted related record",
                extra={
                    "relationship": rel.api_name,
                    "parent_module_id": module_id,
                    "parent_record_id": record_id,
                    "module_id": rel.to_module_id,
                    "record_id": child.id,
                },
            )
            deleted.append(key)
            deleted.extend(
                _cascade(
                    rel.to_module_id,
                    child.id,
                    now=now,
                    actor_id=actor_id,
                    visited=visited,
                    depth=depth + 1,
                    max_depth=max_depth,
                )
            )
            _cleanup(rel.to_module_id, child.id, now=now, actor_id=actor_id)
    return deleted


def _cleanup(module_id: int, record_id: int, *, now, actor_id=None) -> int:
    targets = [(rel, rel.to_module_id) for rel in _outgoing(module_id) if not rel.cascade_delete]
    targets += [(rel, rel.from_module_id) for rel in _incoming(module_id)]

    cleaned = 0
    for rel, holder_module_id in targets:
        # Trashed holders too, so a later restore does not bring back a dangling id
        for holder in _referencing_records(holder_module_id, rel.api_name, record_id, include_trashed=True):
            _detach(holder, rel.api_name, record_id, now=now, actor_id=actor_id)
            cleaned += 1
            current_app.logger.info(
                "Cleaned orphaned reference",
                extra={
                    "relationship": rel.api_name,
                    "deleted_module_id": module_id,
                    "deleted_record_id": record_id,
                    "module_id": holder_module_id,
                    "record_id": holder.id,
                },
            )
    db.session.flush()
    return cleaned


def handle_cascade_delete(
    *,
    module_id: int,
    record_id: int,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> list[tuple[int, int]]:
    """
    Soft-delete every record reachable from (module_id, record_id) through
    cascade_delete relationships.

    Returns the (module_id, record_id) pairs that were deleted. The starting
    record itself is not touched. Records beyond CASCADE_MAX_DEPTH stay live
    with their reference to the deleted parent cleared.
    """
    now = resolve_clock(clock)()
    with atomic():
        deleted = _cascade(
            module_id,
            record_id,
            now=now,
            actor_id=actor_id,
            visited={(module_id, record_id)},
            depth=0,
            max_depth=current_app.config.get("CASCADE_MAX_DEPTH", 10),
        )
    return deleted


def cleanup_orphaned_references(
    *,
    module_id: int,
    record_id: int,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> int:
    """Remove references to (module_id, record_id), trashed holders included; returns the number of records changed."""
    now = resolve_clock(clock)()
    with atomic():
        cleaned = _cleanup(module_id, record_id, now=now, actor_id=actor_id)
    return cleaned


def get_related_records(*, module_id: int, record_id: int) -> dict[str, list[ModuleRecord]]:
    """
    Live records referencing the given record, per outgoing relationship name,
    ordered by the relationship's sort_field / sort_direction.
    """
    exists = (
        db.session.query(ModuleRecord.id)
        .filter(ModuleRecord.module_id == module_id, ModuleRecord.id == record_id)
        .first()
    )
    if not exists:
        raise NotFoundError(f"Record {record_id} not found")

    related: dict[str, list[ModuleRecord]] = {}
    for rel in _outgoing(module_id):
        rows = (
            db.session.query(ModuleRecord)
            .filter(
                ModuleRecord.module_id == rel.to_module_id,
                ModuleRecord.deleted_at.is_(None),
                reference_predicate(rel.api_name, record_id),
            )
            .order_by(ModuleRecord.id.asc())
            .all()
        )
        rows = [r for r in rows if _references((r.data or {}).get(rel.api_name), record_id)]
        related[rel.name] = _sort_related(rows, rel.setting("sort_field"), rel.setting("sort_direction"))
    return related


def _sort_value(record: ModuleRecord, sort_field: str):
    if sort_field in ("id", "created_at", "updated_at"):
        return getattr(record, sort_field)
    return (record.data or {}).get(sort_field)


def _sort_related(rows: list[ModuleRecord], sort_field, direction) -> list[ModuleRecord]:
    sort_field = sort_field or "created_at"
    present = [r for r in rows if _sort_value(r, sort_field) is not None]
    missing = [r for r in rows if _sort_value(r, sort_field) is None]

    def key(record):
        value = _sort_value(record, sort_field)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, value, "")
        return (1, 0, str(value))

    present.sort(key=key, reverse=(direction == "desc"))
    return present + missing


def _load_source(rel: ModuleRelationship, source_id: int) -> ModuleRecord:
    query = db.session.query(ModuleRecord).filter(
        ModuleRecord.module_id == rel.from_module_id,
        ModuleRecord.id == source_id,
        ModuleRecord.deleted_at.is_(None),
    )
    source = lock_for_update(query).first()
    if not source:
        raise NotFoundError(f"Record {source_id} not found")
    return source


def link_records(
    *,
    relationship_id: int,
    source_id: int,
    target_ids,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    """
    Point the source ("from" module) record at the given target records.

    one_to_many stores a single id (TooManyTargetsError for more than one);
    many_to_many adds the ids to the list, keeping it free of duplicates.

    Raises:
        NotFoundError: relationship, source or any target missing / deleted
    """
    now = resolve_clock(clock)()
    with atomic():
        rel = _get_relationship(relationship_id)
        ids = _coerce_ids(target_ids)
        if rel.is_one_to_many and len(ids) > 1:
            raise TooManyTargetsError(f"Relationship '{rel.name}' accepts a single related record.")

        source = _load_source(rel, source_id)

        if ids:
            found = {
                row.id
                for row in db.session.query(ModuleRecord.id).filter(
                    ModuleRecord.module_id == rel.to_module_id,
                    ModuleRecord.id.in_(ids),
                    ModuleRecord.deleted_at.is_(None),
                )
            }
            missing = set(ids) - found
            if missing:
                raise NotFoundError(
                    f"Related records not found: {', '.join(str(i) for i in sorted(missing))}",
                    missing_ids=missing,
                )

        data = dict(source.data or {})
        if rel.is_one_to_many:
            data[rel.api_name] = ids[0] if ids else None
        else:
            current = _as_id_list(data.get(rel.api_name))
            data[rel.api_name] = current + [i for i in ids if i not in current]

        source.set_data(data)
        source.updated_at = now
        source.updated_by = actor_id
        db.session.flush()

        current_app.logger.info(
            "Linked records",
            extra={"relationship": rel.api_name, "source_id": source.id, "target_ids": ids},
        )
    return source


def unlink_records(
    *,
    relationship_id: int,
    source_id: int,
    target_ids,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    """
    Remove target references from the source record.

    Targets need not still exist, so dangling references can be cleared.
    one_to_many is nulled when it points at one of the targets (or when no
    targets are given).
    """
    now = resolve_clock(clock)()
    with atomic():
        rel = _get_relationship(relationship_id)
        ids = _coerce_ids(target_ids)
        if rel.is_one_to_many and len(ids) > 1:
            raise TooManyTargetsError(f"Relationship '{rel.name}' accepts a single related record.")

        source = _load_source(rel, source_id)

        data = dict(source.data or {})
        if rel.is_one_to_many:
            current = data.get(rel.api_name)
            if not ids or any(_same_id(current, i) for i in ids):
                data[rel.api_name] = None
        else:
            current = _as_id_list(data.get(rel.api_name))
            data[rel.api_name] = [v for v in current if not any(_same_id(v, i) for i in ids)]

        source.set_data(data)
        source.updated_at = now
        source.updated_by = actor_id
        db.session.flush()

        current_app.logger.info(
            "Unlinked records",
            extra={"relationship": rel.api_name, "source_id": source.id, "target_ids": ids},
        )
    return source
