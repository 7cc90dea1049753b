# Overview: Service-layer operations for module records; encapsulates business logic and database work.

"""
Record Service

Records are JSON documents keyed by field api_name, validated against the
module's schema at write time only.

WRITE RULES:
- every field error in a payload is collected into one ValidationError
- keys the schema does not know are ignored
- create: absent required field -> "required"; absent field with a default
  (default_value, else the default option) -> default stored
- update merges: present keys overwrite, absent keys keep their value,
  stale keys (fields since removed) are retained
- is_unique fields reject a value held by another live record ("unique")

DELETE:
- soft delete marks deleted_at and runs cascade + orphan cleanup in the same
  transaction; restore clears the marker only
- force delete cleans references, then removes the row
"""

from __future__ import annotations

import math
from datetime import timedelta
from typing import Any, Iterable

from flask import current_app

from ..extensions import db
from ..field_types import EQUALS, check_value, coerce_value, default_for, is_empty
from ..models import Module, ModuleRecord, ModuleRelationship
from ..time_utils import Clock, resolve_clock
from ..validation import (
    FieldError,
    InactiveModuleError,
    NotFoundError,
    RequiredFieldError,
    ValidationError,
)
from .concurrency import atomic, lock_for_update
from .query_service import build_filters, build_search, build_sort, translate_filter
from .relationship_service import cleanup_orphaned_references, handle_cascade_delete


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_live_module(module_id: int) -> Module:
    module = db.session.query(Module).filter_by(id=module_id).first()
    if not module or module.is_deleted:
        raise NotFoundError(f"Module {module_id} not found")
    return module


def _get_writable_module(module_id: int) -> Module:
    module = _get_live_module(module_id)
    if not module.is_active:
        raise InactiveModuleError(f"Cannot write records for inactive module '{module.api_name}'.")
    return module


def _record_query(module_id: int, *, trashed: bool | None = False):
    query = db.session.query(ModuleRecord).filter(ModuleRecord.module_id == module_id)
    if trashed is False:
        query = query.filter(ModuleRecord.deleted_at.is_(None))
    elif trashed is True:
        query = query.filter(ModuleRecord.deleted_at.isnot(None))
    return query


def _get_record(module_id: int, record_id: int, *, trashed: bool | None = False, lock: bool = False) -> ModuleRecord:
    query = _record_query(module_id, trashed=trashed).filter(ModuleRecord.id == record_id)
    if lock:
        query = lock_for_update(query)
    record = query.first()
    if not record:
        raise NotFoundError(f"Record {record_id} not found")
    return record


def _positive_int(value) -> int | None:
    # Query-string values arrive as text
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 1 else None


def _page_size(page_size) -> int:
    cfg = current_app.config
    default = cfg.get("DEFAULT_PAGE_SIZE", 15)
    maximum = cfg.get("MAX_PAGE_SIZE", 100)
    page_size = _positive_int(page_size)
    if page_size is None:
        return default
    return min(page_size, maximum)


def _paginate(query, *, page, page_size) -> dict:
    per_page = _page_size(page_size)
    page = _positive_int(page) or 1
    total = query.order_by(None).count()
    total_pages = math.ceil(total / per_page) if total > 0 else 1
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _check_unique(module_id: int, fields: dict, field, value, exclude_record_id: int | None) -> FieldError | None:
    predicate = translate_filter(fields, field.api_name, EQUALS, value)
    if predicate is None:
        return None
    query = _record_query(module_id).filter(predicate)
    if exclude_record_id is not None:
        query = query.filter(ModuleRecord.id != exclude_record_id)
    if query.first() is not None:
        return FieldError(field.api_name, "unique", f"Field '{field.label}' must be unique; '{value}' is already taken.")
    return None


def _build_document(
    module: Module,
    data: dict,
    *,
    existing: dict | None = None,
    record_id: int | None = None,
) -> dict:
    """
    Validate data against the module schema and return the document to store.

    existing is the current document on update (None on create).
    """
    if not isinstance(data, dict):
        raise ValidationError("Record data must be an object")

    fields = module.fields_by_api_name()
    document = dict(existing or {})
    errors: list[FieldError] = []

    for api_name, field in fields.items():
        if api_name in data:
            error = check_value(field, data[api_name])
            if error is not None:
                errors.append(error)
                continue
            document[api_name] = coerce_value(field, data[api_name])
        elif api_name in document:
            continue
        elif field.is_required:
            errors.append(FieldError(api_name, "required", f"Field '{field.label}' is required."))
        else:
            default = default_for(field)
            if default is not None:
                document[api_name] = default

    for api_name, field in fields.items():
        if not field.is_unique or any(e.field == api_name for e in errors):
            continue
        if existing is not None and api_name not in data:
            continue
        value = document.get(api_name)
        if is_empty(value):
            continue
        error = _check_unique(module.id, fields, field, value, record_id)
        if error is not None:
            errors.append(error)

    if errors:
        if all(e.code == "required" for e in errors):
            exc_cls = RequiredFieldError
        else:
            exc_cls = ValidationError
        names = ", ".join(sorted({e.field for e in errors}))
        raise exc_cls(f"Validation failed for: {names}", errors=errors)
    return document


def _soft_delete(module_id: int, record: ModuleRecord, *, now, actor_id: int | None) -> None:
    record.deleted_at = now
    record.updated_at = now
    record.updated_by = actor_id
    db.session.flush()
    handle_cascade_delete(module_id=module_id, record_id=record.id, actor_id=actor_id, clock=lambda: now)
    cleanup_orphaned_references(module_id=module_id, record_id=record.id, actor_id=actor_id, clock=lambda: now)


def _normalize_ids(record_ids: Iterable) -> list[int]:
    if not isinstance(record_ids, (list, tuple, set)) or not record_ids:
        raise ValidationError("record_ids must be a non-empty list")
    ids: list[int] = []
    for raw in record_ids:
        if isinstance(raw, bool):
            raise ValidationError(f"Invalid record id: {raw!r}")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid record id: {raw!r}")
        if value not in ids:
            ids.append(value)
    return ids


def _load_many(module_id: int, ids: list[int], *, trashed: bool | None = False) -> list[ModuleRecord]:
    query = _record_query(module_id, trashed=trashed).filter(ModuleRecord.id.in_(ids))
    rows = {r.id: r for r in lock_for_update(query).all()}
    missing = set(ids) - set(rows)
    if missing:
        raise NotFoundError(
            f"Records not found: {', '.join(str(i) for i in sorted(missing))}",
            missing_ids=missing,
        )
    return [rows[i] for i in ids]


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------

def create_record(
    *,
    module_id: int,
    data: dict,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    """
    Validate data against the module schema and store a new record.

    Raises:
        NotFoundError: module missing or deleted
        InactiveModuleError: module is inactive
        RequiredFieldError: only required values are missing
        ValidationError: any failed check (errors lists each field and code)
    """
    now = resolve_clock(clock)()
    with atomic():
        module = _get_writable_module(module_id)
        document = _build_document(module, data)

        record = ModuleRecord(
            module_id=module.id,
            data=document,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        db.session.add(record)
        db.session.flush()
    return record


def update_record(
    *,
    module_id: int,
    record_id: int,
    data: dict,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    """Merge data into a live record's document; see module docstring for rules."""
    now = resolve_clock(clock)()
    with atomic():
        module = _get_writable_module(module_id)
        record = _get_record(module.id, record_id, lock=True)
        document = _build_document(module, data, existing=record.data or {}, record_id=record.id)

        record.set_data(document)
        record.updated_by = actor_id
        record.updated_at = now
        db.session.flush()
    return record


def soft_delete_record(
    *,
    module_id: int,
    record_id: int,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    now = resolve_clock(clock)()
    with atomic():
        module = _get_live_module(module_id)
        record = _get_record(module.id, record_id, lock=True)
        _soft_delete(module.id, record, now=now, actor_id=actor_id)
    return record


def restore_record(
    *,
    module_id: int,
    record_id: int,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> ModuleRecord:
    """Clear the deletion marker. Records removed by cascade stay deleted."""
    now = resolve_clock(clock)()
    with atomic():
        module = _get_live_module(module_id)
        record = _get_record(module.id, record_id, trashed=True, lock=True)
        record.deleted_at = None
        record.updated_at = now
        record.updated_by = actor_id
        db.session.flush()
    return record


def force_delete_record(
    *,
    module_id: int,
    record_id: int,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> None:
    """Remove a record (live or trashed) for good after clearing references to it."""
    now = resolve_clock(clock)()
    with atomic():
        module = _get_live_module(module_id)
        record = _get_record(module.id, record_id, trashed=None, lock=True)
        if not record.is_deleted:
            handle_cascade_delete(module_id=module.id, record_id=record.id, actor_id=actor_id, clock=lambda: now)
        cleanup_orphaned_references(module_id=module.id, record_id=record.id, actor_id=actor_id, clock=lambda: now)
        db.session.delete(record)


def bulk_create_records(
    *,
    module_id: int,
    records: list[dict],
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> list[ModuleRecord]:
    """
    Create many records in one transaction.

    The first invalid payload aborts the batch; its position is on the
    raised error's index attribute.
    """
    if not isinstance(records, list):
        raise ValidationError("records must be a list")

    now = resolve_clock(clock)()
    created: list[ModuleRecord] = []
    with atomic():
        module = _get_writable_module(module_id)
        for index, data in enumerate(records):
            try:
                document = _build_document(module, data)
            except ValidationError as exc:
                exc.index = index
                raise
            record = ModuleRecord(
                module_id=module.id,
                data=document,
                created_by=actor_id,
                updated_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            db.session.add(record)
            db.session.flush()
            created.append(record)
    return created


def bulk_update_records(
    *,
    module_id: int,
    record_ids: list[int],
    data: dict,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> list[ModuleRecord]:
    """Merge the same data into every listed record; all or nothing."""
    ids = _normalize_ids(record_ids)
    now = resolve_clock(clock)()
    with atomic():
        module = _get_writable_module(module_id)
        records = _load_many(module.id, ids)
        for index, record in enumerate(records):
            try:
                document = _build_document(module, data, existing=record.data or {}, record_id=record.id)
            except ValidationError as exc:
                exc.index = index
                raise
            record.set_data(document)
            record.updated_by = actor_id
            record.updated_at = now
            db.session.flush()
    return records


def bulk_delete_records(
    *,
    module_id: int,
    record_ids: list[int],
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> int:
    """Soft-delete every listed record; unknown ids abort the batch before any change."""
    ids = _normalize_ids(record_ids)
    now = resolve_clock(clock)()
    with atomic():
        module = _get_live_module(module_id)
        records = _load_many(module.id, ids)
        for record in records:
            # An earlier cascade in this batch may already have taken it
            if record.is_deleted:
                continue
            _soft_delete(module.id, record, now=now, actor_id=actor_id)
    return len(records)


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

def get_record(*, module_id: int, record_id: int, include_trashed: bool = False) -> ModuleRecord:
    _get_live_module(module_id)
    return _get_record(module_id, record_id, trashed=None if include_trashed else False)


def record_exists(*, module_id: int, record_id: int) -> bool:
    return _record_query(module_id).filter(ModuleRecord.id == record_id).first() is not None


def list_records(
    *,
    module_id: int,
    filters=None,
    sort=None,
    page: int = 1,
    page_size: int | None = None,
    search: str | None = None,
) -> dict:
    """
    Page through live records.

    filters: [{"field", "operator", "value"}] (or {field: value} for equality)
    sort:    [{"field", "direction"}]
    search:  substring matched against is_searchable fields

    Untranslatable filters and sorts are dropped; the default order is
    created_at desc.
    """
    module = _get_live_module(module_id)
    fields = module.fields_by_api_name()

    query = _record_query(module.id)
    for clause in build_filters(fields, filters):
        query = query.filter(clause)
    search_clause = build_search(fields, search)
    if search_clause is not None:
        query = query.filter(search_clause)
    query = query.order_by(*build_sort(fields, sort))

    return _paginate(query, page=page, page_size=page_size)


def list_trashed_records(*, module_id: int, page: int = 1, page_size: int | None = None) -> dict:
    module = _get_live_module(module_id)
    query = _record_query(module.id, trashed=True).order_by(
        ModuleRecord.deleted_at.desc(), ModuleRecord.id.desc()
    )
    return _paginate(query, page=page, page_size=page_size)


def count_records(*, module_id: int, filters=None) -> int:
    module = _get_live_module(module_id)
    query = _record_query(module.id)
    for clause in build_filters(module.fields_by_api_name(), filters):
        query = query.filter(clause)
    return query.count()


def get_records_by_field(
    *,
    module_id: int,
    field_api_name: str,
    value: Any,
    page: int = 1,
    page_size: int | None = None,
) -> dict:
    return list_records(
        module_id=module_id,
        filters=[{"field": field_api_name, "operator": EQUALS, "value": value}],
        page=page,
        page_size=page_size,
    )


def search_records(
    *,
    module_id: int,
    term: str,
    page: int = 1,
    page_size: int | None = None,
) -> dict:
    return list_records(module_id=module_id, search=term, page=page, page_size=page_size)


def get_unique_field_values(*, module_id: int, field_api_name: str) -> list:
    """Distinct non-null values of a field across live records, first-seen order by id."""
    module = _get_live_module(module_id)
    fields = module.fields_by_api_name()
    if field_api_name not in fields:
        raise NotFoundError(f"Field '{field_api_name}' not found in module '{module.api_name}'")

    values: list = []
    for record in _record_query(module.id).order_by(ModuleRecord.id.asc()).all():
        value = (record.data or {}).get(field_api_name)
        if value is None or value in values:
            continue
        values.append(value)
    return values


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

def prune_stale_keys(*, module_id: int) -> int:
    """
    Drop document keys that are neither current fields nor relationship keys.

    Returns the number of records rewritten. Trashed records are included so
    a restore brings back a clean document.
    """
    with atomic():
        module = _get_live_module(module_id)
        keep = set(module.fields_by_api_name())
        keep |= {
            r.api_name
            for r in db.session.query(ModuleRelationship).filter(
                db.or_(
                    ModuleRelationship.from_module_id == module.id,
                    ModuleRelationship.to_module_id == module.id,
                )
            )
        }

        changed = 0
        for record in lock_for_update(_record_query(module.id, trashed=None)).all():
            data = record.data or {}
            stale = set(data) - keep
            if not stale:
                continue
            record.set_data({k: v for k, v in data.items() if k in keep})
            changed += 1
        db.session.flush()

    current_app.logger.info(
        "Pruned stale record keys",
        extra={"module_id": module_id, "records_changed": changed},
    )
    return changed


def purge_trashed_records(*, module_id: int, older_than_days: int | None = None, clock: Clock | None = None) -> int:
    """Force-delete trashed records, optionally only those trashed before now - older_than_days."""
    now = resolve_clock(clock)()
    with atomic():
        module = _get_live_module(module_id)
        query = _record_query(module.id, trashed=True)
        if older_than_days is not None:
            if older_than_days < 0:
                raise ValidationError("older_than_days cannot be negative")
            query = query.filter(ModuleRecord.deleted_at <= now - timedelta(days=older_than_days))

        records = lock_for_update(query).all()
        for record in records:
            cleanup_orphaned_references(module_id=module.id, record_id=record.id, clock=lambda: now)
            db.session.delete(record)
        db.session.flush()

    current_app.logger.info(
        "Purged trashed records",
        extra={"module_id": module_id, "records_purged": len(records)},
    )
    return len(records)
