# Overview: Translates client filter / sort / search input into SQLAlchemy clauses over module records.

"""
Query Translator

Client input names a field, an operator and a value. Native columns (id,
created_at, updated_at) compile to plain column clauses; any other name must
be a current field api_name and compiles against the record's JSON document
through the accessor its type declares.

Anything that cannot be translated (unknown field, unknown or unsupported
operator, uncoercible value, bad sort direction) yields None and is dropped
by the build_* helpers. Field names are checked against the schema before a
JSON path is built; the path and every value are bound parameters.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import JSONB

from ..extensions import db
from ..field_types import (
    ACCESSOR_BOOLEAN,
    ACCESSOR_NUMERIC,
    ACCESSOR_STRING,
    CONTAINS,
    EQUALS,
    GREATER_THAN,
    GREATER_THAN_OR_EQUAL,
    LESS_THAN,
    LESS_THAN_OR_EQUAL,
    TYPE_HANDLERS,
    FieldType,
    normalize_operator,
)
from ..models import ModuleRecord
from ..time_utils import parse_iso_datetime


NATIVE_COLUMNS = {
    "id": ModuleRecord.id,
    "created_at": ModuleRecord.created_at,
    "updated_at": ModuleRecord.updated_at,
}
NATIVE_OPERATORS = frozenset({
    EQUALS, GREATER_THAN, GREATER_THAN_OR_EQUAL, LESS_THAN, LESS_THAN_OR_EQUAL,
})
SORT_DIRECTIONS = {"asc", "desc"}


def _compare(expr, operator: str, value):
    if operator == EQUALS:
        return expr == value
    if operator == GREATER_THAN:
        return expr > value
    if operator == GREATER_THAN_OR_EQUAL:
        return expr >= value
    if operator == LESS_THAN:
        return expr < value
    if operator == LESS_THAN_OR_EQUAL:
        return expr <= value
    return None


def json_accessor(api_name: str, accessor: str):
    """Typed SQL expression reading data[api_name]."""
    element = ModuleRecord.data[api_name]
    if accessor == ACCESSOR_NUMERIC:
        return element.as_float()
    if accessor == ACCESSOR_BOOLEAN:
        return element.as_boolean()
    return element.as_string()


def reference_predicate(api_name: str, record_id: int):
    """
    True where data[api_name] holds record_id, as the scalar value or as a
    member of a list. Ids stored as strings ("7") match as well.
    """
    target = str(int(record_id))
    element = ModuleRecord.data[api_name]
    scalar = db.cast(element.as_string(), db.String) == target

    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        members = db.func.json_each(ModuleRecord.data, f'$."{api_name}"').table_valued("value")
        member = db.select(members.c.value).where(db.cast(members.c.value, db.String) == target).exists()
    elif dialect == "postgresql":
        document = db.cast(element, JSONB)
        member = db.or_(document.contains([int(target)]), document.contains([target]))
    else:
        # Text match over the serialized list; callers confirm on the loaded rows
        member = db.cast(element, db.String).contains(target, autoescape=True)
    return db.or_(scalar, member)


def _coerce_operand(accessor: str, value: Any):
    """Bring a filter value into the accessor's domain, None when impossible."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if accessor == ACCESSOR_NUMERIC:
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
    if accessor == ACCESSOR_BOOLEAN:
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in ("true", "1", "yes", "on"):
            return True
        if s in ("false", "0", "no", "off"):
            return False
        return None
    return str(value)


def _native_operand(name: str, value: Any):
    if name == "id":
        if isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        return None


def translate_filter(fields: dict, field_name: str, operator: str, value: Any):
    """
    Compile one filter to a predicate.

    fields maps api_name -> Field for the module's current schema.
    Returns None when the filter cannot be applied.
    """
    op = normalize_operator(operator)
    if op is None:
        return None

    if field_name in NATIVE_COLUMNS:
        if op not in NATIVE_OPERATORS:
            return None
        operand = _native_operand(field_name, value)
        if operand is None:
            return None
        return _compare(NATIVE_COLUMNS[field_name], op, operand)

    field = fields.get(field_name) if isinstance(field_name, str) else None
    if field is None:
        return None
    try:
        handler = TYPE_HANDLERS[FieldType(field.type)]
    except ValueError:
        return None
    if handler.accessor is None or op not in handler.operators:
        return None

    operand = _coerce_operand(handler.accessor, value)
    if operand is None:
        return None

    expr = json_accessor(field.api_name, handler.accessor)
    if op == CONTAINS:
        return db.func.lower(expr).contains(operand.lower(), autoescape=True)
    return _compare(expr, op, operand)


def translate_sort(fields: dict, field_name: str, direction: str = "asc"):
    """Compile one sort entry to an order-by clause, or None."""
    if not isinstance(direction, str) or direction.strip().lower() not in SORT_DIRECTIONS:
        return None
    direction = direction.strip().lower()

    if field_name in NATIVE_COLUMNS:
        expr = NATIVE_COLUMNS[field_name]
    else:
        field = fields.get(field_name) if isinstance(field_name, str) else None
        if field is None:
            return None
        try:
            handler = TYPE_HANDLERS[FieldType(field.type)]
        except ValueError:
            return None
        if handler.accessor is None:
            return None
        expr = json_accessor(field.api_name, handler.accessor)

    return expr.asc() if direction == "asc" else expr.desc()


def build_filters(fields: dict, filters) -> list:
    """
    Translate a list of {"field", "operator", "value"} dicts.

    A mapping {field: value} is accepted as a shorthand for equality filters.
    """
    if not filters:
        return []
    if isinstance(filters, dict):
        filters = [{"field": k, "operator": EQUALS, "value": v} for k, v in filters.items()]

    clauses = []
    for entry in filters:
        if not isinstance(entry, dict):
            continue
        clause = translate_filter(fields, entry.get("field"), entry.get("operator", EQUALS), entry.get("value"))
        if clause is not None:
            clauses.append(clause)
    return clauses


def build_sort(fields: dict, sort) -> list:
    """
    Translate a list of {"field", "direction"} dicts.

    When nothing survives, the default order is created_at desc, id desc.
    Explicit orderings get id asc appended so pages are stable.
    """
    clauses = []
    for entry in sort or []:
        if not isinstance(entry, dict):
            continue
        clause = translate_sort(fields, entry.get("field"), entry.get("direction", "asc"))
        if clause is not None:
            clauses.append(clause)

    if not clauses:
        return [ModuleRecord.created_at.desc(), ModuleRecord.id.desc()]
    return clauses + [ModuleRecord.id.asc()]


def build_search(fields: dict, term):
    """OR of case-insensitive substring matches over searchable fields."""
    if term is None or not str(term).strip():
        return None
    needle = str(term).strip().lower()

    clauses = []
    for field in fields.values():
        if not field.is_searchable:
            continue
        try:
            handler = TYPE_HANDLERS[FieldType(field.type)]
        except ValueError:
            continue
        if handler.accessor != ACCESSOR_STRING:
            continue
        expr = json_accessor(field.api_name, ACCESSOR_STRING)
        clauses.append(db.func.lower(expr).contains(needle, autoescape=True))

    if not clauses:
        return None
    return db.or_(*clauses)
