"""
Field Type Registry

Every field type a module can declare maps to one TypeHandler:

- check:     semantic check for a non-empty value (None when the type has none)
- coerce:    normalization applied to a value that passed its checks
- accessor:  how the JSON value is read in SQL (string / numeric / boolean),
             None when the type cannot be filtered or sorted on
- operators: filter operators the type supports

Adding a type means adding an enum member and a TYPE_HANDLERS entry.
Nothing in here touches the database: results depend only on the field
definition (and its loaded options) and the value.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlparse

from .validation import FieldError, RequiredFieldError, ValidationError


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DECIMAL = "decimal"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    SELECT = "select"
    MULTISELECT = "multiselect"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    TOGGLE = "toggle"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    CURRENCY = "currency"
    PERCENT = "percent"
    LOOKUP = "lookup"
    FORMULA = "formula"
    FILE = "file"
    IMAGE = "image"
    RICHTEXT = "richtext"


FIELD_TYPES = frozenset(t.value for t in FieldType)
OPTION_TYPES = frozenset({FieldType.SELECT, FieldType.MULTISELECT, FieldType.RADIO})

# Layout fractions (percent of the block row)
FIELD_WIDTHS = frozenset({25, 33, 50, 66, 75, 100})

# Query operators
EQUALS = "equals"
GREATER_THAN = "greater_than"
GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
LESS_THAN = "less_than"
LESS_THAN_OR_EQUAL = "less_than_or_equal"
CONTAINS = "contains"

OPERATOR_ALIASES = {
    "eq": EQUALS,
    "=": EQUALS,
    "equal": EQUALS,
    "gt": GREATER_THAN,
    "gte": GREATER_THAN_OR_EQUAL,
    "lt": LESS_THAN,
    "lte": LESS_THAN_OR_EQUAL,
}

COMPARISON_OPERATORS = frozenset({
    EQUALS, GREATER_THAN, GREATER_THAN_OR_EQUAL, LESS_THAN, LESS_THAN_OR_EQUAL,
})
TEXT_OPERATORS = frozenset({EQUALS, CONTAINS})
EQUALITY_ONLY = frozenset({EQUALS})
NO_OPERATORS = frozenset()

ACCESSOR_STRING = "string"
ACCESSOR_NUMERIC = "numeric"
ACCESSOR_BOOLEAN = "boolean"

EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)
PHONE_RE = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")

TRUE_STRINGS = {"true", "1", "yes", "on"}
FALSE_STRINGS = {"false", "0", "no", "off", ""}

Check = Callable[[Any, Any], "tuple[str, str] | None"]


@dataclass(frozen=True)
class TypeHandler:
    check: Check | None
    coerce: Callable[[Any], Any]
    accessor: str | None
    operators: frozenset


def normalize_operator(operator: Any) -> str | None:
    if not isinstance(operator, str):
        return None
    op = operator.strip().lower()
    return OPERATOR_ALIASES.get(op, op)


def field_type_of(field) -> FieldType:
    try:
        return FieldType(field.type)
    except ValueError:
        raise ValidationError(f"Invalid field type: {field.type}")


def handler_for(field) -> TypeHandler:
    return TYPE_HANDLERS[field_type_of(field)]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return True
    return False


# -----------------------------------------------------------------------------
# Semantic checks: (field, value) -> (code, message) | None
# -----------------------------------------------------------------------------

def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value.strip()))
        except ValueError:
            return False
    return False


def _check_email(field, value):
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        return "invalid_email", f"Field '{field.label}' must be a valid email address."
    return None


def _check_url(field, value):
    if isinstance(value, str) and not any(c.isspace() for c in value.strip()):
        parsed = urlparse(value.strip())
        if parsed.scheme and parsed.netloc:
            return None
    return "invalid_url", f"Field '{field.label}' must be a valid URL."


def _check_phone(field, value):
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not PHONE_RE.match(value.strip()):
        return "invalid_phone", f"Field '{field.label}' must be a valid phone number."
    return None


def _check_numeric(field, value):
    if not _is_numeric(value):
        return "not_numeric", f"Field '{field.label}' must be a number."
    return None


def _strict_format(value: Any, pattern: re.Pattern, fmt: str) -> bool:
    if not isinstance(value, str) or not pattern.match(value):
        return False
    try:
        return datetime.strptime(value, fmt).strftime(fmt) == value
    except ValueError:
        return False


def _check_date(field, value):
    if not _strict_format(value, DATE_RE, "%Y-%m-%d"):
        return "invalid_date", f"Field '{field.label}' must be a valid date (YYYY-MM-DD)."
    return None


def _check_datetime(field, value):
    if not _strict_format(value, DATETIME_RE, "%Y-%m-%d %H:%M:%S"):
        return "invalid_datetime", f"Field '{field.label}' must be a valid datetime (YYYY-MM-DD HH:MM:SS)."
    return None


def _option_key(value: Any) -> str | None:
    if isinstance(value, bool) or isinstance(value, (dict, list)) or value is None:
        return None
    return str(value)


def _check_option(field, value):
    if _option_key(value) not in field.active_option_values():
        return "invalid_option", f"Invalid option value for field '{field.label}'."
    return None


def _check_options(field, value):
    if not isinstance(value, (list, tuple)):
        return "not_a_list", f"Field '{field.label}' must be an array of options."
    allowed = field.active_option_values()
    for item in value:
        if _option_key(item) not in allowed:
            return "invalid_option", f"Invalid option value '{item}' for field '{field.label}'."
    return None


# -----------------------------------------------------------------------------
# Coercions (applied after checks pass)
# -----------------------------------------------------------------------------

def _keep(value):
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _to_number(value):
    num = float(value.strip()) if isinstance(value, str) else float(value)
    return int(num) if num.is_integer() else num


def _to_float(value):
    return float(value.strip()) if isinstance(value, str) else float(value)


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in TRUE_STRINGS:
            return True
        if s in FALSE_STRINGS:
            return False
    return bool(value)


def _to_option(value):
    return _option_key(value)


def _to_option_list(value):
    items = value if isinstance(value, (list, tuple)) else [value]
    seen: list[str] = []
    for item in items:
        key = _option_key(item)
        if key is not None and key not in seen:
            seen.append(key)
    return seen


def _to_phone(value):
    return str(value).strip()


TYPE_HANDLERS: dict[FieldType, TypeHandler] = {
    FieldType.TEXT: TypeHandler(None, _keep, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.TEXTAREA: TypeHandler(None, _keep, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.RICHTEXT: TypeHandler(None, _keep, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.EMAIL: TypeHandler(_check_email, _strip, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.URL: TypeHandler(_check_url, _strip, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.PHONE: TypeHandler(_check_phone, _to_phone, ACCESSOR_STRING, TEXT_OPERATORS),
    FieldType.NUMBER: TypeHandler(_check_numeric, _to_number, ACCESSOR_NUMERIC, COMPARISON_OPERATORS),
    FieldType.DECIMAL: TypeHandler(_check_numeric, _to_float, ACCESSOR_NUMERIC, COMPARISON_OPERATORS),
    FieldType.CURRENCY: TypeHandler(_check_numeric, _to_float, ACCESSOR_NUMERIC, COMPARISON_OPERATORS),
    FieldType.PERCENT: TypeHandler(_check_numeric, _to_float, ACCESSOR_NUMERIC, COMPARISON_OPERATORS),
    FieldType.DATE: TypeHandler(_check_date, _keep, ACCESSOR_STRING, COMPARISON_OPERATORS),
    FieldType.DATETIME: TypeHandler(_check_datetime, _keep, ACCESSOR_STRING, COMPARISON_OPERATORS),
    FieldType.TIME: TypeHandler(None, _keep, ACCESSOR_STRING, COMPARISON_OPERATORS),
    FieldType.SELECT: TypeHandler(_check_option, _to_option, ACCESSOR_STRING, EQUALITY_ONLY),
    FieldType.RADIO: TypeHandler(_check_option, _to_option, ACCESSOR_STRING, EQUALITY_ONLY),
    FieldType.MULTISELECT: TypeHandler(_check_options, _to_option_list, None, NO_OPERATORS),
    FieldType.CHECKBOX: TypeHandler(None, _to_bool, ACCESSOR_BOOLEAN, EQUALITY_ONLY),
    FieldType.TOGGLE: TypeHandler(None, _to_bool, ACCESSOR_BOOLEAN, EQUALITY_ONLY),
    FieldType.LOOKUP: TypeHandler(None, _keep, ACCESSOR_NUMERIC, EQUALITY_ONLY),
    FieldType.FORMULA: TypeHandler(None, _keep, None, NO_OPERATORS),
    FieldType.FILE: TypeHandler(None, _keep, ACCESSOR_STRING, EQUALITY_ONLY),
    FieldType.IMAGE: TypeHandler(None, _keep, ACCESSOR_STRING, EQUALITY_ONLY),
}


# -----------------------------------------------------------------------------
# validation_rules
# -----------------------------------------------------------------------------

RULE_KEYS = {"min", "max", "min_length", "max_length", "pattern"}


def check_rules_definition(rules: Any) -> dict:
    """Sanity-check a field's validation_rules when the field is defined."""
    if rules is None:
        return {}
    if not isinstance(rules, dict):
        raise ValidationError("validation_rules must be an object")
    for key in ("min", "max"):
        if key in rules and rules[key] is not None and not _is_numeric(rules[key]):
            raise ValidationError(f"validation_rules.{key} must be a number")
    for key in ("min_length", "max_length"):
        if key in rules and rules[key] is not None:
            if isinstance(rules[key], bool) or not isinstance(rules[key], int) or rules[key] < 0:
                raise ValidationError(f"validation_rules.{key} must be a non-negative integer")
    if rules.get("min") is not None and rules.get("max") is not None:
        if float(rules["min"]) > float(rules["max"]):
            raise ValidationError("validation_rules.min cannot be greater than max")
    if rules.get("min_length") is not None and rules.get("max_length") is not None:
        if rules["min_length"] > rules["max_length"]:
            raise ValidationError("validation_rules.min_length cannot be greater than max_length")
    if rules.get("pattern") is not None:
        try:
            re.compile(rules["pattern"])
        except (re.error, TypeError):
            raise ValidationError("validation_rules.pattern is not a valid regular expression")
    return dict(rules)


def _check_rules(field, value, handler: TypeHandler):
    rules = field.validation_rules or {}
    if not rules:
        return None
    if handler.accessor == ACCESSOR_NUMERIC and _is_numeric(value):
        num = float(value)
        if rules.get("min") is not None and num < float(rules["min"]):
            return "min", f"Field '{field.label}' must be at least {rules['min']}."
        if rules.get("max") is not None and num > float(rules["max"]):
            return "max", f"Field '{field.label}' must be at most {rules['max']}."
    if isinstance(value, str):
        if rules.get("min_length") is not None and len(value) < rules["min_length"]:
            return "min_length", f"Field '{field.label}' must be at least {rules['min_length']} characters."
        if rules.get("max_length") is not None and len(value) > rules["max_length"]:
            return "max_length", f"Field '{field.label}' must be at most {rules['max_length']} characters."
        if rules.get("pattern") and not re.match(rules["pattern"], value):
            return "pattern", f"Field '{field.label}' format is invalid."
    return None


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def check_value(field, value: Any) -> FieldError | None:
    """Return the first failed check for value on field, or None."""
    handler = handler_for(field)

    if is_empty(value):
        if field.is_required:
            return FieldError(field.api_name, "required", f"Field '{field.label}' is required.")
        return None

    if handler.check is not None:
        failed = handler.check(field, value)
        if failed:
            return FieldError(field.api_name, *failed)

    failed = _check_rules(field, value, handler)
    if failed:
        return FieldError(field.api_name, *failed)
    return None


def coerce_value(field, value: Any) -> Any:
    if is_empty(value):
        return None
    return handler_for(field).coerce(value)


def validate_value(field, value: Any) -> Any:
    """
    Validate value against field and return its stored form.

    Raises RequiredFieldError for a missing required value and
    ValidationError for any other failed check.
    """
    error = check_value(field, value)
    if error is not None:
        exc_cls = RequiredFieldError if error.code == "required" else ValidationError
        raise exc_cls(error.message, errors=[error])
    return coerce_value(field, value)


def default_for(field) -> Any:
    """Value stored when a create payload omits the field (None = omit)."""
    if field.default_value is not None and not is_empty(field.default_value):
        return coerce_value(field, field.default_value)
    ftype = field_type_of(field)
    if ftype in OPTION_TYPES:
        option = field.default_option()
        if option is not None:
            return [option.value] if ftype == FieldType.MULTISELECT else option.value
    return None
