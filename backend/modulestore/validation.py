from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable


API_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9]+")


class ModuleStoreError(Exception):
    """Base class for expected, caller-recoverable engine errors."""


class NotFoundError(ModuleStoreError):
    """Module, block, field, option, record or relationship is missing."""

    def __init__(self, message: str, *, missing_ids: Iterable[int] | None = None):
        super().__init__(message)
        self.missing_ids = sorted(missing_ids) if missing_ids else []


@dataclass(frozen=True)
class FieldError:
    """One failed check on one field."""
    field: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "code": self.code, "message": self.message}


class ValidationError(ModuleStoreError, ValueError):
    """400-level input problem."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[FieldError] | None = None,
        index: int | None = None,
    ):
        super().__init__(message)
        self.errors = list(errors or [])
        self.index = index

    @property
    def codes(self) -> list[str]:
        return [e.code for e in self.errors]

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {
            "error": str(self),
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.index is not None:
            payload["index"] = self.index
        return payload


class RequiredFieldError(ValidationError):
    """A required field was given no value."""


class TooManyTargetsError(ValidationError):
    """A one-to-many link was asked to point at more than one record."""


class ConflictError(ModuleStoreError, ValueError):
    """409-level business rule conflict (e.g., duplicate api_name)."""


class ProtectedResourceError(ModuleStoreError):
    """Mutation attempted on a system module."""


class InactiveModuleError(ModuleStoreError):
    """Records cannot be written to an inactive module."""


class IntegrityViolationError(ModuleStoreError):
    """Structural rule broken (self-relationship, malformed api_name)."""


def to_snake_case(value: str) -> str:
    """
    Derive an api_name from a human label.

    "First Name" -> "first_name", "dealStage" -> "deal_stage",
    "2nd Phone" -> "_2nd_phone" (identifiers may not start with a digit).
    """
    if value is None:
        return ""
    s = _CAMEL_BOUNDARY_RE.sub("_", value.strip())
    s = _NON_WORD_RE.sub("_", s).strip("_").lower()
    s = re.sub(r"_+", "_", s)
    if s and s[0].isdigit():
        s = "_" + s
    return s


def require_api_name(api_name: str | None, *, what: str) -> str:
    if not api_name or not API_NAME_RE.match(api_name):
        raise IntegrityViolationError(f"{what} api_name '{api_name}' must be snake_case")
    return api_name


def require_text(value: Any, *, what: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{what} is required")
    return str(value).strip()
