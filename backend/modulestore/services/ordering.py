# Overview: Shared reorder routine for blocks, fields and field options.

from __future__ import annotations

from ..extensions import db
from ..validation import NotFoundError, ValidationError


def normalize_order(order) -> dict[int, int]:
    """Coerce an {id: position} mapping (JSON keys arrive as strings) to ints."""
    if not isinstance(order, dict) or not order:
        raise ValidationError("order must be a non-empty mapping of id to position")
    normalized: dict[int, int] = {}
    for raw_id, raw_pos in order.items():
        try:
            item_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid id in order mapping: {raw_id!r}")
        if isinstance(raw_pos, bool) or not isinstance(raw_pos, int):
            raise ValidationError(f"Position for id {item_id} must be an integer")
        normalized[item_id] = raw_pos
    return normalized


def apply_order(model, parent_column, parent_id: int, order, *, what: str) -> list:
    """
    Move each child to its new position.

    Membership of every id in the parent is checked before any row changes;
    the caller's transaction makes the position writes all-or-nothing.
    """
    positions = normalize_order(order)
    rows = (
        db.session.query(model)
        .filter(parent_column == parent_id, model.id.in_(list(positions)))
        .all()
    )
    found = {r.id for r in rows}
    missing = set(positions) - found
    if missing:
        raise NotFoundError(
            f"Invalid {what} IDs provided: {', '.join(str(i) for i in sorted(missing))}",
            missing_ids=missing,
        )
    for row in rows:
        row.order = positions[row.id]
    db.session.flush()
    return sorted(rows, key=lambda r: (r.order, r.id))
