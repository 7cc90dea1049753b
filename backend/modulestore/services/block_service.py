# Overview: Service-layer operations for blocks; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import Block, Module
from ..validation import NotFoundError, ProtectedResourceError, ValidationError, require_text
from .concurrency import atomic
from .field_service import build_field
from .ordering import apply_order


BLOCK_TYPES = {"section", "tab", "accordion"}
MIN_COLUMNS = 1
MAX_COLUMNS = 4

BLOCK_MUTABLE_FIELDS = {"name", "type", "order", "columns", "is_collapsible", "is_collapsed", "settings"}


def _get_block(block_id: int) -> Block:
    block = db.session.query(Block).filter_by(id=block_id).first()
    if not block:
        raise NotFoundError(f"Block {block_id} not found")
    return block


def _get_live_module(module_id: int) -> Module:
    module = db.session.query(Module).filter_by(id=module_id).first()
    if not module or module.is_deleted:
        raise NotFoundError(f"Module {module_id} not found")
    return module


def _ensure_editable(module: Module, action: str) -> None:
    if module.is_system:
        raise ProtectedResourceError(f"Cannot {action} in system modules.")


def _check_type(value) -> str:
    if value not in BLOCK_TYPES:
        raise ValidationError(f"Invalid block type: {value}")
    return value


def _check_columns(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not (MIN_COLUMNS <= value <= MAX_COLUMNS):
        raise ValidationError(f"Block columns must be between {MIN_COLUMNS} and {MAX_COLUMNS}")
    return value


def build_block(module: Module, data: dict) -> Block:
    """Add a block (and nested fields) to module inside the caller's transaction."""
    if not isinstance(data, dict):
        raise ValidationError("Block payload must be an object")

    block = Block(
        name=require_text(data.get("name"), what="Block name"),
        type=_check_type(data.get("type", "section")),
        order=data.get("order", len(module.blocks)),
        columns=_check_columns(data.get("columns", 1)),
        is_collapsible=bool(data.get("is_collapsible", False)),
        is_collapsed=bool(data.get("is_collapsed", False)),
        settings=data.get("settings") or {},
    )
    module.blocks.append(block)
    db.session.flush()

    for field_data in data.get("fields") or []:
        build_field(block, field_data)
    return block


def create_block(*, module_id: int, data: dict) -> Block:
    with atomic():
        module = _get_live_module(module_id)
        _ensure_editable(module, "add blocks")
        block = build_block(module, data)
    return block


def update_block(*, block_id: int, data: dict) -> Block:
    with atomic():
        block = _get_block(block_id)
        _ensure_editable(block.module, "modify blocks")

        for key in data.keys():
            if key not in BLOCK_MUTABLE_FIELDS:
                raise ValidationError(f"Field not allowed: {key}")

        if "name" in data:
            block.name = require_text(data["name"], what="Block name")
        if "type" in data:
            block.type = _check_type(data["type"])
        if "columns" in data:
            block.columns = _check_columns(data["columns"])
        for key in ("is_collapsible", "is_collapsed"):
            if key in data:
                setattr(block, key, bool(data[key]))
        if "order" in data:
            block.order = data["order"]
        if "settings" in data:
            block.settings = data["settings"] or {}
        db.session.flush()
    return block


def delete_block(*, block_id: int) -> None:
    """Delete a block with its fields and options. Record documents are untouched."""
    with atomic():
        block = _get_block(block_id)
        module = block.module
        _ensure_editable(module, "delete blocks")
        module.blocks.remove(block)


def get_block(block_id: int) -> Block:
    return _get_block(block_id)


def reorder_blocks(*, module_id: int, order: dict) -> list[Block]:
    with atomic():
        module = _get_live_module(module_id)
        _ensure_editable(module, "reorder blocks")
        blocks = apply_order(Block, Block.module_id, module_id, order, what="block")
    db.session.expire(module, ["blocks"])
    return blocks
