"""Item catalog operations.

Stock allocations submitted with an item never overwrite quantities
directly: opening balances become ``receive`` movements and count
corrections become adjustment movements, so the movement history always
explains the ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from stockapp.auth import resolve_role
from stockapp.errors import ConflictError, NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, ItemLocation, Location, MovementType, User
from stockapp.services.movement_validator import MovementRequest
from stockapp.services.stock_movements import record_movement
from stockapp.services.transactions import transactional
from stockapp.utils.payload import (
    QUANTITY_COLUMN,
    coerce_decimal,
    coerce_int,
    fits_column,
    require_flag,
)

logger = logging.getLogger(__name__)

OPENING_STOCK_REASON = "Opening stock"
COUNT_CORRECTION_REASON = "Stock count correction from item edit"


@dataclass(frozen=True)
class AllocationRequest:
    location_id: int
    quantity: Decimal | None
    min_threshold: Decimal | None
    max_threshold: Decimal | None


def _text(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _optional_number(raw: Any, field: str) -> Decimal | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    number = coerce_decimal(raw)
    if number is None:
        raise ValidationError(f"{field} must be a number", field=field)
    if not fits_column(number, QUANTITY_COLUMN):
        raise ValidationError(
            f"{field} must have at most 3 decimal places and 11 whole digits",
            field=field,
        )
    return number


def parse_allocations(raw: Any) -> list[AllocationRequest]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("stock_allocations must be a list", field="stock_allocations")

    allocations: list[AllocationRequest] = []
    seen: set[int] = set()
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ValidationError(
                "Each stock allocation must be an object", field="stock_allocations"
            )
        location_id = coerce_int(entry.get("location_id"))
        if location_id is None:
            raise ValidationError("location_id is required", field="location_id")
        if location_id in seen:
            raise ValidationError(
                "Each location may only appear once", field="stock_allocations"
            )
        seen.add(location_id)

        quantity = _optional_number(entry.get("quantity"), "quantity")
        if quantity is not None and quantity < 0:
            raise ValidationError("Quantity cannot be negative", field="quantity")
        allocations.append(
            AllocationRequest(
                location_id=location_id,
                quantity=quantity,
                min_threshold=_optional_number(entry.get("min_threshold"), "min_threshold"),
                max_threshold=_optional_number(entry.get("max_threshold"), "max_threshold"),
            )
        )
    return allocations


def _active_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None or not location.is_active:
        raise NotFoundError("Location not found or inactive", field="location")
    return location


def _submit_stock_change(
    item: Item,
    location_id: int,
    movement_type: str,
    quantity: Decimal,
    reason: str,
    user: User,
    role: str,
) -> None:
    record_movement(
        MovementRequest(
            item_id=item.id,
            location_id=location_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            role=role,
        ),
        user,
    )


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", field="item")
    return item


def list_items(*, include_inactive: bool = False) -> list[Item]:
    query = Item.query
    if not include_inactive:
        query = query.filter(Item.is_active.is_(True))
    return query.order_by(Item.name.asc()).all()


def list_categories() -> list[str]:
    rows = (
        db.session.query(Item.category)
        .filter(Item.category.isnot(None), Item.is_active.is_(True))
        .distinct()
        .all()
    )
    return sorted({category for (category,) in rows if category})


def add_item(payload: Mapping[str, Any], user: User, role: str | None = None) -> Item:
    """Create an item and its allocations in the current transaction."""

    role = role or resolve_role(user)
    sku = _text(payload, "sku")
    name = _text(payload, "name")
    unit = _text(payload, "unit")
    if not sku or not name or not unit:
        raise ValidationError("SKU, name, and unit are required", field="sku")

    if Item.query.filter_by(sku=sku).first() is not None:
        raise ConflictError("SKU already exists", field="sku")

    allocations = parse_allocations(payload.get("stock_allocations"))

    item = Item(
        sku=sku,
        barcode=_text(payload, "barcode"),
        name=name,
        description=_text(payload, "description"),
        category=_text(payload, "category"),
        unit=unit,
        is_active=True,
    )
    db.session.add(item)
    db.session.flush()

    for allocation in allocations:
        location = _active_location(allocation.location_id)
        db.session.add(
            ItemLocation(
                item_id=item.id,
                location_id=location.id,
                quantity=0,
                min_threshold=allocation.min_threshold,
                max_threshold=allocation.max_threshold,
            )
        )
        db.session.flush()
        if allocation.quantity:
            _submit_stock_change(
                item,
                location.id,
                MovementType.RECEIVE,
                allocation.quantity,
                OPENING_STOCK_REASON,
                user,
                role,
            )

    logger.info("Created item %s with %s allocations", item.sku, len(allocations))
    return item


@transactional
def create_item(payload: Mapping[str, Any], user: User, role: str | None = None) -> Item:
    return add_item(payload, user, role)


@transactional
def update_item(
    item_id: int, payload: Mapping[str, Any], user: User, role: str | None = None
) -> Item:
    role = role or resolve_role(user)
    item = get_item(item_id)

    if "sku" in payload and _text(payload, "sku") != item.sku:
        raise ValidationError("SKU cannot be changed", field="sku")

    for key in ("name", "unit"):
        if key in payload:
            value = _text(payload, key)
            if not value:
                raise ValidationError(f"{key} cannot be empty", field=key)
            setattr(item, key, value)
    for key in ("description", "category", "barcode"):
        if key in payload:
            setattr(item, key, _text(payload, key))

    if "stock_allocations" in payload:
        _sync_allocations(item, parse_allocations(payload["stock_allocations"]), user, role)

    if "is_active" in payload:
        item.is_active = require_flag(payload, "is_active")

    return item


def _sync_allocations(
    item: Item, allocations: list[AllocationRequest], user: User, role: str
) -> None:
    existing = {row.location_id: row for row in item.allocations}
    requested = {allocation.location_id for allocation in allocations}

    for location_id, row in existing.items():
        if location_id in requested:
            continue
        if Decimal(row.quantity or 0) != 0:
            raise ConflictError(
                "Cannot remove a stock allocation that still holds stock",
                field="stock_allocations",
            )
        db.session.delete(row)

    for allocation in allocations:
        row = existing.get(allocation.location_id)
        is_new = row is None
        if is_new:
            location = _active_location(allocation.location_id)
            row = ItemLocation(item_id=item.id, location_id=location.id, quantity=0)
            db.session.add(row)
        row.min_threshold = allocation.min_threshold
        row.max_threshold = allocation.max_threshold
        db.session.flush()

        if allocation.quantity is None:
            continue
        difference = allocation.quantity - Decimal(row.quantity or 0)
        if difference == 0:
            continue
        if is_new:
            movement_type, reason = MovementType.RECEIVE, OPENING_STOCK_REASON
        elif difference > 0:
            movement_type, reason = MovementType.ADJUSTMENT_INCREASE, COUNT_CORRECTION_REASON
        else:
            movement_type, reason = MovementType.ADJUSTMENT_DECREASE, COUNT_CORRECTION_REASON
        _submit_stock_change(
            item,
            allocation.location_id,
            movement_type,
            abs(difference),
            reason,
            user,
            role,
        )


@transactional
def deactivate_item(item_id: int) -> Item:
    item = get_item(item_id)
    item.is_active = False
    logger.info("Deactivated item %s", item.sku)
    return item
