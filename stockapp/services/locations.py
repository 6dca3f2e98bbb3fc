from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from sqlalchemy import func

from stockapp.errors import ConflictError, NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, ItemLocation, Location, LocationType
from stockapp.services.transactions import transactional
from stockapp.utils.payload import require_flag

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def slugify(name: str) -> str:
    return _WHITESPACE.sub("-", name.strip().lower())


def build_path(parent: Location | None, name: str) -> tuple[str, int]:
    """Return the materialized ``(path, level)`` for a child of ``parent``."""

    if parent is None:
        return f"/{slugify(name)}", 0
    return f"{parent.path}/{slugify(name)}", parent.level + 1


def _clean_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("Name and type are required", field="name")
    if "/" in name:
        raise ValidationError("Location names cannot contain '/'", field="name")
    return name


def _clean_type(value: Any) -> str:
    location_type = value.strip().lower() if isinstance(value, str) else ""
    if not location_type:
        raise ValidationError("Name and type are required", field="type")
    if location_type not in LocationType.ALL_TYPES:
        raise ValidationError(
            "Location type must be one of: " + ", ".join(LocationType.ALL_TYPES),
            field="type",
        )
    return location_type


def _ensure_path_free(path: str, *, exclude_id: int | None = None) -> None:
    query = Location.query.filter(Location.path == path, Location.is_active.is_(True))
    if exclude_id is not None:
        query = query.filter(Location.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"A location already exists at {path}", field="name")


def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError("Location not found", field="location")
    return location


def list_locations(*, include_inactive: bool = True) -> list[Location]:
    query = Location.query
    if not include_inactive:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.path.asc()).all()


def find_by_path(path: str) -> Location | None:
    return Location.query.filter(
        Location.path == path, Location.is_active.is_(True)
    ).first()


def add_location(
    parent_id: int | None,
    name: Any,
    location_type: Any,
    metadata: Mapping[str, Any] | None = None,
) -> Location:
    """Create a location in the current transaction."""

    clean_name = _clean_name(name)
    clean_type = _clean_type(location_type)
    if metadata is not None and not isinstance(metadata, Mapping):
        raise ValidationError("metadata must be an object", field="metadata")

    parent = None
    if parent_id is not None:
        parent = db.session.get(Location, parent_id)
        if parent is None:
            raise NotFoundError("Parent location not found", field="parent_id")

    path, level = build_path(parent, clean_name)
    _ensure_path_free(path)
    location = Location(
        name=clean_name,
        type=clean_type,
        parent_id=parent.id if parent is not None else None,
        path=path,
        level=level,
        meta=dict(metadata or {}),
        is_active=True,
    )
    db.session.add(location)
    db.session.flush()
    logger.info("Created location %s (%s)", location.path, location.type)
    return location


@transactional
def create_location(
    parent_id: int | None,
    name: Any,
    location_type: Any,
    metadata: Mapping[str, Any] | None = None,
) -> Location:
    return add_location(parent_id, name, location_type, metadata)


def _descendants(location: Location) -> list[Location]:
    prefix = f"{location.path}/"
    return (
        Location.query.filter(Location.path.startswith(prefix, autoescape=True))
        .order_by(Location.level.asc())
        .all()
    )


@transactional
def update_location(location_id: int, payload: Mapping[str, Any]) -> Location:
    location = get_location(location_id)

    if "type" in payload:
        location.type = _clean_type(payload["type"])
    if "metadata" in payload:
        metadata = payload["metadata"]
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError("metadata must be an object", field="metadata")
        location.meta = dict(metadata or {})
    if "is_active" in payload:
        is_active = require_flag(payload, "is_active")
        if location.is_active and not is_active:
            _ensure_removable(location)
        elif is_active and not location.is_active:
            _ensure_restorable(location)
        location.is_active = is_active

    if "name" in payload:
        new_name = _clean_name(payload["name"])
        old_path = location.path
        descendants = _descendants(location)
        location.name = new_name
        path, level = build_path(location.parent, new_name)
        _ensure_path_free(path, exclude_id=location.id)
        location.path, location.level = path, level
        if location.path != old_path:
            for child in descendants:
                child.path = location.path + child.path[len(old_path):]
            logger.info(
                "Renamed location %s -> %s (%s descendants rewritten)",
                old_path,
                location.path,
                len(descendants),
            )

    return location


def _ensure_removable(location: Location) -> None:
    has_children = (
        db.session.query(Location.id)
        .filter(Location.parent_id == location.id, Location.is_active.is_(True))
        .first()
        is not None
    )
    if has_children:
        raise ConflictError("Cannot delete location with sub-locations", field="location")

    has_stock = (
        db.session.query(ItemLocation.id)
        .filter(ItemLocation.location_id == location.id, ItemLocation.quantity != 0)
        .first()
        is not None
    )
    if has_stock:
        raise ConflictError("Cannot delete location with items", field="location")


def _ensure_restorable(location: Location) -> None:
    parent = location.parent
    if parent is not None and not parent.is_active:
        raise ConflictError(
            "Cannot reactivate a location under an inactive parent", field="parent_id"
        )
    _ensure_path_free(location.path, exclude_id=location.id)


@transactional
def deactivate_location(location_id: int) -> Location:
    location = get_location(location_id)
    _ensure_removable(location)
    location.is_active = False
    logger.info("Deactivated location %s", location.path)
    return location


def location_stock_lines(location_id: int) -> list[dict[str, object]]:
    rows = (
        db.session.query(
            ItemLocation.item_id,
            Item.sku,
            Item.name,
            Item.unit,
            ItemLocation.quantity,
            ItemLocation.min_threshold,
            ItemLocation.max_threshold,
        )
        .join(Item, Item.id == ItemLocation.item_id)
        .filter(ItemLocation.location_id == location_id)
        .order_by(Item.sku)
        .all()
    )

    lines = []
    for item_id, sku, name, unit, quantity, min_threshold, max_threshold in rows:
        on_hand = float(quantity or 0)
        if min_threshold is not None and on_hand <= float(min_threshold):
            stock_status = "low"
        elif max_threshold is not None and float(max_threshold) > 0 and on_hand > float(max_threshold):
            stock_status = "over"
        else:
            stock_status = "ok"
        lines.append(
            {
                "item_id": item_id,
                "sku": sku,
                "name": name,
                "unit": unit or "",
                "quantity": on_hand,
                "stock_status": stock_status,
            }
        )
    return lines


def location_totals() -> dict[int, float]:
    rows = (
        db.session.query(
            ItemLocation.location_id,
            func.coalesce(func.sum(ItemLocation.quantity), 0),
        )
        .group_by(ItemLocation.location_id)
        .all()
    )
    return {location_id: float(total or 0) for location_id, total in rows}
