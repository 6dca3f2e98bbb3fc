"""Authoritative on-hand quantity per (item, location).

Only the movement pipeline calls :func:`apply_delta`; it runs inside the
caller's transaction.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from stockapp.extensions import db
from stockapp.models import ItemLocation, StockMovement


def get_quantity(item_id: int, location_id: int) -> Decimal:
    quantity = (
        db.session.query(ItemLocation.quantity)
        .filter(
            ItemLocation.item_id == item_id,
            ItemLocation.location_id == location_id,
        )
        .scalar()
    )
    return Decimal(quantity or 0)


def _increment(item_id: int, location_id: int, delta: Decimal) -> bool:
    # Single-statement read-add-write; the row lock serializes concurrent callers.
    result = db.session.execute(
        update(ItemLocation)
        .where(
            ItemLocation.item_id == item_id,
            ItemLocation.location_id == location_id,
        )
        .values(quantity=ItemLocation.quantity + delta, updated_at=datetime.utcnow())
    )
    return result.rowcount > 0


def apply_delta(item_id: int, location_id: int, signed_delta) -> Decimal:
    """Add ``signed_delta`` to the stored quantity and return the new value.

    Negative results are allowed; overselling is a policy decision made
    before a movement is approved.
    """

    delta = Decimal(signed_delta)
    if not _increment(item_id, location_id, delta):
        try:
            with db.session.begin_nested():
                db.session.add(
                    ItemLocation(item_id=item_id, location_id=location_id, quantity=delta)
                )
        except IntegrityError:
            # A concurrent transaction created the row first.
            if not _increment(item_id, location_id, delta):
                raise
    return get_quantity(item_id, location_id)


def apply_movement(movement: StockMovement) -> Decimal:
    """Apply an approved movement and record the authoritative before/after."""

    delta = movement.signed_quantity
    after = apply_delta(movement.item_id, movement.location_id, delta)
    movement.before_quantity = after - delta
    movement.after_quantity = after
    return after
