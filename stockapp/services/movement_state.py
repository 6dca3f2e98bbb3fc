"""Status transitions shared by single movements and transfer pairs."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import update

from stockapp.errors import ConflictError
from stockapp.extensions import db
from stockapp.models import MovementStatus, StockMovement, User


def ensure_applicable(movement: StockMovement) -> None:
    """Refuse to approve a movement whose item or location was deactivated."""

    if movement.item is None or not movement.item.is_active:
        raise ConflictError(
            f"Item for movement {movement.id} is no longer active", field="item"
        )
    if movement.location is None or not movement.location.is_active:
        raise ConflictError(
            f"Location for movement {movement.id} is no longer active", field="location"
        )


def transition(movements: Sequence[StockMovement], decision: str, user: User) -> None:
    """Move every movement from pending to ``decision`` or none of them.

    The pending check and the status write are one conditional UPDATE, so a
    concurrent resolver either wins the row or sees zero rows changed.
    """

    ids = [movement.id for movement in movements]
    result = db.session.execute(
        update(StockMovement)
        .where(
            StockMovement.id.in_(ids),
            StockMovement.status == MovementStatus.PENDING,
            StockMovement.is_active.is_(True),
        )
        .values(status=decision, approved_by=user.id, approved_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != len(ids):
        raise ConflictError(
            "Movement was already resolved by another request", field="status"
        )


def stamp_auto_approval(movements: Sequence[StockMovement], user: User) -> None:
    """Record the submitter as approver on movements approved at creation."""

    approved_at = datetime.utcnow()
    for movement in movements:
        movement.approved_by = user.id
        movement.approved_at = approved_at
