"""Stock movement lifecycle: submission, approval queue and history.

Every change to on-hand stock goes through this module. A movement is
created ``pending`` or ``approved`` according to the approval policy;
pending movements are resolved exactly once with :func:`resolve_movement`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from stockapp.errors import ConflictError, NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, MovementStatus, MovementType, StockMovement, User
from stockapp.services import approval_policy, stock_ledger
from stockapp.services.movement_state import (
    ensure_applicable,
    stamp_auto_approval,
    transition,
)
from stockapp.services.movement_validator import MovementRequest, validate_movement
from stockapp.services.stock_transfer import (
    create_transfer_pair,
    load_transfer_pair,
    resolve_transfer_pair,
)
from stockapp.services.transactions import transactional

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    movements: list[StockMovement]
    transfer_reference: str | None = None
    replayed: bool = False

    @property
    def movement(self) -> StockMovement:
        return self.movements[0]

    @property
    def status(self) -> str:
        return self.movement.status

    @property
    def is_transfer(self) -> bool:
        return self.transfer_reference is not None


@dataclass
class MovementFilters:
    item_id: int | None = None
    location_id: int | None = None
    movement_type: str | None = None
    status: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


def record_movement(request: MovementRequest, user: User) -> SubmissionResult:
    """Validate, classify and persist a movement inside the current transaction."""

    validated = validate_movement(request)

    if request.is_transfer:
        movements, reference = create_transfer_pair(validated, user)
        return SubmissionResult(movements=movements, transfer_reference=reference)

    on_hand = stock_ledger.get_quantity(validated.item.id, validated.location.id)
    status = approval_policy.decide(
        request.role, request.movement_type, request.quantity, on_hand
    )
    movement = validated.build(
        movement_type=request.movement_type,
        location=validated.location,
        status=status,
        before_quantity=on_hand,
        user=user,
        idempotency_key=request.idempotency_key,
    )
    db.session.add(movement)
    db.session.flush()

    if status == MovementStatus.APPROVED:
        stamp_auto_approval([movement], user)
        stock_ledger.apply_movement(movement)

    logger.info(
        "Movement %s (%s %s x %s at %s) recorded as %s by %s",
        movement.id,
        movement.movement_type,
        movement.quantity,
        validated.item.sku,
        validated.location.path,
        status,
        user.username,
    )
    return SubmissionResult(movements=[movement])


def _replay(existing: StockMovement) -> SubmissionResult:
    if existing.transfer_reference:
        transfer_out, transfer_in = load_transfer_pair(existing.transfer_reference)
        return SubmissionResult(
            movements=[transfer_out, transfer_in],
            transfer_reference=existing.transfer_reference,
            replayed=True,
        )
    return SubmissionResult(movements=[existing], replayed=True)


@transactional
def submit_movement(request: MovementRequest, user: User) -> SubmissionResult:
    if request.idempotency_key:
        existing = StockMovement.query.filter_by(
            idempotency_key=request.idempotency_key
        ).first()
        if existing is not None:
            logger.info(
                "Replaying movement %s for idempotency key %s",
                existing.id,
                request.idempotency_key,
            )
            return _replay(existing)
    return record_movement(request, user)


def get_active_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None or not movement.is_active:
        raise NotFoundError("Movement not found", field="movement")
    return movement


@transactional
def resolve_movement(movement_id: int, decision: str | None, user: User) -> StockMovement:
    """Approve or reject a pending movement (and its transfer partner)."""

    if decision not in MovementStatus.RESOLUTIONS:
        raise ValidationError(
            'Invalid status. Must be "approved" or "rejected"', field="status"
        )

    movement = get_active_movement(movement_id)
    if movement.status != MovementStatus.PENDING:
        logger.warning(
            "Refused to resolve movement %s: already %s", movement.id, movement.status
        )
        raise ConflictError(f"Movement is already {movement.status}", field="status")

    if movement.transfer_reference:
        resolve_transfer_pair(movement.transfer_reference, decision, user)
    else:
        if decision == MovementStatus.APPROVED:
            ensure_applicable(movement)
        transition([movement], decision, user)
        if decision == MovementStatus.APPROVED:
            stock_ledger.apply_movement(movement)

    logger.info("Movement %s %s by %s", movement.id, decision, user.username)
    return movement


@transactional
def attach_file(movement_id: int, attachment_url: str | None) -> StockMovement:
    """Attach a supporting document reference; allowed in any status."""

    url = (attachment_url or "").strip()
    if not url:
        raise ValidationError("attachment_url is required", field="attachment_url")
    movement = get_active_movement(movement_id)
    movement.attachment_url = url
    return movement


def list_movements(
    filters: MovementFilters, *, limit: int, offset: int
) -> tuple[list[StockMovement], int]:
    query = StockMovement.query.filter(StockMovement.is_active.is_(True))
    if filters.item_id is not None:
        query = query.filter(StockMovement.item_id == filters.item_id)
    if filters.location_id is not None:
        query = query.filter(StockMovement.location_id == filters.location_id)
    if filters.movement_type:
        if filters.movement_type not in MovementType.TAXONOMY:
            raise ValidationError("Unknown movement type", field="movement_type")
        query = query.filter(StockMovement.movement_type == filters.movement_type)
    if filters.status:
        if filters.status not in MovementStatus.ALL_STATUSES:
            raise ValidationError("Unknown movement status", field="status")
        query = query.filter(StockMovement.status == filters.status)
    if filters.from_date is not None:
        query = query.filter(StockMovement.created_at >= filters.from_date)
    if filters.to_date is not None:
        query = query.filter(StockMovement.created_at <= filters.to_date)

    total = query.count()
    rows = (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def movements_for_item(
    item_id: int, *, limit: int, offset: int
) -> tuple[Item, list[StockMovement], int]:
    item = db.session.get(Item, item_id)
    if item is None or not item.is_active:
        raise NotFoundError("Item not found", field="item")
    rows, total = list_movements(MovementFilters(item_id=item_id), limit=limit, offset=offset)
    return item, rows, total


def pending_movements() -> list[StockMovement]:
    """The review queue, oldest first."""

    return (
        StockMovement.query.filter(
            StockMovement.status == MovementStatus.PENDING,
            StockMovement.is_active.is_(True),
        )
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        .all()
    )


def parse_filters(args: Mapping[str, str]) -> MovementFilters:
    def _int_arg(name: str) -> int | None:
        raw = (args.get(name) or "").strip()
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", field=name) from None

    def _date_arg(name: str) -> datetime | None:
        raw = (args.get(name) or "").strip()
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO date", field=name) from None

    return MovementFilters(
        item_id=_int_arg("item_id"),
        location_id=_int_arg("location_id"),
        movement_type=(args.get("movement_type") or "").strip() or None,
        status=(args.get("status") or "").strip() or None,
        from_date=_date_arg("from_date"),
        to_date=_date_arg("to_date"),
    )
