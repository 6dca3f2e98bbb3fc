from __future__ import annotations

import logging
import secrets
from datetime import datetime

from stockapp.errors import ConflictError
from stockapp.extensions import db
from stockapp.models import MovementStatus, MovementType, StockMovement, User
from stockapp.services import approval_policy, stock_ledger
from stockapp.services.movement_state import (
    ensure_applicable,
    stamp_auto_approval,
    transition,
)
from stockapp.services.movement_validator import ValidatedMovement

logger = logging.getLogger(__name__)


def generate_transfer_reference() -> str:
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
    return f"TRF-{stamp}-{secrets.token_hex(3).upper()}"


def create_transfer_pair(
    validated: ValidatedMovement, user: User
) -> tuple[list[StockMovement], str]:
    """Persist the transfer_out/transfer_in rows for one relocation.

    Both rows get the status decided once for the ``transfer_out``. The pair
    is written inside a savepoint so a failed second insert leaves no
    single-sided transfer behind.
    """

    request = validated.request
    source = validated.location
    destination = validated.destination

    source_on_hand = stock_ledger.get_quantity(validated.item.id, source.id)
    destination_on_hand = stock_ledger.get_quantity(validated.item.id, destination.id)
    status = approval_policy.decide(
        request.role, MovementType.TRANSFER_OUT, request.quantity, source_on_hand
    )
    reference = generate_transfer_reference()

    with db.session.begin_nested():
        transfer_out = validated.build(
            movement_type=MovementType.TRANSFER_OUT,
            location=source,
            status=status,
            before_quantity=source_on_hand,
            user=user,
            transfer_reference=reference,
            idempotency_key=request.idempotency_key,
        )
        db.session.add(transfer_out)
        db.session.flush()

        transfer_in = validated.build(
            movement_type=MovementType.TRANSFER_IN,
            location=destination,
            status=status,
            before_quantity=destination_on_hand,
            user=user,
            reason=f"Transfer from {source.name}",
            transfer_reference=reference,
        )
        db.session.add(transfer_in)
        db.session.flush()

    if status == MovementStatus.APPROVED:
        stamp_auto_approval([transfer_out, transfer_in], user)
        stock_ledger.apply_movement(transfer_out)
        stock_ledger.apply_movement(transfer_in)

    logger.info(
        "Transfer %s of %s x %s from %s to %s recorded as %s",
        reference,
        request.quantity,
        validated.item.sku,
        source.path,
        destination.path,
        status,
    )
    return [transfer_out, transfer_in], reference


def load_transfer_pair(reference: str) -> tuple[StockMovement, StockMovement]:
    """Return ``(transfer_out, transfer_in)`` after checking the pair is consistent."""

    rows = (
        StockMovement.query.filter(StockMovement.transfer_reference == reference)
        .order_by(StockMovement.id)
        .all()
    )
    outgoing = [row for row in rows if row.movement_type == MovementType.TRANSFER_OUT]
    incoming = [row for row in rows if row.movement_type == MovementType.TRANSFER_IN]
    if len(rows) != 2 or len(outgoing) != 1 or len(incoming) != 1:
        raise ConflictError(
            f"Transfer {reference} does not have exactly one outgoing and one incoming movement",
            field="transfer_reference",
        )

    transfer_out, transfer_in = outgoing[0], incoming[0]
    if (
        transfer_out.item_id != transfer_in.item_id
        or transfer_out.quantity != transfer_in.quantity
    ):
        raise ConflictError(
            f"Transfer {reference} halves disagree on item or quantity",
            field="transfer_reference",
        )
    return transfer_out, transfer_in


def resolve_transfer_pair(
    reference: str, decision: str, user: User
) -> tuple[StockMovement, StockMovement]:
    transfer_out, transfer_in = load_transfer_pair(reference)

    if decision == MovementStatus.APPROVED:
        ensure_applicable(transfer_out)
        ensure_applicable(transfer_in)

    transition([transfer_out, transfer_in], decision, user)

    if decision == MovementStatus.APPROVED:
        stock_ledger.apply_movement(transfer_out)
        stock_ledger.apply_movement(transfer_in)

    return transfer_out, transfer_in
