"""Role-based auto-approval rules for stock movements.

A pure function of the requester's role, the movement type, the requested
quantity and the quantity currently on hand at the movement's location.
"""

from __future__ import annotations

from decimal import Decimal

from stockapp.models import MovementStatus, MovementType, UserRole

# Adjustments changing stock by more than this percentage need review,
# even when requested by an approver.
ADJUSTMENT_APPROVAL_THRESHOLD = Decimal("20")


def adjustment_change_percent(quantity, current_quantity) -> Decimal | None:
    """Return ``|quantity / current_quantity| * 100``, or ``None`` for a zero baseline."""

    current = Decimal(current_quantity or 0)
    if current == 0:
        return None
    return abs(Decimal(quantity) / current) * 100


def decide(role: str, movement_type: str, quantity, current_quantity) -> str:
    if role not in UserRole.APPROVER_ROLES:
        return MovementStatus.PENDING

    if movement_type not in MovementType.ADJUSTMENT_TYPES:
        return MovementStatus.APPROVED

    percent = adjustment_change_percent(quantity, current_quantity)
    if percent is None or percent > ADJUSTMENT_APPROVAL_THRESHOLD:
        return MovementStatus.PENDING
    return MovementStatus.APPROVED
