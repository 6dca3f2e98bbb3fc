from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from stockapp.errors import NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, Location, MovementType, StockMovement, User, UserRole
from stockapp.utils.payload import (
    QUANTITY_COLUMN,
    TOTAL_VALUE_COLUMN,
    UNIT_COST_COLUMN,
    coerce_decimal,
    coerce_int,
    fits_column,
)


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class MovementRequest:
    item_id: int | None
    location_id: int | None
    movement_type: str | None
    quantity: Decimal | None
    reason: str | None
    role: str = UserRole.STAFF
    to_location_id: int | None = None
    unit_cost: Decimal | None = None
    batch_number: str | None = None
    serial_number: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    attachment_url: str | None = None
    idempotency_key: str | None = None
    # Raw unit_cost was supplied but is not a number.
    invalid_unit_cost: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, role: str) -> "MovementRequest":
        raw_unit_cost = payload.get("unit_cost")
        unit_cost = coerce_decimal(raw_unit_cost)
        raw_type = payload.get("movement_type")
        return cls(
            item_id=coerce_int(payload.get("item_id")),
            location_id=coerce_int(payload.get("location_id")),
            movement_type=raw_type.strip() if isinstance(raw_type, str) else None,
            quantity=coerce_decimal(payload.get("quantity")),
            reason=payload.get("reason") if isinstance(payload.get("reason"), str) else None,
            role=role,
            to_location_id=coerce_int(payload.get("to_location_id")),
            unit_cost=unit_cost,
            batch_number=_clean_text(payload.get("batch_number")),
            serial_number=_clean_text(payload.get("serial_number")),
            reference_number=_clean_text(payload.get("reference_number")),
            notes=_clean_text(payload.get("notes")),
            attachment_url=_clean_text(payload.get("attachment_url")),
            idempotency_key=_clean_text(payload.get("idempotency_key")),
            invalid_unit_cost=(
                unit_cost is None and _clean_text(raw_unit_cost) is not None
            ),
        )

    @property
    def is_transfer(self) -> bool:
        return self.movement_type == MovementType.TRANSFER_OUT


@dataclass(frozen=True)
class ValidatedMovement:
    request: MovementRequest
    item: Item
    location: Location
    destination: Location | None = None

    @property
    def total_value(self) -> Decimal | None:
        if self.request.unit_cost is None:
            return None
        return (self.request.unit_cost * self.request.quantity).quantize(Decimal("0.01"))

    def build(
        self,
        *,
        movement_type: str,
        location: Location,
        status: str,
        before_quantity: Decimal,
        user: User,
        reason: str | None = None,
        transfer_reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> StockMovement:
        """Create an unsaved movement row carrying this request's metadata."""

        request = self.request
        quantity = request.quantity
        return StockMovement(
            item_id=self.item.id,
            location_id=location.id,
            movement_type=movement_type,
            quantity=quantity,
            before_quantity=before_quantity,
            # Informational until the movement is approved.
            after_quantity=before_quantity + MovementType.signed_quantity(movement_type, quantity),
            unit_cost=request.unit_cost,
            total_value=self.total_value,
            batch_number=request.batch_number,
            serial_number=request.serial_number,
            reference_number=request.reference_number,
            attachment_url=request.attachment_url,
            reason=reason or request.reason.strip(),
            notes=request.notes,
            status=status,
            transfer_reference=transfer_reference,
            idempotency_key=idempotency_key,
            created_by=user.id,
        )


def _active_location(location_id: int | None, label: str) -> Location:
    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None or not location.is_active:
        raise NotFoundError(f"{label} not found or inactive", field="location")
    return location


def validate_movement(request: MovementRequest) -> ValidatedMovement:
    """Check a movement request; the first failing rule raises.

    Nothing is written to the session, so a failure has no side effects.
    """

    item = db.session.get(Item, request.item_id) if request.item_id is not None else None
    if item is None or not item.is_active:
        raise NotFoundError("Item not found or inactive", field="item")

    location = _active_location(request.location_id, "Location")
    destination = None
    if request.is_transfer and request.to_location_id is not None:
        destination = _active_location(request.to_location_id, "Destination location")

    if request.quantity is None or request.quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", field="quantity")
    if not fits_column(request.quantity, QUANTITY_COLUMN):
        raise ValidationError(
            "Quantity must have at most 3 decimal places and 11 whole digits",
            field="quantity",
        )

    if not request.reason or not request.reason.strip():
        raise ValidationError("A reason is required", field="reason")

    if request.movement_type not in MovementType.TAXONOMY:
        raise ValidationError(
            "Movement type must be one of: " + ", ".join(MovementType.ALL_TYPES),
            field="movement_type",
        )

    if request.is_transfer:
        if destination is None:
            raise ValidationError(
                "A destination location is required for transfers", field="destination"
            )
        if destination.id == location.id:
            raise ValidationError(
                "Destination location must be different from source location",
                field="destination",
            )

    if request.invalid_unit_cost or (
        request.unit_cost is not None and request.unit_cost < 0
    ):
        raise ValidationError("Unit cost must be a non-negative number", field="unit_cost")
    if request.unit_cost is not None and not (
        fits_column(request.unit_cost, UNIT_COST_COLUMN)
        and fits_column(
            (request.unit_cost * request.quantity).quantize(Decimal("0.01")),
            TOTAL_VALUE_COLUMN,
        )
    ):
        raise ValidationError(
            "Unit cost must have at most 2 decimal places and a total value below "
            "1,000,000,000,000",
            field="unit_cost",
        )

    return ValidatedMovement(
        request=request, item=item, location=location, destination=destination
    )
