import os
import sys
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockapp import create_app
from stockapp.errors import NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, Location, MovementType, UserRole
from stockapp.services.movement_validator import MovementRequest, validate_movement


@pytest.fixture
def app():
    app = create_app(
        {"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:", "LOG_DIR": ""}
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def refs(app):
    item = Item(sku="TAPE-2", name="Packing tape", unit="roll")
    dock = Location(name="Dock", type="zone", path="/dock", level=0, meta={})
    shelf = Location(name="Shelf", type="shelf", path="/shelf", level=0, meta={})
    retired = Location(name="Old", type="zone", path="/old", level=0, meta={}, is_active=False)
    db.session.add_all([item, dock, shelf, retired])
    db.session.commit()
    return {"item": item.id, "dock": dock.id, "shelf": shelf.id, "retired": retired.id}


def _payload(refs, **overrides):
    payload = {
        "item_id": refs["item"],
        "location_id": refs["dock"],
        "movement_type": "receive",
        "quantity": "12.5",
        "reason": "Supplier delivery",
    }
    payload.update(overrides)
    return payload


def _validate(payload):
    return validate_movement(MovementRequest.from_payload(payload, role=UserRole.STAFF))


def test_valid_request_computes_total_value(refs):
    validated = _validate(_payload(refs, unit_cost="2.00"))

    assert validated.item.id == refs["item"]
    assert validated.request.quantity == Decimal("12.5")
    assert validated.total_value == Decimal("25.000")


@pytest.mark.parametrize(
    "overrides,error,field",
    [
        ({"item_id": 999}, NotFoundError, "item"),
        ({"location_id": None}, NotFoundError, "location"),
        ({"quantity": 0}, ValidationError, "quantity"),
        ({"quantity": "-3"}, ValidationError, "quantity"),
        ({"quantity": "lots"}, ValidationError, "quantity"),
        ({"quantity": True}, ValidationError, "quantity"),
        ({"reason": "   "}, ValidationError, "reason"),
        ({"movement_type": "teleport"}, ValidationError, "movement_type"),
        ({"unit_cost": "-1"}, ValidationError, "unit_cost"),
        ({"unit_cost": "cheap"}, ValidationError, "unit_cost"),
        ({"quantity": "0.0004"}, ValidationError, "quantity"),
        ({"quantity": "100000000000"}, ValidationError, "quantity"),
        ({"unit_cost": "1.005"}, ValidationError, "unit_cost"),
        ({"unit_cost": "9999999999", "quantity": "1000"}, ValidationError, "unit_cost"),
    ],
)
def test_rejections(refs, overrides, error, field):
    with pytest.raises(error) as excinfo:
        _validate(_payload(refs, **overrides))
    assert excinfo.value.field == field


def test_inactive_location_is_not_found(refs):
    with pytest.raises(NotFoundError):
        _validate(_payload(refs, location_id=refs["retired"]))


def test_item_check_runs_before_quantity_check(refs):
    with pytest.raises(NotFoundError):
        _validate(_payload(refs, item_id=999, quantity=0))


def test_transfer_destination_rules(refs):
    transfer = _payload(refs, movement_type=MovementType.TRANSFER_OUT)

    with pytest.raises(ValidationError) as excinfo:
        _validate(transfer)
    assert excinfo.value.field == "destination"

    with pytest.raises(ValidationError):
        _validate(dict(transfer, to_location_id=refs["dock"]))

    with pytest.raises(NotFoundError):
        _validate(dict(transfer, to_location_id=refs["retired"]))

    validated = _validate(dict(transfer, to_location_id=refs["shelf"]))
    assert validated.destination.id == refs["shelf"]


def test_quantity_at_column_limits_is_accepted(refs):
    validated = _validate(_payload(refs, quantity="99999999999.999"))
    assert validated.request.quantity == Decimal("99999999999.999")

    validated = _validate(_payload(refs, quantity="0.0010", unit_cost="0.01"))
    assert validated.request.quantity == Decimal("0.001")
    assert validated.total_value == Decimal("0.00")
