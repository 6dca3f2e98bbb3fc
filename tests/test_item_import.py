import os
import sys
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockapp import create_app
from stockapp.errors import ValidationError
from stockapp.extensions import db
from stockapp.models import Item, Location, MovementType, Role, StockMovement, User, UserRole
from stockapp.services import stock_ledger
from stockapp.services.item_import import import_items

HEADER = "SKU,Name,Description,Category,Unit,Barcode,Location,Quantity,MinThreshold,MaxThreshold\n"


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
def admin(app):
    user = User(username="alice", role=Role.query.filter_by(name=UserRole.ADMIN).first())
    user.set_password("pw123")
    db.session.add(user)
    db.session.commit()
    return user


def test_import_creates_items_locations_and_opening_stock(admin):
    csv_text = HEADER + (
        "BOX-S,Small box,,Packaging,ea,123,/Main Warehouse/Zone A,10,2,50\n"
        "BOX-S,Small box,,Packaging,ea,123,/Main Warehouse/Zone B,5,,\n"
        "TAPE,Tape,Clear,Packaging,roll,,/Main Warehouse/Zone A,0,,\n"
    )

    report = import_items(csv_text, admin)

    assert report.created_items == ["BOX-S", "TAPE"]
    assert report.created_locations == [
        "/main-warehouse",
        "/main-warehouse/zone-a",
        "/main-warehouse/zone-b",
    ]
    warehouse = Location.query.filter_by(path="/main-warehouse").one()
    zone_a = Location.query.filter_by(path="/main-warehouse/zone-a").one()
    assert warehouse.type == "warehouse"
    assert zone_a.type == "zone"
    assert zone_a.parent_id == warehouse.id

    box = Item.query.filter_by(sku="BOX-S").one()
    assert stock_ledger.get_quantity(box.id, zone_a.id) == Decimal("10")
    assert box.total_stock() == Decimal("15")
    receives = StockMovement.query.filter_by(movement_type=MovementType.RECEIVE).count()
    assert receives == 2


def test_existing_skus_are_skipped(admin):
    db.session.add(Item(sku="TAPE", name="Tape", unit="roll"))
    db.session.commit()

    report = import_items(HEADER + "TAPE,Tape,,,roll,,/Dock,3,,\n", admin)

    assert report.skipped_skus == ["TAPE"]
    assert report.created_items == []
    assert StockMovement.query.count() == 0


def test_preview_reports_errors_without_writing(admin):
    csv_text = HEADER + (
        "A-1,Alpha,,,ea,,/Dock,1,,\n"
        ",Missing sku,,,ea,,Dock,abc,,\n"
    )

    report = import_items(csv_text, admin, preview=True)
    payload = report.to_dict()

    assert payload["total_rows"] == 2
    assert payload["valid_rows"] == 1
    assert {(error["row"], error["field"]) for error in payload["errors"]} == {
        (3, "SKU"),
        (3, "Location"),
        (3, "Quantity"),
    }
    assert payload["preview"][0]["SKU"] == "A-1"
    assert Item.query.count() == 0

    with pytest.raises(ValidationError):
        import_items(csv_text, admin)
    assert Item.query.count() == 0
    assert Location.query.count() == 0


def test_missing_columns_are_rejected(admin):
    with pytest.raises(ValidationError, match="MaxThreshold"):
        import_items("SKU,Name,Unit\nA,B,ea\n", admin)


def test_quantities_beyond_three_decimals_are_row_errors(admin):
    csv_text = HEADER + "A-1,Alpha,,,ea,,/Dock,0.0004,0.5,\n"

    report = import_items(csv_text, admin, preview=True)

    assert [(error.row, error.field) for error in report.errors] == [(2, "Quantity")]
    with pytest.raises(ValidationError):
        import_items(csv_text, admin)
    assert StockMovement.query.count() == 0
