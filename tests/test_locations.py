import os
import sys
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockapp import create_app
from stockapp.errors import ConflictError, NotFoundError, ValidationError
from stockapp.extensions import db
from stockapp.models import Item, Location
from stockapp.services import locations, stock_ledger


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


def test_create_location_builds_path_and_level(app):
    warehouse = locations.create_location(None, "Main Warehouse", "warehouse")
    zone = locations.create_location(warehouse.id, "Zone A", "zone", {"temp": "ambient"})
    shelf = locations.create_location(zone.id, "Shelf 3", "Shelf")

    assert warehouse.path == "/main-warehouse"
    assert warehouse.level == 0
    assert zone.path == "/main-warehouse/zone-a"
    assert zone.meta == {"temp": "ambient"}
    assert shelf.path == "/main-warehouse/zone-a/shelf-3"
    assert shelf.level == 2
    assert shelf.type == "shelf"
    assert [row.path for row in locations.list_locations()] == [
        "/main-warehouse",
        "/main-warehouse/zone-a",
        "/main-warehouse/zone-a/shelf-3",
    ]


@pytest.mark.parametrize(
    "name,location_type",
    [("", "zone"), ("Zone", ""), ("Zone", "galaxy"), ("A/B", "zone")],
)
def test_create_location_validation(app, name, location_type):
    with pytest.raises(ValidationError):
        locations.create_location(None, name, location_type)


def test_missing_parent_and_duplicate_path(app):
    with pytest.raises(NotFoundError):
        locations.create_location(42, "Zone", "zone")

    locations.create_location(None, "Dock", "zone")
    with pytest.raises(ConflictError):
        locations.create_location(None, "dock", "zone")


def test_rename_rewrites_descendant_paths(app):
    warehouse = locations.create_location(None, "North", "warehouse")
    zone = locations.create_location(warehouse.id, "Zone A", "zone")
    shelf = locations.create_location(zone.id, "Shelf 1", "shelf")

    locations.update_location(warehouse.id, {"name": "North Annex"})

    assert db.session.get(Location, zone.id).path == "/north-annex/zone-a"
    assert db.session.get(Location, shelf.id).path == "/north-annex/zone-a/shelf-1"


def test_deactivation_guards(app):
    warehouse = locations.create_location(None, "East", "warehouse")
    zone = locations.create_location(warehouse.id, "Picking", "zone")
    item = Item(sku="CUP-1", name="Cup", unit="ea")
    db.session.add(item)
    db.session.commit()
    stock_ledger.apply_delta(item.id, zone.id, Decimal("3"))
    db.session.commit()

    with pytest.raises(ConflictError, match="sub-locations"):
        locations.deactivate_location(warehouse.id)
    with pytest.raises(ConflictError, match="items"):
        locations.deactivate_location(zone.id)
    with pytest.raises(ConflictError):
        locations.update_location(zone.id, {"is_active": False})

    stock_ledger.apply_delta(item.id, zone.id, Decimal("-3"))
    db.session.commit()
    locations.deactivate_location(zone.id)
    retired = locations.deactivate_location(warehouse.id)

    assert retired.is_active is False
    assert locations.list_locations(include_inactive=False) == []


def test_stock_lines_and_totals(app):
    bin_location = locations.create_location(None, "Bin 7", "bin")
    item = Item(sku="NUT-4", name="Nut", unit="ea")
    db.session.add(item)
    db.session.commit()
    stock_ledger.apply_delta(item.id, bin_location.id, Decimal("2"))
    db.session.commit()

    lines = locations.location_stock_lines(bin_location.id)

    assert lines == [
        {
            "item_id": item.id,
            "sku": "NUT-4",
            "name": "Nut",
            "unit": "ea",
            "quantity": 2.0,
            "stock_status": "ok",
        }
    ]
    assert locations.location_totals() == {bin_location.id: 2.0}


def test_reactivation_checks_parent_and_path(app):
    warehouse = locations.create_location(None, "West", "warehouse")
    zone = locations.create_location(warehouse.id, "Returns", "zone")
    dock = locations.create_location(None, "Dock", "zone")

    locations.deactivate_location(zone.id)
    locations.deactivate_location(warehouse.id)
    with pytest.raises(ConflictError, match="inactive parent"):
        locations.update_location(zone.id, {"is_active": True})

    locations.deactivate_location(dock.id)
    replacement = locations.create_location(None, "Dock", "zone")
    with pytest.raises(ConflictError):
        locations.update_location(dock.id, {"is_active": True})
    assert db.session.get(Location, dock.id).is_active is False

    locations.deactivate_location(replacement.id)
    restored = locations.update_location(dock.id, {"is_active": True})
    assert restored.is_active is True
    assert [row.path for row in locations.list_locations(include_inactive=False)] == ["/dock"]


def test_is_active_requires_a_boolean(app):
    dock = locations.create_location(None, "Dock", "zone")

    with pytest.raises(ValidationError) as excinfo:
        locations.update_location(dock.id, {"is_active": "false"})
    assert excinfo.value.field == "is_active"
    assert db.session.get(Location, dock.id).is_active is True
