"""Bulk item import from CSV text.

Rows are validated up front; an import with any row error writes nothing.
Items are created through :mod:`stockapp.services.items`, so opening
quantities are recorded as ``receive`` movements.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from stockapp.errors import ValidationError
from stockapp.extensions import db
from stockapp.models import Item, Location, LocationType, User
from stockapp.services.items import add_item
from stockapp.services.locations import add_location, build_path, find_by_path
from stockapp.services.transactions import transactional
from stockapp.utils.payload import QUANTITY_COLUMN, coerce_decimal, fits_column

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = (
    "SKU",
    "Name",
    "Description",
    "Category",
    "Unit",
    "Barcode",
    "Location",
    "Quantity",
    "MinThreshold",
    "MaxThreshold",
)
PREVIEW_ROWS = 5


@dataclass
class ImportRowError:
    row: int
    field: str
    message: str
    value: str | None = None

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "field": self.field,
            "message": self.message,
            "value": self.value,
        }


@dataclass
class ImportReport:
    total_rows: int
    errors: list[ImportRowError] = field(default_factory=list)
    preview: list[dict[str, str]] = field(default_factory=list)
    created_items: list[str] = field(default_factory=list)
    skipped_skus: list[str] = field(default_factory=list)
    created_locations: list[str] = field(default_factory=list)

    @property
    def valid_rows(self) -> int:
        bad_rows = {error.row for error in self.errors}
        return self.total_rows - len(bad_rows)

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "errors": [error.to_dict() for error in self.errors],
            "preview": self.preview,
            "created_items": self.created_items,
            "skipped_skus": self.skipped_skus,
            "created_locations": self.created_locations,
        }


def read_rows(csv_text: str) -> list[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(csv_text or ""))
    headers = [header.strip() for header in (reader.fieldnames or [])]
    missing = [header for header in REQUIRED_HEADERS if header not in headers]
    if missing:
        raise ValidationError(
            "Missing required columns: " + ", ".join(missing), field="file"
        )

    rows = []
    for raw in reader:
        row = {
            (key or "").strip(): (value or "").strip()
            for key, value in raw.items()
            if isinstance(value, str)
        }
        if any(row.values()):
            rows.append(row)
    return rows


def _check_number(
    errors: list[ImportRowError], row_number: int, row: dict[str, str], column: str
) -> Decimal | None:
    raw = row.get(column, "")
    if not raw:
        return None
    value = coerce_decimal(raw)
    if value is None or value < 0:
        errors.append(
            ImportRowError(row_number, column, f"{column} must be a non-negative number", raw)
        )
        return None
    if not fits_column(value, QUANTITY_COLUMN):
        errors.append(
            ImportRowError(
                row_number,
                column,
                f"{column} must have at most 3 decimal places and 11 whole digits",
                raw,
            )
        )
        return None
    return value


def validate_rows(rows: list[dict[str, str]]) -> list[ImportRowError]:
    errors: list[ImportRowError] = []
    seen_pairs: set[tuple[str, str]] = set()

    # Row 1 is the header line.
    for row_number, row in enumerate(rows, start=2):
        for column in ("SKU", "Name", "Unit", "Location"):
            if not row.get(column):
                errors.append(ImportRowError(row_number, column, f"{column} is required"))

        location = row.get("Location", "")
        if location and not location.startswith("/"):
            errors.append(
                ImportRowError(
                    row_number, "Location", "Location path must start with '/'", location
                )
            )

        for column in ("Quantity", "MinThreshold", "MaxThreshold"):
            _check_number(errors, row_number, row, column)

        pair = (row.get("SKU", ""), location.rstrip("/").lower())
        if all(pair):
            if pair in seen_pairs:
                errors.append(
                    ImportRowError(
                        row_number, "Location", "Location listed twice for this SKU", location
                    )
                )
            seen_pairs.add(pair)
    return errors


def _ensure_location_path(raw_path: str, created: list[str]) -> Location:
    """Resolve ``/Warehouse/Zone A`` style paths, creating missing levels."""

    parent: Location | None = None
    for segment in [part.strip() for part in raw_path.split("/") if part.strip()]:
        path, _ = build_path(parent, segment)
        location = find_by_path(path)
        if location is None:
            location_type = LocationType.WAREHOUSE if parent is None else LocationType.ZONE
            location = add_location(
                parent.id if parent is not None else None, segment, location_type
            )
            created.append(location.path)
        parent = location
    if parent is None:
        raise ValidationError(f"Invalid location path {raw_path!r}", field="Location")
    return parent


def _group_by_sku(rows: list[dict[str, str]]) -> dict[str, list[dict[str, str]]]:
    grouped: dict[str, list[dict[str, str]]] = {}
    for row in rows:
        grouped.setdefault(row["SKU"], []).append(row)
    return grouped


def preview_items(csv_text: str) -> ImportReport:
    rows = read_rows(csv_text)
    return ImportReport(
        total_rows=len(rows),
        errors=validate_rows(rows),
        preview=rows[:PREVIEW_ROWS],
    )


@transactional
def import_items(csv_text: str, user: User, *, preview: bool = False) -> ImportReport:
    if preview:
        return preview_items(csv_text)

    rows = read_rows(csv_text)
    report = ImportReport(total_rows=len(rows), errors=validate_rows(rows))
    if report.errors:
        raise ValidationError(
            f"Import has {len(report.errors)} invalid rows; fix them and retry",
            field="file",
        )

    for sku, sku_rows in _group_by_sku(rows).items():
        if db.session.query(Item.id).filter(Item.sku == sku).first() is not None:
            report.skipped_skus.append(sku)
            continue

        allocations = []
        for row in sku_rows:
            location = _ensure_location_path(row["Location"], report.created_locations)
            allocations.append(
                {
                    "location_id": location.id,
                    "quantity": coerce_decimal(row.get("Quantity")) or 0,
                    "min_threshold": row.get("MinThreshold") or None,
                    "max_threshold": row.get("MaxThreshold") or None,
                }
            )

        first = sku_rows[0]
        add_item(
            {
                "sku": sku,
                "name": first["Name"],
                "description": first.get("Description"),
                "category": first.get("Category"),
                "unit": first["Unit"],
                "barcode": first.get("Barcode"),
                "stock_allocations": allocations,
            },
            user,
        )
        report.created_items.append(sku)

    logger.info(
        "Imported %s items (%s skipped, %s locations created) for %s",
        len(report.created_items),
        len(report.skipped_skus),
        len(report.created_locations),
        user.username,
    )
    return report
