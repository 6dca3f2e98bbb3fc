"""Utilities for reading tabular uploads (CSV/TSV)."""

from __future__ import annotations

import csv
import io
import os
from typing import Iterable

from werkzeug.datastructures import FileStorage

from stockapp.errors import ValidationError


def _rows_to_csv_text(rows: Iterable[Iterable[object]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return output.getvalue()


def _decode(file_storage: FileStorage, label: str) -> str:
    try:
        return file_storage.stream.read().decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError(f"{label} import files must be UTF-8 encoded.", field="file") from exc


def parse_tabular_upload(file_storage: FileStorage | None) -> str:
    """Return CSV text for a CSV or TSV upload."""

    if not file_storage or not file_storage.filename:
        raise ValidationError("No file uploaded.", field="file")

    _, ext = os.path.splitext(file_storage.filename)
    ext = ext.lower()

    if ext == ".csv":
        return _decode(file_storage, "CSV")

    if ext == ".tsv":
        reader = csv.reader(io.StringIO(_decode(file_storage, "TSV")), delimiter="\t")
        return _rows_to_csv_text(reader)

    raise ValidationError("Unsupported file type. Upload a CSV or TSV file.", field="file")
