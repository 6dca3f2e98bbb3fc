from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from stockapp.auth import current_role
from stockapp.errors import ValidationError
from stockapp.models import UserRole
from stockapp.security import require_login, require_roles
from stockapp.services import item_import, items
from stockapp.utils.tabular_import import parse_tabular_upload

bp = Blueprint("items", __name__, url_prefix="/api/items")

require_catalog_editor = require_roles(UserRole.ADMIN, UserRole.MANAGER)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return payload


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


@bp.get("/")
@require_login
def list_items():
    rows = items.list_items(include_inactive=_flag("includeInactive"))
    return jsonify({"items": [item.to_dict() for item in rows]})


@bp.get("/categories")
@require_login
def list_categories():
    return jsonify({"categories": items.list_categories()})


@bp.post("/")
@require_catalog_editor
def create_item():
    item = items.create_item(_json_body(), current_user, current_role())
    return jsonify({"success": True, "item": item.to_dict(), "message": "Item created"}), 201


@bp.get("/<int:item_id>")
@require_login
def get_item(item_id: int):
    return jsonify({"item": items.get_item(item_id).to_dict()})


@bp.patch("/<int:item_id>")
@require_catalog_editor
def update_item(item_id: int):
    item = items.update_item(item_id, _json_body(), current_user, current_role())
    return jsonify({"success": True, "item": item.to_dict(), "message": "Item updated"})


@bp.delete("/<int:item_id>")
@require_catalog_editor
def delete_item(item_id: int):
    item = items.deactivate_item(item_id)
    return jsonify({"success": True, "item": item.to_dict(), "message": "Item deactivated"})


@bp.post("/import")
@require_catalog_editor
def import_items():
    """Import items from an uploaded CSV/TSV file or a raw CSV body.

    ``?preview=1`` validates and returns the first rows without writing.
    """

    if "file" in request.files:
        csv_text = parse_tabular_upload(request.files["file"])
    else:
        csv_text = request.get_data(as_text=True)
        if not csv_text.strip():
            raise ValidationError("No file uploaded.", field="file")

    report = item_import.import_items(csv_text, current_user, preview=_flag("preview"))
    return jsonify({"success": True, **report.to_dict()})
