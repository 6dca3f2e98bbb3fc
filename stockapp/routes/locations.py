from __future__ import annotations

from flask import Blueprint, jsonify, request

from stockapp.errors import ValidationError
from stockapp.models import UserRole
from stockapp.security import require_login, require_roles
from stockapp.services import locations

bp = Blueprint("locations", __name__, url_prefix="/api/locations")

require_location_editor = require_roles(UserRole.ADMIN, UserRole.MANAGER)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return payload


@bp.get("/")
@require_login
def list_locations():
    include_inactive = (request.args.get("includeInactive") or "true").lower() != "false"
    totals = locations.location_totals()
    rows = []
    for location in locations.list_locations(include_inactive=include_inactive):
        payload = location.to_dict()
        payload["total_quantity"] = totals.get(location.id, 0.0)
        rows.append(payload)
    return jsonify({"locations": rows})


@bp.post("/")
@require_location_editor
def create_location():
    payload = _json_body()
    parent_id = payload.get("parent_id")
    if parent_id is not None and (isinstance(parent_id, bool) or not isinstance(parent_id, int)):
        raise ValidationError("parent_id must be an integer", field="parent_id")
    location = locations.create_location(
        parent_id, payload.get("name"), payload.get("type"), payload.get("metadata")
    )
    return (
        jsonify({"success": True, "location": location.to_dict(), "message": "Location created"}),
        201,
    )


@bp.get("/<int:location_id>")
@require_login
def get_location(location_id: int):
    location = locations.get_location(location_id)
    payload = location.to_dict()
    payload["stock"] = locations.location_stock_lines(location.id)
    return jsonify({"location": payload})


@bp.patch("/<int:location_id>")
@require_location_editor
def update_location(location_id: int):
    location = locations.update_location(location_id, _json_body())
    return jsonify(
        {"success": True, "location": location.to_dict(), "message": "Location updated"}
    )


@bp.delete("/<int:location_id>")
@require_location_editor
def delete_location(location_id: int):
    location = locations.deactivate_location(location_id)
    return jsonify(
        {"success": True, "location": location.to_dict(), "message": "Location deactivated"}
    )
