from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from stockapp.auth import current_role
from stockapp.errors import ValidationError
from stockapp.models import MovementStatus
from stockapp.security import require_approver, require_login
from stockapp.services import stock_movements
from stockapp.services.movement_validator import MovementRequest

bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return payload


def _page_args() -> tuple[int, int]:
    default_limit = current_app.config.get("MOVEMENT_PAGE_LIMIT", 50)
    max_limit = current_app.config.get("MAX_PAGE_LIMIT", 200)
    try:
        limit = int(request.args.get("limit", default_limit))
        offset = int(request.args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers", field="limit") from None
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative", field="limit")
    return min(limit, max_limit), offset


def _submission_message(result: stock_movements.SubmissionResult) -> str:
    noun = "Transfer" if result.is_transfer else "Stock movement"
    if result.status == MovementStatus.APPROVED:
        return f"{noun} recorded and applied"
    return f"{noun} submitted for approval"


@bp.post("/")
@require_login
def create_movement():
    movement_request = MovementRequest.from_payload(_json_body(), role=current_role())
    result = stock_movements.submit_movement(movement_request, current_user)

    body = {"success": True, "message": _submission_message(result)}
    if result.is_transfer:
        body["movements"] = [movement.to_dict() for movement in result.movements]
        body["transfer_reference"] = result.transfer_reference
    else:
        body["movement"] = result.movement.to_dict()
    return jsonify(body), 200 if result.replayed else 201


@bp.patch("/<int:movement_id>")
@require_login
def update_movement(movement_id: int):
    payload = _json_body()
    if "status" in payload:
        return _resolve(movement_id, payload.get("status"))
    if "attachment_url" in payload:
        movement = stock_movements.attach_file(movement_id, payload.get("attachment_url"))
        return jsonify(
            {"success": True, "movement": movement.to_dict(), "message": "Attachment saved"}
        )
    raise ValidationError("Provide a status or an attachment_url", field="status")


@require_approver
def _resolve(movement_id: int, decision):
    movement = stock_movements.resolve_movement(movement_id, decision, current_user)
    return jsonify(
        {
            "success": True,
            "movement": movement.to_dict(),
            "message": f"Stock movement {movement.status}",
        }
    )


@bp.get("/item/<int:item_id>")
@require_login
def item_history(item_id: int):
    limit, offset = _page_args()
    item, movements, total = stock_movements.movements_for_item(
        item_id, limit=limit, offset=offset
    )
    return jsonify(
        {
            "item": item.summary(),
            "movements": [movement.to_dict() for movement in movements],
            "total": total,
        }
    )


@bp.get("/pending")
@require_approver
def pending():
    movements = stock_movements.pending_movements()
    return jsonify({"movements": [movement.to_dict() for movement in movements]})


@bp.get("/")
@require_login
def list_movements():
    limit, offset = _page_args()
    filters = stock_movements.parse_filters(request.args)
    movements, total = stock_movements.list_movements(filters, limit=limit, offset=offset)
    return jsonify(
        {"movements": [movement.to_dict() for movement in movements], "count": total}
    )
