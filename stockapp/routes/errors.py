from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from stockapp.errors import InventoryError
from stockapp.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(InventoryError)
def handle_inventory_error(error: InventoryError):
    db.session.rollback()
    if error.status_code >= 500:
        current_app.logger.exception(
            "%s failed on %s %s", request.endpoint, request.method, request.path, exc_info=error
        )
    else:
        current_app.logger.info(
            "%s rejected (%s): %s", request.endpoint, error.kind, error.message
        )
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(HTTPException)
def handle_http_exception(error: HTTPException):
    return (
        jsonify(
            {
                "error": error.description or error.name,
                "kind": error.name.lower().replace(" ", "_"),
                "field": None,
            }
        ),
        error.code or 500,
    )


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)
    return (
        jsonify({"error": "Internal Server Error", "kind": "internal", "field": None}),
        500,
    )
