from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from stockapp.extensions import db

bp = Blueprint("health", __name__, url_prefix="/health")


@bp.get("")
def health():
    checked_at = datetime.utcnow().isoformat()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Health check could not reach the database: %s", exc)
        return (
            jsonify({"status": "DOWN", "database": "unreachable", "checked_at": checked_at}),
            503,
        )
    return jsonify({"status": "UP", "database": "ok", "checked_at": checked_at})
