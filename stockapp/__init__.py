import secrets
import uuid

from flask import Flask, current_app, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .extensions import db, login_manager
from .auth import load_user_from_request
from .routes import errors, health, items, locations, stock_movements
from .utils.logging import configure_logging
from config import Config
from . import models  # ensure models are registered with SQLAlchemy

REQUEST_ID_HEADER = "X-Request-ID"


def _ensure_core_roles() -> None:
    """Make sure the built-in roles exist for assignment."""

    existing_roles = {
        role.name: role
        for role in models.Role.query.filter(
            models.Role.name.in_(models.UserRole.ALL_ROLES)
        ).all()
    }

    created = False
    for role_name in models.UserRole.ALL_ROLES:
        description = models.UserRole.DESCRIPTIONS[role_name]
        if role_name in existing_roles:
            role = existing_roles[role_name]
            if role.description != description:
                role.description = description
            continue

        db.session.add(models.Role(name=role_name, description=description))
        created = True

    if created or db.session.dirty:
        db.session.commit()


def _ensure_superuser_account(
    admin_username: str, admin_password: str, api_token: str | None
) -> None:
    """Create or update the default administrative user."""

    if not admin_username:
        return

    for attempt in range(3):
        try:
            admin_role = models.Role.query.filter_by(name=models.UserRole.ADMIN).first()
            if admin_role is None:
                admin_role = models.Role(
                    name=models.UserRole.ADMIN,
                    description=models.UserRole.DESCRIPTIONS[models.UserRole.ADMIN],
                )
                db.session.add(admin_role)

            user = models.User.query.filter_by(username=admin_username).first()
            if user is None:
                user = models.User(username=admin_username, is_active=True)
                db.session.add(user)

            if admin_password:
                user.set_password(admin_password)
            elif not user.password_hash:
                user.set_password(secrets.token_urlsafe(32))
            if api_token:
                user.api_token = api_token

            user.role = admin_role
            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///:memory:"):
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_options.setdefault("poolclass", StaticPool)

    configure_logging(app)

    db.init_app(app)
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user(req):
        try:
            return load_user_from_request(req)
        except OperationalError:
            current_app.logger.warning(
                "Skipped API token lookup because the database is unavailable."
            )
            db.session.rollback()
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return (
            jsonify(
                {
                    "error": "Authentication required",
                    "kind": "unauthorized",
                    "field": None,
                }
            ),
            401,
        )

    database_available = True

    # create tables if they do not exist and seed the built-in accounts
    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            database_available = False
            details = str(getattr(exc, "orig", exc)).strip()
            app.logger.error(
                "Database connection unavailable during startup%s",
                f": {details}" if details else "",
            )
            db.session.remove()
        else:
            try:
                db.create_all()
                _ensure_core_roles()
                _ensure_superuser_account(
                    app.config.get("ADMIN_USER", ""),
                    app.config.get("ADMIN_PASSWORD", ""),
                    app.config.get("ADMIN_API_TOKEN") or None,
                )
            except SQLAlchemyError:
                database_available = False
                app.logger.exception("Database initialization error")
                db.session.remove()

    app.config["DATABASE_AVAILABLE"] = database_available

    @app.before_request
    def _assign_request_id():
        g.request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or uuid.uuid4().hex

    @app.after_request
    def _echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.register_blueprint(errors.bp)
    app.register_blueprint(health.bp)
    app.register_blueprint(items.bp)
    app.register_blueprint(locations.bp)
    app.register_blueprint(stock_movements.bp)

    return app
