"""Request authentication and role resolution for the JSON API."""

from __future__ import annotations

from flask import Request
from flask_login import current_user

from stockapp.models import User, UserRole

_ROLE_LOOKUP = {role.lower(): role for role in UserRole.ALL_ROLES}


def resolve_role(user) -> str:
    """Map a user's role record to a :class:`UserRole` constant.

    Unknown or missing roles fall back to the least privileged role.
    """

    role = getattr(user, "role", None)
    name = getattr(role, "name", None) if role is not None else None
    if not isinstance(name, str):
        return UserRole.STAFF
    return _ROLE_LOOKUP.get(name.strip().lower(), UserRole.STAFF)


def current_role() -> str:
    if not current_user.is_authenticated:
        return UserRole.STAFF
    return resolve_role(current_user)


def load_user_from_request(request: Request) -> User | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return User.query.filter_by(api_token=token, is_active=True).first()
