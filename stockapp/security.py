"""Shared security helpers and decorators for view protection."""

from __future__ import annotations

from functools import wraps
from typing import Iterable, Tuple

from flask import abort
from flask_login import current_user

from stockapp.auth import current_role
from stockapp.extensions import login_manager
from stockapp.models import UserRole


def _normalize_roles(role_names: Iterable[str]) -> Tuple[str, ...]:
    unique: list[str] = []
    for name in role_names:
        if name and name not in unique:
            unique.append(name)
    return tuple(unique)


def require_roles(*role_names: str):
    """Decorator ensuring the active user has any of the provided roles."""

    normalized_roles = _normalize_roles(role_names)

    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()

            if normalized_roles and current_role() not in normalized_roles:
                abort(403)

            return view_func(*args, **kwargs)

        return wrapped

    return decorator


def require_login(view_func):
    """Any authenticated user, whatever the role."""

    return require_roles()(view_func)


def require_approver(view_func):
    return require_roles(*UserRole.APPROVER_ROLES)(view_func)
