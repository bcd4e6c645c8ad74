from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, g, jsonify, redirect, request, url_for

from app.studiofinder.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    # ADMIN_EMAILS accounts hold every permission.
    if is_admin_email(user.email):
        return True
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def is_admin_email(email: str | None) -> bool:
    if not email:
        return False
    return email.strip().lower() in (current_app.config.get("ADMIN_EMAILS") or [])


def is_admin(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return is_admin_email(user.email) or any(r.key == "admin" for r in user.roles)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login
            if not user or not user.is_active:
                nxt = request.full_path or request.path
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_api_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """JSON flavour: 401 instead of a login redirect."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return jsonify({"error": "Authentication required"}), 401
        return fn(*args, **kwargs)

    return wrapped


def require_api_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return jsonify({"error": "Authentication required"}), 401
            if not user_has_permission(user, permission_key):
                return jsonify({"error": "Forbidden", "missing_permission": permission_key}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
