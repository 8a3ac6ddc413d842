"""Session authentication endpoints and role guards."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, TypeVar, cast

from flask import Blueprint, jsonify, request, session
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.security import check_password_hash, generate_password_hash

from ..access import ROLE_INSTRUCTOR, ROLE_STUDENT, ROLES, CurrentUser
from ..config import ConfigError
from ..db import get_users_collection, serialize_user
from ..utils.http import (
    clean_string,
    handle_config_error,
    handle_db_error,
    json_error,
    validation_error,
)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

logger = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])

MIN_PASSWORD_LENGTH = 6


def current_user() -> CurrentUser | None:
    """Return the user bound to the current session, if any."""

    user_id = session.get("user_id")
    role = session.get("role")
    if not user_id or role not in ROLES:
        return None
    return CurrentUser(id=str(user_id), role=role)


def require_login(func: _F) -> _F:
    """Reject requests without an authenticated session."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        if current_user() is None:
            return jsonify({"error": "unauthorized"}), 401
        return func(*args, **kwargs)

    return cast(_F, wrapper)


def require_role(*roles: str) -> Callable[[_F], _F]:
    """Ensure the current session belongs to one of ``roles``."""

    def decorator(func: _F) -> _F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            user = current_user()
            if user is None:
                return jsonify({"error": "unauthorized"}), 401
            if user.role not in roles:
                return jsonify({"error": "forbidden"}), 403
            return func(*args, **kwargs)

        return cast(_F, wrapper)

    return decorator


def _start_session(document) -> None:
    session.clear()
    session["user_id"] = str(document["_id"])
    session["role"] = document.get("role", ROLE_STUDENT)
    session.permanent = False


@auth_bp.post("/register")
def register():
    payload = request.get_json(silent=True)
    if payload is None:
        return validation_error({"_global": "Request body must be JSON."})

    errors = {}
    email = clean_string(payload.get("email")).lower()
    password = str(payload.get("password") or "")
    role = clean_string(payload.get("role")) or ROLE_STUDENT
    name = clean_string(payload.get("name"))

    if "@" not in email or "." not in email.split("@")[-1]:
        errors["email"] = "Enter a valid email address."
    if len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    if role not in (ROLE_STUDENT, ROLE_INSTRUCTOR):
        errors["role"] = "Role must be student or instructor."
    if errors:
        return validation_error(errors)

    document = {
        "email": email,
        "password_hash": generate_password_hash(password),
        "role": role,
        "name": name or None,
        "created_at": datetime.now(timezone.utc),
    }
    student_number = clean_string(payload.get("studentId"))
    if student_number:
        document["student_number"] = student_number

    try:
        result = get_users_collection().insert_one(document)
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return json_error(
            "An account with this email already exists.",
            409,
            {"email": "Email already in use."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to register user", exc)

    document["_id"] = result.inserted_id
    _start_session(document)
    return jsonify({"ok": True, "user": serialize_user(document)}), 201


@auth_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    email = clean_string(payload.get("email")).lower()
    password = str(payload.get("password", ""))

    try:
        document = get_users_collection().find_one({"email": email}) if email else None
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to look up user", exc)

    if document and check_password_hash(document.get("password_hash", ""), password):
        _start_session(document)
        return jsonify({"ok": True, "user": serialize_user(document)}), 200

    session.clear()
    logger.info("Rejected login for %s", email or "<empty>")
    return jsonify({"error": "invalid_credentials"}), 401


@auth_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.get("/me")
def me():
    user = current_user()
    if user is None:
        return jsonify({"authenticated": False})
    return jsonify({"authenticated": True, "id": user.id, "role": user.role})


__all__ = ["auth_bp", "current_user", "require_login", "require_role"]
