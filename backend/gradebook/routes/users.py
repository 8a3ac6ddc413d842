"""Student and instructor directory endpoints."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..access import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT
from ..config import ConfigError
from ..db import get_users_collection, serialize_user
from ..utils.http import clean_string, handle_config_error, handle_db_error, json_error
from ..utils.paging import PagingParamError, page_window, parse_paging_params
from .auth import require_role

users_bp = Blueprint("users", __name__, url_prefix="/api/users")

_PROJECTION = {"_id": 1, "email": 1, "name": 1, "role": 1, "student_number": 1}


def _list_by_role(role: str):
    try:
        paging = parse_paging_params(
            request.args,
            allowed_sort_fields={"email": "email", "name": "name"},
            default_sort="email",
        )
    except PagingParamError as exc:
        return json_error(str(exc), 400)

    filters: Dict[str, Any] = {"role": role}
    query = clean_string(request.args.get("q"))
    if query:
        filters["$or"] = [
            {"name": {"$regex": query, "$options": "i"}},
            {"email": {"$regex": query, "$options": "i"}},
        ]

    try:
        collection = get_users_collection()
        window = page_window(paging, collection.count_documents(filters))
        cursor = (
            collection.find(filters, projection=_PROJECTION)
            .sort([paging.sort])
            .skip(window.skip)
            .limit(window.limit)
        )
        items = [serialize_user(doc) for doc in cursor]
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error(f"Failed to list {role} accounts", exc)

    return jsonify({"data": items, "meta": window.meta()})


@users_bp.get("/students")
@require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
def list_students():
    return _list_by_role(ROLE_STUDENT)


@users_bp.get("/instructors")
@require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
def list_instructors():
    return _list_by_role(ROLE_INSTRUCTOR)


__all__ = ["users_bp"]
