"""Assignment posting and listing endpoints."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..access import ROLE_INSTRUCTOR, ROLE_STUDENT, can_view_course, owns_course
from ..config import ConfigError
from ..db import (
    get_assignments_collection,
    get_courses_collection,
    id_candidates,
    id_filter,
    ref_id,
    serialize_assignment,
)
from ..utils.http import (
    clean_string,
    clean_string_or_none,
    handle_config_error,
    handle_db_error,
    json_error,
    parse_iso_datetime,
    validation_error,
)
from .auth import current_user, require_login, require_role

assignments_bp = Blueprint("assignments", __name__, url_prefix="/api/assignments")

logger = logging.getLogger(__name__)

ASSIGNMENT_CATEGORIES = ("Homework", "Quiz", "Midterm", "Final", "Project", "Lab", "Exam", "Other")
ASSIGNMENT_STATUSES = ("pending", "graded", "cancelled")
DEFAULT_ASSIGNMENT_CATEGORY = "Homework"
DEFAULT_ASSIGNMENT_MAX_SCORE = 100.0
DEFAULT_ASSIGNMENT_WEIGHT = 10.0
UPCOMING_WINDOW = timedelta(days=7)


def _validate_assignment_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if require_all or "title" in payload:
        title = clean_string(payload.get("title"))
        if title:
            cleaned["title"] = title
        else:
            errors["title"] = "Title is required."

    if require_all:
        course_id = clean_string(payload.get("courseId"))
        if course_id:
            cleaned["course_id"] = course_id
        else:
            errors["courseId"] = "Course ID is required."

    if "description" in payload:
        cleaned["description"] = clean_string_or_none(payload.get("description"))

    if require_all or "dueDate" in payload:
        try:
            due_date = parse_iso_datetime(payload.get("dueDate"))
        except ValueError:
            due_date = None
        if due_date is None:
            errors["dueDate"] = "dueDate must be a valid date."
        else:
            cleaned["due_date"] = due_date

    if payload.get("category") not in (None, ""):
        category = clean_string(payload.get("category"))
        if category not in ASSIGNMENT_CATEGORIES:
            errors["category"] = "category must be one of: " + ", ".join(ASSIGNMENT_CATEGORIES) + "."
        else:
            cleaned["category"] = category
    elif require_all:
        cleaned["category"] = DEFAULT_ASSIGNMENT_CATEGORY

    for field, key, low, high, default in (
        ("maxScore", "max_score", 1.0, None, DEFAULT_ASSIGNMENT_MAX_SCORE),
        ("weight", "weight", 0.0, 100.0, DEFAULT_ASSIGNMENT_WEIGHT),
    ):
        if payload.get(field) in (None, ""):
            if require_all:
                cleaned[key] = default
            continue
        try:
            value = float(payload.get(field))
        except (TypeError, ValueError):
            value = math.nan
        if not math.isfinite(value) or value < low or (high is not None and value > high):
            bound = f"between {low:g} and {high:g}" if high is not None else f"at least {low:g}"
            errors[field] = f"{field} must be a number {bound}."
            continue
        cleaned[key] = value

    if "status" in payload:
        status = clean_string(payload.get("status"))
        if status not in ASSIGNMENT_STATUSES:
            errors["status"] = "status must be one of: " + ", ".join(ASSIGNMENT_STATUSES) + "."
        else:
            cleaned["status"] = status

    return cleaned, errors


@assignments_bp.post("")
@require_role(ROLE_INSTRUCTOR)
def create_assignment():
    cleaned, errors = _validate_assignment_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    try:
        course = get_courses_collection().find_one(id_filter(cleaned["course_id"]))
        if not course:
            return json_error("Course not found.", 404)
        if not owns_course(current_user(), course):
            return json_error("Not authorized to create assignments for this course.", 403)

        now = datetime.now(timezone.utc)
        document = {
            **cleaned,
            "course_id": str(course["_id"]),
            "instructor_id": current_user().id,
            "status": cleaned.get("status", "pending"),
            "created_at": now,
            "updated_at": now,
        }
        result = get_assignments_collection().insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Posted assignment %s in course %s", result.inserted_id, document["course_id"])
        return jsonify({"assignment": serialize_assignment(document)}), 201
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to create assignment", exc)


@assignments_bp.get("/course/<course_id>")
@require_login
def list_course_assignments(course_id: str):
    try:
        course = get_courses_collection().find_one(id_filter(course_id))
        if not course:
            return json_error("Course not found.", 404)
        if not can_view_course(current_user(), course):
            return json_error("Not authorized to view this course.", 403)

        cursor = get_assignments_collection().find(
            {"course_id": {"$in": id_candidates(course["_id"])}},
            sort=[("due_date", 1)],
        )
        return jsonify({"assignments": [serialize_assignment(doc) for doc in cursor]})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list assignments", exc)


@assignments_bp.get("/upcoming")
@require_role(ROLE_STUDENT)
def upcoming_assignments():
    """Pending assignments due within the next week in the student's courses."""

    user = current_user()
    now = datetime.now(timezone.utc)
    try:
        enrolled = get_courses_collection().find({"students": user.id}, projection={"_id": 1})
        course_ids = [candidate for doc in enrolled for candidate in id_candidates(doc["_id"])]
        if not course_ids:
            return jsonify({"assignments": []})

        cursor = get_assignments_collection().find(
            {
                "course_id": {"$in": course_ids},
                "due_date": {"$gte": now, "$lte": now + UPCOMING_WINDOW},
                "status": "pending",
            },
            sort=[("due_date", 1)],
        )
        return jsonify({"assignments": [serialize_assignment(doc) for doc in cursor]})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list upcoming assignments", exc)


def _owns_assignment(assignment: Dict[str, Any]) -> bool:
    return ref_id(assignment.get("instructor_id")) == current_user().id


@assignments_bp.put("/<assignment_id>")
@require_role(ROLE_INSTRUCTOR)
def update_assignment(assignment_id: str):
    cleaned, errors = _validate_assignment_payload(request.get_json(silent=True), require_all=False)
    if errors:
        return validation_error(errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        collection = get_assignments_collection()
        assignment = collection.find_one(id_filter(assignment_id))
        if not assignment:
            return json_error("Assignment not found.", 404)
        if not _owns_assignment(assignment):
            return json_error("Not authorized to update this assignment.", 403)

        collection.update_one(
            {"_id": assignment["_id"]},
            {"$set": {**cleaned, "updated_at": datetime.now(timezone.utc)}},
        )
        updated = collection.find_one({"_id": assignment["_id"]})
        return jsonify({"assignment": serialize_assignment(updated or {**assignment, **cleaned})})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to update assignment", exc)


@assignments_bp.delete("/<assignment_id>")
@require_role(ROLE_INSTRUCTOR)
def delete_assignment(assignment_id: str):
    try:
        collection = get_assignments_collection()
        assignment = collection.find_one(id_filter(assignment_id))
        if not assignment:
            return json_error("Assignment not found.", 404)
        if not _owns_assignment(assignment):
            return json_error("Not authorized to delete this assignment.", 403)

        collection.delete_one({"_id": assignment["_id"]})
        return jsonify({"message": "Assignment deleted successfully"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete assignment", exc)


__all__ = ["assignments_bp", "ASSIGNMENT_CATEGORIES", "ASSIGNMENT_STATUSES"]
