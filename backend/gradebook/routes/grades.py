"""Grade CRUD endpoints with role-based filtering."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..access import (
    ROLE_INSTRUCTOR,
    can_manage_grade,
    can_view_grade,
    is_enrolled,
)
from ..aggregator import DEFAULT_CATEGORY, DEFAULT_WEIGHT, letter_grade
from ..config import ConfigError
from ..db import (
    get_courses_collection,
    get_grades_collection,
    id_filter,
    serialize_grade,
)
from ..utils.http import (
    clean_string,
    clean_string_or_none,
    handle_config_error,
    handle_db_error,
    json_error,
    validation_error,
)
from .auth import current_user, require_login, require_role

grades_bp = Blueprint("grades", __name__, url_prefix="/api/grades")

logger = logging.getLogger(__name__)

GRADE_CATEGORIES = ("Quiz", "Midterm", "Final", "Project", "Lab", "Exam", "Assignment", "Other")


def _validate_grade_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if require_all:
        for field, key, message in (
            ("studentId", "student_id", "Student ID is required."),
            ("courseId", "course_id", "Course ID is required."),
        ):
            value = clean_string(payload.get(field))
            if value:
                cleaned[key] = value
            else:
                errors[field] = message

    for field, key, minimum, exclusive in (
        ("score", "score", 0.0, False),
        ("maxScore", "max_score", 0.0, True),
    ):
        if field not in payload:
            if require_all:
                errors[field] = f"{field} is required."
            continue
        try:
            value = float(payload.get(field))
        except (TypeError, ValueError):
            errors[field] = f"{field} must be numeric."
            continue
        if not math.isfinite(value):
            errors[field] = f"{field} must be a finite number."
            continue
        if value < minimum or (exclusive and value == minimum):
            bound = "greater than" if exclusive else "at least"
            errors[field] = f"{field} must be {bound} {minimum:g}."
            continue
        cleaned[key] = value

    if "weight" in payload and payload.get("weight") not in (None, ""):
        try:
            weight = float(payload.get("weight"))
            if not 0 <= weight <= 100:
                raise ValueError
            cleaned["weight"] = weight
        except (TypeError, ValueError):
            errors["weight"] = "weight must be between 0 and 100."
    elif require_all:
        cleaned["weight"] = DEFAULT_WEIGHT

    if "category" in payload:
        category = clean_string(payload.get("category")) or DEFAULT_CATEGORY
        if category not in GRADE_CATEGORIES:
            errors["category"] = "category must be one of: " + ", ".join(GRADE_CATEGORIES) + "."
        else:
            cleaned["category"] = category
    elif require_all:
        cleaned["category"] = DEFAULT_CATEGORY

    for field, key in (
        ("assignmentName", "assignment_name"),
        ("feedback", "feedback"),
    ):
        if field in payload:
            cleaned[key] = clean_string_or_none(payload.get(field))

    if "letterGrade" in payload:
        cleaned["letter_grade"] = (clean_string_or_none(payload.get("letterGrade")) or "").upper() or None

    return cleaned, errors


def _apply_letter_grade(document: Dict[str, Any]) -> None:
    if not document.get("letter_grade") and document.get("max_score"):
        document["letter_grade"] = letter_grade(document["score"] / document["max_score"] * 100)


@grades_bp.get("")
@require_login
def list_grades():
    user = current_user()
    student_id = clean_string(request.args.get("studentId"))
    course_id = clean_string(request.args.get("courseId"))

    try:
        filters: Dict[str, Any] = {}
        if user.is_student:
            filters["student_id"] = user.id
        elif user.is_instructor:
            owned = get_courses_collection().find({"instructor_id": user.id}, projection={"_id": 1})
            owned_ids = [str(doc["_id"]) for doc in owned]
            filters["course_id"] = {"$in": owned_ids}
            if course_id and course_id not in owned_ids:
                return jsonify({"success": True, "count": 0, "grades": []})

        if student_id and not user.is_student:
            filters["student_id"] = student_id
        if course_id:
            filters["course_id"] = course_id

        cursor = get_grades_collection().find(filters, sort=[("created_at", -1)])
        grades = [serialize_grade(doc) for doc in cursor]
        return jsonify({"success": True, "count": len(grades), "grades": grades})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list grades", exc)


def _load_grade_and_course(grade_id: str):
    grade = get_grades_collection().find_one(id_filter(grade_id))
    if not grade:
        return None, None
    course = get_courses_collection().find_one(id_filter(grade.get("course_id")))
    return grade, course


@grades_bp.get("/<grade_id>")
@require_login
def get_grade(grade_id: str):
    try:
        grade, course = _load_grade_and_course(grade_id)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load grade", exc)

    if not grade:
        return json_error("Grade not found.", 404)
    if not can_view_grade(current_user(), grade, course):
        return json_error("Not authorized to view this grade.", 403)
    return jsonify({"success": True, "grade": serialize_grade(grade)})


@grades_bp.post("")
@require_role(ROLE_INSTRUCTOR)
def create_grade():
    cleaned, errors = _validate_grade_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    try:
        course = get_courses_collection().find_one(id_filter(cleaned["course_id"]))
        if not course:
            return json_error("Course not found.", 404)
        if not can_manage_grade(current_user(), course):
            return json_error("Not authorized to add grades for this course.", 403)
        if not is_enrolled(course, cleaned["student_id"]):
            return json_error("Student is not enrolled in this course.", 400)

        now = datetime.now(timezone.utc)
        document = {**cleaned, "course_id": str(course["_id"]), "created_at": now, "updated_at": now}
        _apply_letter_grade(document)

        result = get_grades_collection().insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Recorded grade %s for student %s in course %s", result.inserted_id, document["student_id"], document["course_id"])
        return jsonify({"success": True, "grade": serialize_grade(document)}), 201
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to create grade", exc)


@grades_bp.put("/<grade_id>")
@require_role(ROLE_INSTRUCTOR)
def update_grade(grade_id: str):
    cleaned, errors = _validate_grade_payload(request.get_json(silent=True), require_all=False)
    if errors:
        return validation_error(errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        grade, course = _load_grade_and_course(grade_id)
        if not grade:
            return json_error("Grade not found.", 404)
        if not can_manage_grade(current_user(), course):
            return json_error("Not authorized to update this grade.", 403)

        combined = {**grade, **cleaned}
        if (combined.get("max_score") or 0) <= 0:
            return validation_error({"maxScore": "maxScore must be greater than 0."})
        if "letter_grade" not in cleaned and ("score" in cleaned or "max_score" in cleaned):
            combined["letter_grade"] = None
        _apply_letter_grade(combined)

        update_fields = {key: combined[key] for key in cleaned}
        update_fields["letter_grade"] = combined.get("letter_grade")
        update_fields["updated_at"] = datetime.now(timezone.utc)

        collection = get_grades_collection()
        collection.update_one({"_id": grade["_id"]}, {"$set": update_fields})
        updated = collection.find_one({"_id": grade["_id"]})
        return jsonify({"success": True, "grade": serialize_grade(updated or combined)})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to update grade", exc)


@grades_bp.delete("/<grade_id>")
@require_role(ROLE_INSTRUCTOR)
def delete_grade(grade_id: str):
    try:
        grade, course = _load_grade_and_course(grade_id)
        if not grade:
            return json_error("Grade not found.", 404)
        if not can_manage_grade(current_user(), course):
            return json_error("Not authorized to delete this grade.", 403)

        get_grades_collection().delete_one({"_id": grade["_id"]})
        logger.info("Deleted grade %s from course %s", grade["_id"], grade.get("course_id"))
        return jsonify({"success": True, "message": "Grade deleted successfully"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete grade", exc)


__all__ = ["grades_bp", "GRADE_CATEGORIES"]
