"""Course management and enrollment endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from flask import Blueprint, jsonify, request
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..access import ROLE_INSTRUCTOR, ROLE_STUDENT, can_view_course, is_enrolled, owns_course
from ..aggregator import COURSE_STATUSES, DEFAULT_CREDITS, STATUS_COMPLETED, STATUS_IN_PROGRESS
from ..config import ConfigError
from ..db import (
    get_assignments_collection,
    get_courses_collection,
    get_grades_collection,
    get_users_collection,
    id_candidates,
    id_filter,
    serialize_course,
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

courses_bp = Blueprint("courses", __name__, url_prefix="/api/courses")

logger = logging.getLogger(__name__)

MIN_CREDITS = 1
MAX_CREDITS = 6
COMPLETED_AT_MESSAGE = "completedAt may only be set on a completed course."


def _validate_course_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    def require_field(field: str, message: str) -> bool:
        if field not in payload or clean_string(payload.get(field)) == "":
            errors[field] = message
            return False
        return True

    if require_all or "name" in payload:
        if require_field("name", "Course name is required."):
            cleaned["name"] = clean_string(payload.get("name"))

    if require_all or "code" in payload:
        if require_field("code", "Course code is required."):
            cleaned["code"] = clean_string(payload.get("code")).upper()

    if "description" in payload:
        cleaned["description"] = clean_string_or_none(payload.get("description"))

    if payload.get("credits") not in (None, ""):
        try:
            credits_value = int(payload.get("credits"))
            if not MIN_CREDITS <= credits_value <= MAX_CREDITS:
                raise ValueError
            cleaned["credits"] = credits_value
        except (TypeError, ValueError):
            errors["credits"] = f"Credits must be between {MIN_CREDITS} and {MAX_CREDITS}."
    elif require_all:
        cleaned["credits"] = DEFAULT_CREDITS

    if payload.get("semester") not in (None, ""):
        cleaned["semester"] = clean_string(payload.get("semester"))

    if payload.get("year") not in (None, ""):
        try:
            cleaned["year"] = int(payload.get("year"))
        except (TypeError, ValueError):
            errors["year"] = "Year must be a number."

    if "status" in payload:
        status = clean_string(payload.get("status"))
        if status not in COURSE_STATUSES:
            errors["status"] = "Invalid status."
        else:
            cleaned["status"] = status

    if payload.get("completedAt") not in (None, ""):
        try:
            cleaned["completed_at"] = parse_iso_datetime(payload.get("completedAt"))
        except ValueError:
            errors["completedAt"] = "completedAt must be a valid date."

    return cleaned, errors


def _load_course(course_id: str):
    return get_courses_collection().find_one(id_filter(course_id))


@courses_bp.get("/my")
@require_login
def my_courses():
    user = current_user()
    if user.role == ROLE_INSTRUCTOR:
        filters: Dict[str, Any] = {"instructor_id": user.id}
    elif user.role == ROLE_STUDENT:
        filters = {"students": user.id}
    else:
        return json_error("Invalid role", 403)

    try:
        cursor = get_courses_collection().find(filters, sort=[("created_at", -1)])
        return jsonify({"courses": [serialize_course(doc) for doc in cursor]})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list courses", exc)


@courses_bp.get("")
@require_role(ROLE_INSTRUCTOR)
def list_courses():
    try:
        cursor = get_courses_collection().find({}, sort=[("created_at", -1)])
        return jsonify({"courses": [serialize_course(doc) for doc in cursor]})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list courses", exc)


@courses_bp.get("/<course_id>")
@require_login
def get_course(course_id: str):
    try:
        course = _load_course(course_id)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load course", exc)

    if not course:
        return json_error("Course not found.", 404)
    if not can_view_course(current_user(), course):
        return json_error("Access denied.", 403)
    return jsonify({"course": serialize_course(course)})


@courses_bp.post("")
@require_role(ROLE_INSTRUCTOR)
def create_course():
    cleaned, errors = _validate_course_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    status = cleaned.get("status", STATUS_IN_PROGRESS)
    if cleaned.get("completed_at") and status != STATUS_COMPLETED:
        return validation_error({"completedAt": COMPLETED_AT_MESSAGE})

    now = datetime.now(timezone.utc)
    document = {
        **cleaned,
        "instructor_id": current_user().id,
        "students": [],
        "status": status,
        "created_at": now,
        "updated_at": now,
    }
    if document["status"] == STATUS_COMPLETED and not document.get("completed_at"):
        document["completed_at"] = now

    try:
        result = get_courses_collection().insert_one(document)
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return json_error(
            "Course with this code already exists.",
            409,
            {"code": "Choose a different course code."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to create course", exc)

    document["_id"] = result.inserted_id
    return jsonify({"course": serialize_course(document)}), 201


@courses_bp.put("/<course_id>")
@require_role(ROLE_INSTRUCTOR)
def update_course(course_id: str):
    cleaned, errors = _validate_course_payload(request.get_json(silent=True), require_all=False)
    if errors:
        return validation_error(errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        collection = get_courses_collection()
        course = _load_course(course_id)
        if not course:
            return json_error("Course not found.", 404)
        if not owns_course(current_user(), course):
            return json_error("Only the course instructor can update this course.", 403)

        now = datetime.now(timezone.utc)
        status = cleaned.get("status", course.get("status") or STATUS_IN_PROGRESS)
        if cleaned.get("completed_at") and status != STATUS_COMPLETED:
            return validation_error({"completedAt": COMPLETED_AT_MESSAGE})

        update: Dict[str, Any] = {"$set": {**cleaned, "updated_at": now}}
        if status == STATUS_COMPLETED and not cleaned.get("completed_at") and not course.get("completed_at"):
            update["$set"]["completed_at"] = now
        elif status != STATUS_COMPLETED:
            update["$set"]["completed_at"] = None

        collection.update_one({"_id": course["_id"]}, update)
        updated = collection.find_one({"_id": course["_id"]})
        return jsonify({"course": serialize_course(updated or course)})
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return json_error("Course with this code already exists.", 409, {"code": "Choose a different course code."})
    except PyMongoError as exc:
        return handle_db_error("Failed to update course", exc)


@courses_bp.delete("/<course_id>")
@require_role(ROLE_INSTRUCTOR)
def delete_course(course_id: str):
    try:
        collection = get_courses_collection()
        course = _load_course(course_id)
        if not course:
            return json_error("Course not found.", 404)
        if not owns_course(current_user(), course):
            return json_error("Only the course instructor can delete this course.", 403)

        collection.delete_one({"_id": course["_id"]})
        stored_ids = id_candidates(course["_id"])
        removed = get_grades_collection().delete_many({"course_id": {"$in": stored_ids}})
        get_assignments_collection().delete_many({"course_id": {"$in": stored_ids}})
        logger.info("Deleted course %s and %s of its grades", course["_id"], removed.deleted_count)
        return jsonify({"message": "Course deleted successfully"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete course", exc)


def _student_id_from_body() -> str:
    payload = request.get_json(silent=True) or {}
    return clean_string(payload.get("studentId"))


@courses_bp.post("/<course_id>/enroll")
@require_role(ROLE_INSTRUCTOR)
def enroll_student(course_id: str):
    student_id = _student_id_from_body()
    if not student_id:
        return validation_error({"studentId": "Student ID is required."})

    try:
        collection = get_courses_collection()
        course = _load_course(course_id)
        if not course:
            return json_error("Course not found.", 404)
        if not owns_course(current_user(), course):
            return json_error("Only the course instructor can enroll students.", 403)
        if is_enrolled(course, student_id):
            return json_error("Student is already enrolled.", 400)

        student = get_users_collection().find_one(
            {**id_filter(student_id), "role": ROLE_STUDENT}, projection={"_id": 1}
        )
        if not student:
            return json_error("Student not found.", 404)

        collection.update_one({"_id": course["_id"]}, {"$addToSet": {"students": student_id}})
        updated = collection.find_one({"_id": course["_id"]})
        logger.info("Enrolled student %s in course %s", student_id, course_id)
        return jsonify({"course": serialize_course(updated or course), "message": "Student enrolled successfully"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to enroll student", exc)


@courses_bp.post("/<course_id>/unenroll")
@require_role(ROLE_INSTRUCTOR)
def unenroll_student(course_id: str):
    student_id = _student_id_from_body()
    if not student_id:
        return validation_error({"studentId": "Student ID is required."})

    try:
        collection = get_courses_collection()
        course = _load_course(course_id)
        if not course:
            return json_error("Course not found.", 404)
        if not owns_course(current_user(), course):
            return json_error("Only the course instructor can unenroll students.", 403)

        collection.update_one({"_id": course["_id"]}, {"$pull": {"students": student_id}})
        updated = collection.find_one({"_id": course["_id"]})
        logger.info("Unenrolled student %s from course %s", student_id, course_id)
        return jsonify({"course": serialize_course(updated or course), "message": "Student unenrolled successfully"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to unenroll student", exc)


__all__ = ["courses_bp"]
