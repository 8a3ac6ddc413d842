"""GPA, analytics and export endpoints built on the grade aggregator."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Dict, List, Tuple

from flask import Blueprint, Response, jsonify, request
from pymongo.errors import PyMongoError

from ..access import (
    ROLE_ADMIN,
    ROLE_INSTRUCTOR,
    CurrentUser,
    can_view_student,
    owns_course,
)
from ..aggregator import (
    AggregationError,
    compute_course_analytics,
    compute_course_stats,
    compute_gpa,
    compute_student_analytics,
)
from ..config import ConfigError
from ..db import (
    get_courses_collection,
    get_grades_collection,
    get_users_collection,
    id_candidates,
    id_filter,
    ref_id,
    serialize_grade,
    to_course_meta,
    to_grade_record,
)
from ..utils.http import clean_string, handle_config_error, handle_db_error, json_error
from .auth import current_user, require_login, require_role

reports_bp = Blueprint("reports", __name__, url_prefix="/api/grades")

logger = logging.getLogger(__name__)

CSV_FIELDS = (
    "student_id",
    "course_id",
    "course_code",
    "assignment_name",
    "category",
    "score",
    "max_score",
    "weight",
    "percentage",
    "letter_grade",
    "created_at",
)


def load_student_snapshot(student_id: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Fetch a student's grades and the courses those grades belong to."""

    grade_docs = list(get_grades_collection().find({"student_id": student_id}))
    course_ids = {ref_id(doc.get("course_id")) for doc in grade_docs} - {None}
    candidates = [value for course_id in course_ids for value in id_candidates(course_id)]
    course_docs = list(get_courses_collection().find({"_id": {"$in": candidates}})) if candidates else []
    return grade_docs, course_docs


def load_course_snapshot(course_id: str) -> Tuple[Dict[str, Any] | None, List[Dict[str, Any]], Dict[str, str]]:
    """Fetch a course, its grades, and display names for the graded students."""

    course = get_courses_collection().find_one(id_filter(course_id))
    if not course:
        return None, [], {}

    grade_docs = list(get_grades_collection().find({"course_id": str(course["_id"])}))
    student_ids = {ref_id(doc.get("student_id")) for doc in grade_docs} - {None}
    candidates = [value for student_id in student_ids for value in id_candidates(student_id)]
    names: Dict[str, str] = {}
    if candidates:
        for user in get_users_collection().find(
            {"_id": {"$in": candidates}}, projection={"name": 1, "email": 1}
        ):
            names[str(user["_id"])] = user.get("name") or user.get("email")
    return course, grade_docs, names


def load_courses_taught_by(instructor_id: str) -> List[Dict[str, Any]]:
    return list(
        get_courses_collection().find(
            {"instructor_id": instructor_id},
            projection={"_id": 1, "instructor_id": 1, "students": 1, "code": 1},
        )
    )


def _resolve_student_scope(user: CurrentUser) -> Tuple[str | None, Any]:
    """Pick whose grades to aggregate; returns ``(student_id, error_response)``."""

    if user.is_student:
        return user.id, None

    requested = clean_string(request.args.get("studentId"))
    if not requested:
        return None, json_error("studentId is required.", 400)
    taught = [] if user.is_admin else load_courses_taught_by(user.id)
    if not can_view_student(user, requested, taught):
        return None, json_error("Not authorized to view this student's grades.", 403)
    return requested, None


def _aggregation_failed(exc: AggregationError):
    logger.warning("Grade aggregation rejected its input: %s", exc)
    return json_error(str(exc), 422)


@reports_bp.get("/gpa")
@require_login
def student_gpa():
    try:
        student_id, error = _resolve_student_scope(current_user())
        if error:
            return error

        grade_docs, course_docs = load_student_snapshot(student_id)
        result = compute_gpa(
            [to_grade_record(doc) for doc in grade_docs],
            [to_course_meta(doc) for doc in course_docs],
        )
        return jsonify(result.to_dict())
    except AggregationError as exc:
        return _aggregation_failed(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to compute GPA", exc)


@reports_bp.get("/analytics")
@require_login
def student_analytics():
    try:
        student_id, error = _resolve_student_scope(current_user())
        if error:
            return error

        grade_docs, course_docs = load_student_snapshot(student_id)
        analytics = compute_student_analytics(
            [to_grade_record(doc) for doc in grade_docs],
            [to_course_meta(doc) for doc in course_docs],
        )
        return jsonify({"success": True, "analytics": analytics})
    except AggregationError as exc:
        return _aggregation_failed(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to compute student analytics", exc)


def _load_owned_course(course_id: str):
    course, grade_docs, names = load_course_snapshot(course_id)
    if not course:
        return None, json_error("Course not found.", 404)
    user = current_user()
    if not (user.is_admin or owns_course(user, course)):
        return None, json_error("Not authorized to view course statistics.", 403)
    return (course, grade_docs, names), None


@reports_bp.get("/course/<course_id>/analytics")
@require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
def course_analytics(course_id: str):
    try:
        snapshot, error = _load_owned_course(course_id)
        if error:
            return error
        course, grade_docs, names = snapshot

        analytics = compute_course_analytics([to_grade_record(doc) for doc in grade_docs], names)
        analytics["courseId"] = str(course["_id"])
        analytics["courseCode"] = course.get("code")
        analytics["courseName"] = course.get("name")
        return jsonify({"success": True, "analytics": analytics})
    except AggregationError as exc:
        return _aggregation_failed(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to compute course analytics", exc)


@reports_bp.get("/course/<course_id>/stats")
@require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
def course_stats(course_id: str):
    try:
        snapshot, error = _load_owned_course(course_id)
        if error:
            return error
        _, grade_docs, _ = snapshot

        stats = compute_course_stats([to_grade_record(doc) for doc in grade_docs])
        return jsonify({"success": True, "stats": stats})
    except AggregationError as exc:
        return _aggregation_failed(exc)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to compute course stats", exc)


@reports_bp.get("/export.csv")
@require_role(ROLE_INSTRUCTOR, ROLE_ADMIN)
def export_grades_csv():
    user = current_user()
    course_id = clean_string(request.args.get("courseId"))

    try:
        course_filter: Dict[str, Any] = {} if user.is_admin else {"instructor_id": user.id}
        if course_id:
            course_filter.update(id_filter(course_id))
        courses = {
            str(doc["_id"]): doc
            for doc in get_courses_collection().find(course_filter, projection={"_id": 1, "code": 1})
        }
        if course_id and not courses:
            return json_error("Course not found.", 404)

        rows = get_grades_collection().find(
            {"course_id": {"$in": list(courses)}},
            sort=[("course_id", 1), ("created_at", 1)],
        )

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for doc in rows:
            grade = serialize_grade(doc)
            writer.writerow({
                "student_id": grade["student"] or "",
                "course_id": grade["course"] or "",
                "course_code": courses.get(grade["course"], {}).get("code", ""),
                "assignment_name": grade["assignmentName"] or "",
                "category": grade["category"],
                "score": grade["score"],
                "max_score": grade["maxScore"],
                "weight": grade["weight"],
                "percentage": grade["percentage"],
                "letter_grade": grade["letterGrade"] or "",
                "created_at": grade["createdAt"] or "",
            })
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to export grades", exc)

    filename = f"grades_{course_id}.csv" if course_id else "grades.csv"
    response = Response(output.getvalue(), mimetype="text/csv")
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


__all__ = ["reports_bp"]
