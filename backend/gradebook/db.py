"""MongoDB helpers for the application."""

import math
from datetime import datetime
from typing import Any, Dict, List

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.collection import Collection

from .aggregator import (
    DEFAULT_CATEGORY,
    DEFAULT_WEIGHT,
    STATUS_IN_PROGRESS,
    CourseMeta,
    GradeRecord,
    round_half_up,
)
from .config import get_db_name, get_mongo_uri

_MONGO_CLIENT = None
_MONGO_DB = None


def _get_client():
    """Create (or reuse) a MongoDB client using the configured URI."""

    global _MONGO_CLIENT

    if _MONGO_CLIENT is None:
        _MONGO_CLIENT = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=5000)
    return _MONGO_CLIENT


def get_db():
    """Return the application's MongoDB database instance."""

    global _MONGO_DB

    if _MONGO_DB is None:
        _MONGO_DB = _get_client()[get_db_name()]
    return _MONGO_DB


_users_indexes_created = False
_courses_indexes_created = False
_grades_indexes_created = False
_assignments_indexes_created = False


def _ensure_users_indexes(collection: Collection) -> None:
    global _users_indexes_created
    if _users_indexes_created:
        return

    collection.create_index("email", unique=True, name="unique_email")
    collection.create_index(
        [("role", ASCENDING), ("email", ASCENDING)],
        name="role_email",
        background=True,
    )
    _users_indexes_created = True


def get_users_collection() -> Collection:
    """Return the collection that stores student and instructor accounts."""

    collection = get_db()["users"]
    _ensure_users_indexes(collection)
    return collection


def _ensure_courses_indexes(collection: Collection) -> None:
    global _courses_indexes_created
    if _courses_indexes_created:
        return

    collection.create_indexes(
        [
            IndexModel([("code", ASCENDING)], name="unique_code", unique=True),
            IndexModel([("instructor_id", ASCENDING)], name="instructor_idx", background=True),
            IndexModel([("students", ASCENDING)], name="students_idx", background=True),
        ]
    )
    _courses_indexes_created = True


def get_courses_collection() -> Collection:
    """Return the courses collection and ensure supporting indexes."""

    collection = get_db()["courses"]
    _ensure_courses_indexes(collection)
    return collection


def _ensure_grades_indexes(collection: Collection) -> None:
    global _grades_indexes_created
    if _grades_indexes_created:
        return

    collection.create_indexes(
        [
            IndexModel(
                [("student_id", ASCENDING), ("course_id", ASCENDING)],
                name="student_course",
                background=True,
            ),
            IndexModel(
                [("course_id", ASCENDING), ("created_at", DESCENDING)],
                name="course_created",
                background=True,
            ),
        ]
    )
    _grades_indexes_created = True


def get_grades_collection() -> Collection:
    """Return the grades collection ensuring indexes exist."""

    collection = get_db()["grades"]
    _ensure_grades_indexes(collection)
    return collection


def _ensure_assignments_indexes(collection: Collection) -> None:
    global _assignments_indexes_created
    if _assignments_indexes_created:
        return

    collection.create_indexes(
        [
            IndexModel(
                [("course_id", ASCENDING), ("due_date", ASCENDING)],
                name="course_due",
                background=True,
            ),
            IndexModel([("instructor_id", ASCENDING)], name="instructor_idx", background=True),
        ]
    )
    _assignments_indexes_created = True


def get_assignments_collection() -> Collection:
    """Return the assignments collection ensuring indexes exist."""

    collection = get_db()["assignments"]
    _ensure_assignments_indexes(collection)
    return collection


def id_candidates(value: Any) -> List[Any]:
    """Return the stored forms an identifier may take (string and ObjectId)."""

    if isinstance(value, ObjectId):
        return [value, str(value)]

    text = str(value).strip() if value is not None else ""
    if not text:
        return []

    candidates: List[Any] = [text]
    try:
        candidates.append(ObjectId(text))
    except (InvalidId, TypeError):
        pass
    return candidates


def id_filter(value: Any) -> Dict[str, Any]:
    """Build a ``_id`` filter matching either stored form of ``value``."""

    return {"_id": {"$in": id_candidates(value)}}


def ref_id(value: Any) -> str | None:
    """Normalize a stored reference (raw id or embedded document) to a string id."""

    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _isoformat(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def serialize_user(document):
    """Convert a MongoDB user document into a JSON-serialisable dict."""

    return {
        "_id": str(document.get("_id", "")),
        "email": document.get("email"),
        "name": document.get("name"),
        "role": document.get("role"),
        "studentId": document.get("student_number"),
    }


def serialize_course(document):
    """Serialize a raw Mongo course document to JSON-friendly dict."""

    credits = document.get("credits")
    try:
        credits_value = int(credits) if credits is not None else None
    except (TypeError, ValueError, OverflowError):
        credits_value = None

    students = document.get("students", [])
    if not isinstance(students, list):
        students = []

    return {
        "_id": str(document.get("_id", "")),
        "name": document.get("name"),
        "code": document.get("code"),
        "description": document.get("description"),
        "instructor": ref_id(document.get("instructor_id")),
        "students": [sid for sid in (ref_id(s) for s in students) if sid],
        "credits": credits_value,
        "semester": document.get("semester"),
        "year": document.get("year"),
        "status": document.get("status") or STATUS_IN_PROGRESS,
        "completedAt": _isoformat(document.get("completed_at")),
    }


def serialize_grade(document):
    """Serialize a grade document for JSON responses."""

    score = _number(document.get("score"))
    max_score = _number(document.get("max_score"))
    percentage = None
    if score is not None and max_score:
        percentage = round_half_up(score / max_score * 100, 2)

    return {
        "_id": str(document.get("_id", "")),
        "student": ref_id(document.get("student_id")),
        "course": ref_id(document.get("course_id")),
        "assignmentName": document.get("assignment_name"),
        "category": document.get("category") or DEFAULT_CATEGORY,
        "score": score,
        "maxScore": max_score,
        "weight": _number(document.get("weight")),
        "letterGrade": document.get("letter_grade"),
        "feedback": document.get("feedback"),
        "percentage": percentage,
        "createdAt": _isoformat(document.get("created_at")),
        "updatedAt": _isoformat(document.get("updated_at")),
    }


def serialize_assignment(document):
    """Serialize an assignment document for JSON responses."""

    return {
        "_id": str(document.get("_id", "")),
        "title": document.get("title"),
        "description": document.get("description"),
        "course": ref_id(document.get("course_id")),
        "instructor": ref_id(document.get("instructor_id")),
        "dueDate": _isoformat(document.get("due_date")),
        "category": document.get("category"),
        "maxScore": _number(document.get("max_score")),
        "weight": _number(document.get("weight")),
        "status": document.get("status"),
        "createdAt": _isoformat(document.get("created_at")),
        "updatedAt": _isoformat(document.get("updated_at")),
    }


def to_grade_record(document) -> GradeRecord:
    """Normalize a stored grade into the aggregator's input type.

    Raises :class:`~gradebook.aggregator.InvalidGradeError` when the stored
    scores cannot yield a percentage.
    """

    weight = _number(document.get("weight"))
    return GradeRecord(
        student_id=ref_id(document.get("student_id")) or "",
        course_id=ref_id(document.get("course_id")) or "",
        score=_number(document.get("score")),
        max_score=_number(document.get("max_score")),
        category=document.get("category") or DEFAULT_CATEGORY,
        weight=DEFAULT_WEIGHT if weight is None else weight,
        created_at=document.get("created_at"),
        grade_id=ref_id(document.get("_id")),
        assignment_name=document.get("assignment_name"),
    )


def to_course_meta(document) -> CourseMeta:
    """Normalize a stored course into the aggregator's course metadata."""

    return CourseMeta(
        course_id=ref_id(document.get("_id")) or "",
        credits=document.get("credits"),
        status=document.get("status") or STATUS_IN_PROGRESS,
        completed_at=document.get("completed_at"),
        code=document.get("code"),
        name=document.get("name"),
    )


__all__ = [
    "get_db",
    "get_users_collection",
    "get_courses_collection",
    "get_grades_collection",
    "get_assignments_collection",
    "id_candidates",
    "id_filter",
    "ref_id",
    "serialize_user",
    "serialize_course",
    "serialize_grade",
    "serialize_assignment",
    "to_grade_record",
    "to_course_meta",
]
