"""Role and ownership rules for courses and grades.

The rules take the acting user explicitly; route handlers build a
:class:`CurrentUser` from the session and pass it in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .db import ref_id

ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STUDENT, ROLE_INSTRUCTOR, ROLE_ADMIN)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT

    @property
    def is_instructor(self) -> bool:
        return self.role == ROLE_INSTRUCTOR

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def owns_course(user: CurrentUser, course: Mapping[str, Any]) -> bool:
    return user.is_instructor and ref_id(course.get("instructor_id")) == user.id


def is_enrolled(course: Mapping[str, Any], student_id: str | None) -> bool:
    if not student_id:
        return False
    students = course.get("students") or []
    return any(ref_id(entry) == student_id for entry in students)


def can_view_course(user: CurrentUser, course: Mapping[str, Any]) -> bool:
    return user.is_admin or owns_course(user, course) or is_enrolled(course, user.id)


def can_view_grade(user: CurrentUser, grade: Mapping[str, Any], course: Mapping[str, Any] | None) -> bool:
    if user.is_admin:
        return True
    if user.is_student:
        return ref_id(grade.get("student_id")) == user.id
    return course is not None and owns_course(user, course)


def can_manage_grade(user: CurrentUser, course: Mapping[str, Any] | None) -> bool:
    """Only the instructor teaching the course may add, edit or remove grades."""

    return course is not None and owns_course(user, course)


def can_view_student(user: CurrentUser, student_id: str, courses: Iterable[Mapping[str, Any]]) -> bool:
    """Students see themselves; instructors see students enrolled with them."""

    if user.is_admin or user.id == student_id:
        return True
    if not user.is_instructor:
        return False
    return any(owns_course(user, course) and is_enrolled(course, student_id) for course in courses)


__all__ = [
    "ROLE_STUDENT",
    "ROLE_INSTRUCTOR",
    "ROLE_ADMIN",
    "ROLES",
    "CurrentUser",
    "owns_course",
    "is_enrolled",
    "can_view_course",
    "can_view_grade",
    "can_manage_grade",
    "can_view_student",
]
