"""Grade aggregation and GPA computations.

Everything here is a pure function of its arguments. Callers fetch the grade
and course snapshot, convert documents with :mod:`gradebook.db`, and hand the
normalized records in; nothing is read from the session or the database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

DEFAULT_CREDITS = 3
DEFAULT_WEIGHT = 10.0
DEFAULT_CATEGORY = "Assignment"
UNCATEGORIZED = "Other"

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_ARCHIVED = "archived"
COURSE_STATUSES: Tuple[str, ...] = (STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_ARCHIVED)

GPA_SCALE: Tuple[Tuple[float, float], ...] = (
    (90.0, 4.0),
    (85.0, 3.7),
    (80.0, 3.3),
    (75.0, 3.0),
    (70.0, 2.7),
    (65.0, 2.3),
    (60.0, 2.0),
    (55.0, 1.7),
    (50.0, 1.0),
)

LETTER_SCALE: Tuple[Tuple[float, str], ...] = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)

DISTRIBUTION_LABELS: Tuple[Tuple[str, str], ...] = (
    ("A", "A (90-100%)"),
    ("B", "B (80-89%)"),
    ("C", "C (70-79%)"),
    ("D", "D (60-69%)"),
    ("F", "F (0-59%)"),
)


class AggregationError(ValueError):
    """Base class for errors raised while aggregating grades."""


class InvalidGradeError(AggregationError):
    """Raised when a grade record cannot produce a percentage."""


class MissingCourseError(AggregationError):
    """Raised when a grade references a course absent from the snapshot."""

    def __init__(self, course_id: str) -> None:
        super().__init__(f"No course metadata supplied for course '{course_id}'.")
        self.course_id = course_id


def round_half_up(value: float, digits: int = 2) -> float:
    """Round like ``Number.toFixed`` does for display, not banker's rounding."""

    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GradeRecord:
    student_id: str
    course_id: str
    score: float
    max_score: float
    category: str = DEFAULT_CATEGORY
    weight: float = DEFAULT_WEIGHT
    created_at: datetime | None = None
    grade_id: str | None = None
    assignment_name: str | None = None

    def __post_init__(self) -> None:
        if self.max_score is None or not math.isfinite(self.max_score) or self.max_score <= 0:
            raise InvalidGradeError(
                f"Grade {self.grade_id or '(unsaved)'} has maxScore {self.max_score!r}; it must be a finite positive number."
            )
        if self.score is None or not math.isfinite(self.score) or self.score < 0:
            raise InvalidGradeError(
                f"Grade {self.grade_id or '(unsaved)'} has score {self.score!r}; it must be a finite, non-negative number."
            )
        if self.weight is not None and not math.isfinite(self.weight):
            raise InvalidGradeError(
                f"Grade {self.grade_id or '(unsaved)'} has weight {self.weight!r}; it must be finite."
            )

    @property
    def percentage(self) -> float:
        return (self.score / self.max_score) * 100


@dataclass(frozen=True)
class CourseMeta:
    course_id: str
    credits: Any = DEFAULT_CREDITS
    status: str = STATUS_IN_PROGRESS
    completed_at: datetime | None = None
    code: str | None = None
    name: str | None = None

    @property
    def effective_credits(self) -> int:
        """Credits counted towards GPA; missing or unusable values count as 3."""

        if isinstance(self.credits, bool):
            return DEFAULT_CREDITS
        try:
            value = int(self.credits)
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_CREDITS
        return value if value > 0 else DEFAULT_CREDITS

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED


@dataclass(frozen=True)
class CourseAggregate:
    course_id: str
    course_code: str | None
    course_name: str | None
    credits: int
    status: str
    completed_at: datetime | None
    percentage: float
    points: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "courseId": self.course_id,
            "courseCode": self.course_code,
            "courseName": self.course_name,
            "credits": self.credits,
            "status": self.status,
            "completedAt": _isoformat(self.completed_at),
            "percentage": self.percentage,
            "points": self.points,
        }


@dataclass(frozen=True)
class GpaResult:
    gpa: float = 0.0
    total_credits: int = 0
    breakdown: Tuple[CourseAggregate, ...] = field(default_factory=tuple)
    projected_gpa: float = 0.0
    projected_total_credits: int = 0

    @property
    def completed_courses(self) -> List[CourseAggregate]:
        return [row for row in self.breakdown if row.status == STATUS_COMPLETED]

    @property
    def in_progress_courses(self) -> List[CourseAggregate]:
        return [row for row in self.breakdown if row.status != STATUS_COMPLETED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gpa": self.gpa,
            "totalCredits": self.total_credits,
            "breakdown": [row.to_dict() for row in self.breakdown],
            "projectedGpa": self.projected_gpa,
            "projectedTotalCredits": self.projected_total_credits,
            "completedCourses": [row.to_dict() for row in self.completed_courses],
            "inProgressCourses": [row.to_dict() for row in self.in_progress_courses],
        }


@dataclass(frozen=True)
class DistributionBucket:
    label: str
    count: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "count": self.count, "percentage": self.percentage}


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def percentage_to_gpa_point(percentage: float) -> float:
    for threshold, points in GPA_SCALE:
        if percentage >= threshold:
            return points
    return 0.0


def letter_grade(percentage: float) -> str:
    for threshold, letter in LETTER_SCALE:
        if percentage >= threshold:
            return letter
    return "F"


def weighted_course_average(grades: Sequence[GradeRecord]) -> float:
    """Weight-averaged percentage of one student's grades in one course.

    Falls back to the plain mean when no grade carries weight. The result is
    neither rounded nor clamped, so scores above ``max_score`` push it past 100.
    """

    if not grades:
        return 0.0

    total_weight = sum(grade.weight or 0.0 for grade in grades)
    if total_weight > 0:
        weighted = sum(grade.percentage * (grade.weight or 0.0) for grade in grades)
        return weighted / total_weight

    return sum(grade.percentage for grade in grades) / len(grades)


def group_by_course(grades: Iterable[GradeRecord]) -> Dict[str, List[GradeRecord]]:
    groups: Dict[str, List[GradeRecord]] = {}
    for grade in grades:
        groups.setdefault(grade.course_id, []).append(grade)
    return groups


def _credit_weighted_gpa(rows: Iterable[CourseAggregate]) -> Tuple[float, int]:
    quality_points = 0.0
    total_credits = 0
    for row in rows:
        quality_points += row.points * row.credits
        total_credits += row.credits
    if total_credits <= 0:
        return 0.0, 0
    return round_half_up(quality_points / total_credits, 2), total_credits


def compute_gpa(grades: Sequence[GradeRecord], courses: Sequence[CourseMeta]) -> GpaResult:
    """Credit-weighted GPA over completed courses plus a projection over all.

    The projection treats each in-progress course's current weighted average
    as if it were the final grade.
    """

    course_lookup = {course.course_id: course for course in courses}

    breakdown: List[CourseAggregate] = []
    for course_id, course_grades in group_by_course(grades).items():
        course = course_lookup.get(course_id)
        if course is None:
            raise MissingCourseError(course_id)

        percentage = round_half_up(weighted_course_average(course_grades), 2)
        breakdown.append(
            CourseAggregate(
                course_id=course_id,
                course_code=course.code,
                course_name=course.name,
                credits=course.effective_credits,
                status=course.status,
                completed_at=course.completed_at,
                percentage=percentage,
                points=percentage_to_gpa_point(percentage),
            )
        )

    gpa, total_credits = _credit_weighted_gpa(row for row in breakdown if row.status == STATUS_COMPLETED)
    projected_gpa, projected_credits = _credit_weighted_gpa(breakdown)

    return GpaResult(
        gpa=gpa,
        total_credits=total_credits,
        breakdown=tuple(breakdown),
        projected_gpa=projected_gpa,
        projected_total_credits=projected_credits,
    )


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def grade_distribution(percentages: Sequence[float]) -> List[DistributionBucket]:
    counts = {letter: 0 for letter, _ in DISTRIBUTION_LABELS}
    for value in percentages:
        counts[letter_grade(value)] += 1

    total = len(percentages)
    buckets: List[DistributionBucket] = []
    for letter, label in DISTRIBUTION_LABELS:
        count = counts[letter]
        share = round_half_up(count / total * 100, 1) if total else 0.0
        buckets.append(DistributionBucket(label=label, count=count, percentage=share))
    return buckets


def category_breakdown(grades: Iterable[GradeRecord]) -> List[Dict[str, Any]]:
    per_category: Dict[str, List[float]] = {}
    for grade in grades:
        per_category.setdefault(grade.category or UNCATEGORIZED, []).append(grade.percentage)

    return [
        {
            "category": category,
            "average": round_half_up(_mean(values), 2),
            "count": len(values),
        }
        for category, values in per_category.items()
    ]


def _newest_first(grades: Iterable[GradeRecord], limit: int) -> List[GradeRecord]:
    ordered = sorted(
        grades,
        key=lambda grade: (grade.created_at is not None, grade.created_at),
        reverse=True,
    )
    return ordered[: max(limit, 0)]


def _recent_row(grade: GradeRecord, student_names: Mapping[str, str]) -> Dict[str, Any]:
    return {
        "gradeId": grade.grade_id,
        "studentId": grade.student_id,
        "studentName": student_names.get(grade.student_id),
        "courseId": grade.course_id,
        "assignmentName": grade.assignment_name,
        "category": grade.category or UNCATEGORIZED,
        "score": grade.score,
        "maxScore": grade.max_score,
        "percentage": round_half_up(grade.percentage, 2),
        "date": _isoformat(grade.created_at),
    }


def compute_course_analytics(
    grades: Sequence[GradeRecord],
    student_names: Mapping[str, str] | None = None,
    recent_limit: int = 6,
) -> Dict[str, Any]:
    names = student_names or {}
    percentages = [grade.percentage for grade in grades]

    return {
        "averageScore": round_half_up(_mean(percentages), 2),
        "totalGrades": len(grades),
        "totalStudents": len({grade.student_id for grade in grades}),
        "gradeDistribution": [bucket.to_dict() for bucket in grade_distribution(percentages)],
        "byCategory": category_breakdown(grades),
        "recentGrades": [_recent_row(grade, names) for grade in _newest_first(grades, recent_limit)],
    }


def compute_student_analytics(
    grades: Sequence[GradeRecord],
    courses: Sequence[CourseMeta],
    recent_limit: int = 5,
) -> Dict[str, Any]:
    course_lookup = {course.course_id: course for course in courses}

    by_course: List[Dict[str, Any]] = []
    for course_id, course_grades in group_by_course(grades).items():
        course = course_lookup.get(course_id)
        if course is None:
            raise MissingCourseError(course_id)
        average = round_half_up(weighted_course_average(course_grades), 2)
        by_course.append(
            {
                "courseId": course_id,
                "courseCode": course.code,
                "courseName": course.name,
                "average": average,
                "letterGrade": letter_grade(average),
            }
        )

    return {
        "totalGrades": len(grades),
        "averageScore": round_half_up(_mean([grade.percentage for grade in grades]), 2),
        "byCourse": by_course,
        "byCategory": category_breakdown(grades),
        "recentGrades": [_recent_row(grade, {}) for grade in _newest_first(grades, recent_limit)],
    }


def compute_course_stats(grades: Sequence[GradeRecord]) -> Dict[str, Any]:
    if not grades:
        return {"totalGrades": 0, "averageScore": 0, "highestScore": 0, "lowestScore": 0}

    percentages = [grade.percentage for grade in grades]
    return {
        "totalGrades": len(grades),
        "averageScore": round_half_up(_mean(percentages), 2),
        "highestScore": round_half_up(max(percentages), 2),
        "lowestScore": round_half_up(min(percentages), 2),
    }


__all__ = [
    "AggregationError",
    "InvalidGradeError",
    "MissingCourseError",
    "GradeRecord",
    "CourseMeta",
    "CourseAggregate",
    "GpaResult",
    "DistributionBucket",
    "percentage_to_gpa_point",
    "letter_grade",
    "weighted_course_average",
    "compute_gpa",
    "compute_course_analytics",
    "compute_student_analytics",
    "compute_course_stats",
    "grade_distribution",
    "round_half_up",
]
