"""Tests for the grade, course and account write endpoints with MongoDB mocked."""

from __future__ import annotations

import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app import app
from gradebook.routes.courses import _validate_course_payload
from gradebook.routes.grades import _validate_grade_payload

AUTH = "gradebook.routes.auth"
COURSES = "gradebook.routes.courses"
GRADES = "gradebook.routes.grades"


def owned_course(**overrides):
    course = {
        "_id": "c1",
        "code": "CS102",
        "name": "Data Structures",
        "credits": 4,
        "status": "in-progress",
        "instructor_id": "t1",
        "students": ["s1"],
    }
    course.update(overrides)
    return course


class ClientTestCase(unittest.TestCase):
    def setUp(self) -> None:
        app.config["TESTING"] = True
        self.client = app.test_client()

    def _login_as(self, user_id: str, role: str) -> None:
        with self.client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["role"] = role

    def _patch_collection(self, target: str) -> mock.Mock:
        collection = mock.Mock()
        patcher = mock.patch(target, return_value=collection)
        patcher.start()
        self.addCleanup(patcher.stop)
        return collection


class GradePayloadTestCase(unittest.TestCase):
    def test_non_finite_scores_are_rejected(self) -> None:
        _, errors = _validate_grade_payload(
            {"studentId": "s1", "courseId": "c1", "score": "nan", "maxScore": "inf"},
            require_all=True,
        )
        self.assertEqual({"score", "maxScore"}, set(errors))

    def test_defaults_applied_on_create(self) -> None:
        cleaned, errors = _validate_grade_payload(
            {"studentId": "s1", "courseId": "c1", "score": 17, "maxScore": 20},
            require_all=True,
        )
        self.assertEqual({}, errors)
        self.assertEqual(10.0, cleaned["weight"])
        self.assertEqual("Assignment", cleaned["category"])

    def test_field_rules(self) -> None:
        cases = [
            ({"score": -1}, "score"),
            ({"maxScore": 0}, "maxScore"),
            ({"weight": 101}, "weight"),
            ({"weight": "nan"}, "weight"),
            ({"category": "Essay"}, "category"),
        ]
        for payload, field in cases:
            with self.subTest(payload=payload):
                _, errors = _validate_grade_payload(payload, require_all=False)
                self.assertIn(field, errors)


class CoursePayloadTestCase(unittest.TestCase):
    def test_credit_bounds(self) -> None:
        for credits, valid in ((0, False), (1, True), (6, True), (7, False), ("three", False)):
            with self.subTest(credits=credits):
                _, errors = _validate_course_payload({"credits": credits}, require_all=False)
                self.assertEqual(not valid, "credits" in errors)

    def test_status_and_completed_at(self) -> None:
        _, errors = _validate_course_payload(
            {"status": "done", "completedAt": "next tuesday"}, require_all=False
        )
        self.assertEqual({"status", "completedAt"}, set(errors))

        cleaned, errors = _validate_course_payload(
            {"status": "completed", "completedAt": "2025-12-15T00:00:00Z"}, require_all=False
        )
        self.assertEqual({}, errors)
        self.assertEqual(datetime(2025, 12, 15, tzinfo=timezone.utc), cleaned["completed_at"])

    def test_create_requires_name_and_code(self) -> None:
        cleaned, errors = _validate_course_payload({}, require_all=True)
        self.assertEqual({"name", "code"}, set(errors))
        self.assertEqual(3, cleaned["credits"])


class GradeWriteTestCase(ClientTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.courses = self._patch_collection(f"{GRADES}.get_courses_collection")
        self.grades = self._patch_collection(f"{GRADES}.get_grades_collection")
        self._login_as("t1", "instructor")

    def test_create_grade_applies_defaults_and_letter(self) -> None:
        self.courses.find_one.return_value = owned_course()
        self.grades.insert_one.return_value = mock.Mock(inserted_id="g-new")

        response = self.client.post(
            "/api/grades", json={"studentId": "s1", "courseId": "c1", "score": 17, "maxScore": 20}
        )

        self.assertEqual(201, response.status_code)
        grade = response.get_json()["grade"]
        self.assertEqual("B", grade["letterGrade"])
        self.assertEqual(10.0, grade["weight"])
        self.assertEqual("Assignment", grade["category"])
        self.assertEqual(85.0, grade["percentage"])
        stored = self.grades.insert_one.call_args[0][0]
        self.assertEqual("c1", stored["course_id"])

    def test_create_grade_requires_enrollment(self) -> None:
        self.courses.find_one.return_value = owned_course()

        response = self.client.post(
            "/api/grades", json={"studentId": "s9", "courseId": "c1", "score": 17, "maxScore": 20}
        )

        self.assertEqual(400, response.status_code)
        self.grades.insert_one.assert_not_called()

    def test_create_grade_for_other_instructors_course(self) -> None:
        self.courses.find_one.return_value = owned_course(instructor_id="t2")

        response = self.client.post(
            "/api/grades", json={"studentId": "s1", "courseId": "c1", "score": 17, "maxScore": 20}
        )

        self.assertEqual(403, response.status_code)
        self.grades.insert_one.assert_not_called()

    def test_create_grade_rejects_non_finite_score(self) -> None:
        response = self.client.post(
            "/api/grades", json={"studentId": "s1", "courseId": "c1", "score": "inf", "maxScore": 20}
        )

        self.assertEqual(400, response.status_code)
        self.assertIn("score", response.get_json()["details"])
        self.grades.insert_one.assert_not_called()

    def test_update_recomputes_letter_grade(self) -> None:
        stored = {"_id": "g1", "student_id": "s1", "course_id": "c1", "score": 10, "max_score": 20,
                  "letter_grade": "F"}
        self.grades.find_one.return_value = stored
        self.courses.find_one.return_value = owned_course()

        response = self.client.put("/api/grades/g1", json={"score": 19})

        self.assertEqual(200, response.status_code)
        selector, update = self.grades.update_one.call_args[0]
        self.assertEqual({"_id": "g1"}, selector)
        self.assertEqual(19.0, update["$set"]["score"])
        self.assertEqual("A", update["$set"]["letter_grade"])

    def test_update_rejects_stored_grade_without_max_score(self) -> None:
        self.grades.find_one.return_value = {"_id": "g1", "student_id": "s1", "course_id": "c1",
                                             "score": 10, "max_score": None}
        self.courses.find_one.return_value = owned_course()

        response = self.client.put("/api/grades/g1", json={"score": 5})

        self.assertEqual(400, response.status_code)
        self.assertIn("maxScore", response.get_json()["details"])
        self.grades.update_one.assert_not_called()

    def test_delete_grade(self) -> None:
        self.grades.find_one.return_value = {"_id": "g1", "student_id": "s1", "course_id": "c1"}
        self.courses.find_one.return_value = owned_course()

        response = self.client.delete("/api/grades/g1")

        self.assertEqual(200, response.status_code)
        self.grades.delete_one.assert_called_once_with({"_id": "g1"})


class CourseWriteTestCase(ClientTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.courses = self._patch_collection(f"{COURSES}.get_courses_collection")
        self.grades = self._patch_collection(f"{COURSES}.get_grades_collection")
        self.assignments = self._patch_collection(f"{COURSES}.get_assignments_collection")
        self.users = self._patch_collection(f"{COURSES}.get_users_collection")
        self._login_as("t1", "instructor")

    def test_create_course_defaults(self) -> None:
        self.courses.insert_one.return_value = mock.Mock(inserted_id="c-new")

        response = self.client.post("/api/courses", json={"name": "Calculus I", "code": "math101"})

        self.assertEqual(201, response.status_code)
        stored = self.courses.insert_one.call_args[0][0]
        self.assertEqual("MATH101", stored["code"])
        self.assertEqual(3, stored["credits"])
        self.assertEqual("in-progress", stored["status"])
        self.assertEqual("t1", stored["instructor_id"])
        self.assertNotIn("completed_at", stored)

    def test_create_completed_course_stamps_completion(self) -> None:
        self.courses.insert_one.return_value = mock.Mock(inserted_id="c-new")

        response = self.client.post(
            "/api/courses", json={"name": "Calculus I", "code": "MATH101", "status": "completed"}
        )

        self.assertEqual(201, response.status_code)
        self.assertIsNotNone(self.courses.insert_one.call_args[0][0]["completed_at"])

    def test_create_rejects_completed_at_on_open_course(self) -> None:
        response = self.client.post(
            "/api/courses",
            json={"name": "Calculus I", "code": "MATH101", "completedAt": "2025-12-15T00:00:00Z"},
        )

        self.assertEqual(400, response.status_code)
        self.assertIn("completedAt", response.get_json()["details"])
        self.courses.insert_one.assert_not_called()

    def test_update_rejects_completed_at_on_open_course(self) -> None:
        self.courses.find_one.return_value = owned_course()

        response = self.client.put("/api/courses/c1", json={"completedAt": "2025-12-15T00:00:00Z"})

        self.assertEqual(400, response.status_code)
        self.courses.update_one.assert_not_called()

    def test_update_completed_at_on_completed_course(self) -> None:
        self.courses.find_one.return_value = owned_course(status="completed")

        response = self.client.put("/api/courses/c1", json={"completedAt": "2025-12-15T00:00:00Z"})

        self.assertEqual(200, response.status_code)
        update = self.courses.update_one.call_args[0][1]
        self.assertEqual(datetime(2025, 12, 15, tzinfo=timezone.utc), update["$set"]["completed_at"])

    def test_reopening_course_clears_completion(self) -> None:
        self.courses.find_one.return_value = owned_course(status="completed", completed_at=datetime(2025, 12, 15))

        response = self.client.put("/api/courses/c1", json={"status": "in-progress"})

        self.assertEqual(200, response.status_code)
        update = self.courses.update_one.call_args[0][1]
        self.assertIsNone(update["$set"]["completed_at"])

    def test_update_by_other_instructor(self) -> None:
        self.courses.find_one.return_value = owned_course(instructor_id="t2")

        response = self.client.put("/api/courses/c1", json={"name": "Renamed"})

        self.assertEqual(403, response.status_code)
        self.courses.update_one.assert_not_called()

    def test_delete_course_removes_its_grades_and_assignments(self) -> None:
        self.courses.find_one.return_value = owned_course()
        self.grades.delete_many.return_value = mock.Mock(deleted_count=2)

        response = self.client.delete("/api/courses/c1")

        self.assertEqual(200, response.status_code)
        self.courses.delete_one.assert_called_once_with({"_id": "c1"})
        self.grades.delete_many.assert_called_once_with({"course_id": {"$in": ["c1"]}})
        self.assignments.delete_many.assert_called_once_with({"course_id": {"$in": ["c1"]}})

    def test_delete_by_other_instructor_keeps_grades(self) -> None:
        self.courses.find_one.return_value = owned_course(instructor_id="t2")

        response = self.client.delete("/api/courses/c1")

        self.assertEqual(403, response.status_code)
        self.grades.delete_many.assert_not_called()

    def test_enroll_student(self) -> None:
        self.courses.find_one.return_value = owned_course()
        self.users.find_one.return_value = {"_id": "s2"}

        response = self.client.post("/api/courses/c1/enroll", json={"studentId": "s2"})

        self.assertEqual(200, response.status_code)
        self.courses.update_one.assert_called_once_with({"_id": "c1"}, {"$addToSet": {"students": "s2"}})

    def test_enroll_rejects_duplicates_and_unknown_students(self) -> None:
        self.courses.find_one.return_value = owned_course()
        response = self.client.post("/api/courses/c1/enroll", json={"studentId": "s1"})
        self.assertEqual(400, response.status_code)

        self.users.find_one.return_value = None
        response = self.client.post("/api/courses/c1/enroll", json={"studentId": "s404"})
        self.assertEqual(404, response.status_code)
        self.courses.update_one.assert_not_called()

    def test_enroll_requires_student_id(self) -> None:
        response = self.client.post("/api/courses/c1/enroll", json={})
        self.assertEqual(400, response.status_code)
        self.assertIn("studentId", response.get_json()["details"])

    def test_unenroll_student(self) -> None:
        self.courses.find_one.return_value = owned_course()

        response = self.client.post("/api/courses/c1/unenroll", json={"studentId": "s1"})

        self.assertEqual(200, response.status_code)
        self.courses.update_one.assert_called_once_with({"_id": "c1"}, {"$pull": {"students": "s1"}})


class AccountTestCase(ClientTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.users = self._patch_collection(f"{AUTH}.get_users_collection")

    def test_register_starts_session(self) -> None:
        self.users.insert_one.return_value = mock.Mock(inserted_id="u1")

        response = self.client.post(
            "/api/auth/register",
            json={"email": "Alex@Example.edu", "password": "secret1", "name": "Alex Kim"},
        )

        self.assertEqual(201, response.status_code)
        stored = self.users.insert_one.call_args[0][0]
        self.assertEqual("alex@example.edu", stored["email"])
        self.assertEqual("student", stored["role"])
        self.assertTrue(check_password_hash(stored["password_hash"], "secret1"))
        self.assertEqual(
            {"authenticated": True, "id": "u1", "role": "student"},
            self.client.get("/api/auth/me").get_json(),
        )

    def test_register_validation(self) -> None:
        response = self.client.post(
            "/api/auth/register", json={"email": "nope", "password": "123", "role": "admin"}
        )

        self.assertEqual(400, response.status_code)
        self.assertEqual({"email", "password", "role"}, set(response.get_json()["details"]))
        self.users.insert_one.assert_not_called()

    def test_register_duplicate_email(self) -> None:
        self.users.insert_one.side_effect = DuplicateKeyError("duplicate email")

        response = self.client.post(
            "/api/auth/register", json={"email": "alex@example.edu", "password": "secret1"}
        )

        self.assertEqual(409, response.status_code)

    def test_login(self) -> None:
        self.users.find_one.return_value = {
            "_id": "t1",
            "email": "lee@example.edu",
            "password_hash": generate_password_hash("secret1"),
            "role": "instructor",
        }

        response = self.client.post(
            "/api/auth/login", json={"email": "LEE@example.edu", "password": "secret1"}
        )

        self.assertEqual(200, response.status_code)
        self.users.find_one.assert_called_once_with({"email": "lee@example.edu"})
        self.assertEqual(
            {"authenticated": True, "id": "t1", "role": "instructor"},
            self.client.get("/api/auth/me").get_json(),
        )

    def test_login_wrong_password(self) -> None:
        self.users.find_one.return_value = {
            "_id": "t1",
            "email": "lee@example.edu",
            "password_hash": generate_password_hash("secret1"),
            "role": "instructor",
        }

        response = self.client.post(
            "/api/auth/login", json={"email": "lee@example.edu", "password": "wrong"}
        )

        self.assertEqual(401, response.status_code)
        self.assertEqual({"error": "invalid_credentials"}, response.get_json())
        self.assertEqual({"authenticated": False}, self.client.get("/api/auth/me").get_json())


if __name__ == "__main__":
    unittest.main()
