"""Ensure protected endpoints require a session with the right role."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app import app

INSTRUCTOR_ENDPOINTS = [
    ("get", "/api/courses"),
    ("post", "/api/courses"),
    ("put", "/api/courses/CS101"),
    ("delete", "/api/courses/CS101"),
    ("post", "/api/courses/CS101/enroll"),
    ("post", "/api/courses/CS101/unenroll"),
    ("post", "/api/grades"),
    ("put", "/api/grades/507f1f77bcf86cd799439011"),
    ("delete", "/api/grades/507f1f77bcf86cd799439011"),
    ("get", "/api/grades/course/CS101/analytics"),
    ("get", "/api/grades/course/CS101/stats"),
    ("get", "/api/grades/export.csv"),
    ("get", "/api/users/students"),
    ("get", "/api/users/instructors"),
    ("post", "/api/assignments"),
    ("put", "/api/assignments/507f1f77bcf86cd799439011"),
    ("delete", "/api/assignments/507f1f77bcf86cd799439011"),
]

LOGIN_ENDPOINTS = [
    ("get", "/api/courses/my"),
    ("get", "/api/courses/CS101"),
    ("get", "/api/grades"),
    ("get", "/api/grades/507f1f77bcf86cd799439011"),
    ("get", "/api/grades/gpa"),
    ("get", "/api/grades/analytics"),
    ("get", "/api/assignments/course/CS101"),
    ("get", "/api/assignments/upcoming"),
]


class RoleRequirementTestCase(unittest.TestCase):
    """Verify that endpoints reject anonymous users and the wrong role."""

    def setUp(self) -> None:
        app.config["TESTING"] = True
        self.client = app.test_client()

    def _login_as(self, role: str) -> None:
        with self.client.session_transaction() as sess:
            sess["user_id"] = "u-1"
            sess["role"] = role

    def _request(self, method: str, path: str):
        http_method = getattr(self.client, method)
        request_kwargs = {}
        if method in {"post", "put"}:
            request_kwargs["json"] = {}
        return http_method(path, **request_kwargs)

    def test_anonymous_requests_are_unauthorized(self) -> None:
        for method, path in INSTRUCTOR_ENDPOINTS + LOGIN_ENDPOINTS:
            with self.subTest(method=method, path=path):
                response = self._request(method, path)
                self.assertEqual(401, response.status_code)
                self.assertEqual({"error": "unauthorized"}, response.get_json())

    def test_students_cannot_use_instructor_endpoints(self) -> None:
        self._login_as("student")
        for method, path in INSTRUCTOR_ENDPOINTS:
            with self.subTest(method=method, path=path):
                response = self._request(method, path)
                self.assertEqual(403, response.status_code)
                self.assertEqual({"error": "forbidden"}, response.get_json())

    def test_unknown_role_in_session_is_treated_as_anonymous(self) -> None:
        self._login_as("superuser")
        response = self.client.get("/api/grades/gpa")
        self.assertEqual(401, response.status_code)

    def test_me_reports_session_state(self) -> None:
        self.assertEqual({"authenticated": False}, self.client.get("/api/auth/me").get_json())

        self._login_as("instructor")
        self.assertEqual(
            {"authenticated": True, "id": "u-1", "role": "instructor"},
            self.client.get("/api/auth/me").get_json(),
        )

    def test_health_does_not_require_login(self) -> None:
        response = self.client.get("/api/health")
        self.assertEqual(200, response.status_code)
        self.assertEqual({"ok": True}, response.get_json())


if __name__ == "__main__":
    unittest.main()
