"""Application route blueprints and helpers."""

from .assignments import assignments_bp
from .auth import auth_bp, current_user, require_login, require_role
from .courses import courses_bp
from .grades import grades_bp
from .reports import reports_bp
from .users import users_bp

BLUEPRINTS = (auth_bp, users_bp, courses_bp, grades_bp, reports_bp, assignments_bp)

__all__ = [
    "BLUEPRINTS",
    "assignments_bp",
    "auth_bp",
    "courses_bp",
    "current_user",
    "grades_bp",
    "reports_bp",
    "require_login",
    "require_role",
    "users_bp",
]
