"""Shared JSON response helpers for the route blueprints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from flask import jsonify
from pymongo.errors import PyMongoError

from ..config import ConfigError

logger = logging.getLogger(__name__)


def json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def validation_error(errors: Dict[str, str]):
    details = {k: v for k, v in errors.items() if k != "_global"}
    message = errors.get("_global", "Validation failed.")
    return json_error(message, 400, details if details else None)


def clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def clean_string_or_none(value: Any) -> str | None:
    cleaned = clean_string(value)
    return cleaned if cleaned else None


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp, accepting a trailing ``Z``; raises ValueError."""

    text = clean_string(value)
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def handle_config_error(exc: ConfigError):
    logger.exception("Missing configuration for MongoDB")
    return json_error(str(exc), 500)


def handle_db_error(action: str, exc: PyMongoError):
    logger.exception("%s due to MongoDB error", action)
    return json_error("Database unavailable. Please try again later.", 503)


__all__ = [
    "json_error",
    "validation_error",
    "clean_string",
    "clean_string_or_none",
    "parse_iso_datetime",
    "handle_config_error",
    "handle_db_error",
]
