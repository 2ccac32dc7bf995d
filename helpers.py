"""
Shared helpers used across blueprints.

Role decorators, course access checks and the gateway error → HTTP mapping.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, jsonify, request
from flask_login import current_user

from ai_resilience import (
    ConfigurationError,
    EmptyResultError,
    LLMError,
    MalformedResponseError,
    RetriesExhaustedError,
    TransientProviderError,
    UpstreamError,
)
from db_stores import CourseStoreDB

logger = logging.getLogger(__name__)


def current_user_id() -> int:
    return current_user.id


def teacher_required(f: Callable) -> Callable:
    """Decorator that requires the user to have the teacher role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        if getattr(current_user, "role", "student") != "teacher":
            abort(403)
        return f(*args, **kwargs)
    return decorated


def student_required(f: Callable) -> Callable:
    """Decorator that requires the user to have the student role."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        if getattr(current_user, "role", "student") != "student":
            abort(403)
        return f(*args, **kwargs)
    return decorated


def owned_course_or_404(course_id) -> dict:
    """The course, if the current teacher owns it."""
    try:
        course = CourseStoreDB.get(int(course_id))
    except (TypeError, ValueError, OverflowError):
        abort(404)
    if not course or course["teacherId"] != current_user_id():
        abort(404)
    return course


def visible_course_or_404(course_id) -> dict:
    """The course, if the current user teaches it or is enrolled in it."""
    try:
        course = CourseStoreDB.get(int(course_id))
    except (TypeError, ValueError, OverflowError):
        abort(404)
    if not course:
        abort(404)
    uid = current_user_id()
    if course["teacherId"] != uid and not CourseStoreDB.is_enrolled(course["id"], uid):
        abort(404)
    return course


def gateway_error_status(exc: LLMError) -> int:
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, (TransientProviderError, RetriesExhaustedError)):
        return 429 if getattr(exc, "status_code", None) == 429 else 503
    if isinstance(exc, EmptyResultError):
        return 422
    if isinstance(exc, (MalformedResponseError, UpstreamError)):
        return 502
    return 500


def handle_gateway_error(exc: LLMError):
    """Flask error handler: gateway failures become JSON errors."""
    status = gateway_error_status(exc)
    logger.error("LLM gateway error (%s -> %d): %s", type(exc).__name__, status, exc)
    return jsonify({"error": str(exc), "kind": type(exc).__name__}), status


def json_error(code: int, message: str):
    return jsonify({"error": message}), code


def json_body() -> dict:
    """The request's JSON object; a missing or non-object body reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def str_field(data: dict, key: str, default: str | None = "", allow_number: bool = False) -> str | None:
    """A trimmed string field from a JSON body.

    Missing or null gives default. Any other non-string aborts with 400,
    except plain numbers when allow_number is set (grade levels arrive as 3).
    """
    value = data.get(key)
    if value is None:
        return default
    if allow_number and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        abort(400, description=f"{key} must be a string")
    return value.strip()
