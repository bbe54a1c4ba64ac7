"""
Error taxonomy and the JSON error translator.

Route handlers and the query pipeline raise the ``ApiError`` subclasses
below; persistence-layer failures (unique-constraint violations) and
Werkzeug HTTP errors are left to propagate.  ``register_error_handlers``
installs the single boundary that turns all of them into a
``{"success": false, "error": "..."}`` body with the matching status code.
"""

from __future__ import annotations

import logging
import re

from flask import Flask, Response, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from . import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 500
    default_message = "Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation failed"


class DuplicateKey(ApiError):
    status_code = 400
    default_message = "Duplicate field value entered"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Not authorized to access this route"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Not authorized to access this resource"


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found"


# SQLite: "UNIQUE constraint failed: tasks.title"
# PostgreSQL: 'DETAIL:  Key (title)=(...) already exists.'
_UNIQUE_FIELD_PATTERNS = (
    re.compile(r"UNIQUE constraint failed: \w+\.(\w+)"),
    re.compile(r"Key \((\w+)\)=\("),
)

_DUPLICATE_MESSAGES = {
    "email": "Email already exists. Please use a different email.",
    "phone": "Phone number already exists. Please use a different phone number.",
    "title": "A task with this title already exists. Please use a different title.",
}


def duplicate_key_from_integrity_error(exc: IntegrityError) -> DuplicateKey | None:
    """
    Translate a unique-constraint ``IntegrityError`` into ``DuplicateKey``.

    Returns ``None`` when the error is not a recognisable unique violation.
    """
    detail = str(exc.orig)
    for pattern in _UNIQUE_FIELD_PATTERNS:
        match = pattern.search(detail)
        if match:
            field = match.group(1)
            message = _DUPLICATE_MESSAGES.get(field, f"{field.capitalize()} already exists.")
            return DuplicateKey(message)
    return None


def _error_response(message: str, status_code: int) -> tuple[Response, int]:
    return jsonify({"success": False, "error": message}), status_code


def register_error_handlers(app: Flask) -> None:
    """Install the JSON error translator on *app*."""

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError) -> tuple[Response, int]:
        if error.status_code >= 500:
            logger.error("API error: %s", error.message)
        else:
            logger.info("%s: %s", type(error).__name__, error.message)
        return _error_response(error.message, error.status_code)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError) -> tuple[Response, int]:
        db.session.rollback()
        duplicate = duplicate_key_from_integrity_error(error)
        if duplicate is not None:
            logger.info("Duplicate key: %s", duplicate.message)
            return _error_response(duplicate.message, duplicate.status_code)
        logger.warning("Integrity error: %s", error.orig)
        return _error_response(ValidationError.default_message, ValidationError.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException) -> tuple[Response, int]:
        status_code = error.code or 500
        if status_code == 404:
            return _error_response(NotFound.default_message, 404)
        return _error_response(error.name, status_code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> tuple[Response, int]:
        db.session.rollback()
        logger.exception("Internal server error: %s", error)
        return _error_response("Server Error", 500)
