"""
REST API Endpoints for tasks.

Endpoints:
    GET    /api/v1/health          - Service health check (public)
    GET    /api/v1/tasks           - List tasks (filter, search, sort, select, paginate)
    GET    /api/v1/tasks/<id>      - Retrieve a single task
    POST   /api/v1/tasks           - Create a task owned by the caller
    PUT    /api/v1/tasks/<id>      - Update a task
    DELETE /api/v1/tasks/<id>      - Delete a task

Every endpoint except the health check requires a bearer token (see
``taskboard.auth.require_auth``).  Single-item endpoints are open to the
task's owner and to admins; any other caller gets a 403.  Listing is
always limited to the caller's own tasks, admins included; the filter,
search, sort and pagination grammar lives in ``taskboard.query``.

Only ``WRITABLE_FIELDS`` are ever bound from a request body.  ``id``,
``owner_id`` and the timestamps are server-assigned and silently ignored
when a client sends them.  Errors are raised as ``taskboard.errors``
exceptions and rendered by the application-wide error translator.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from flask import Blueprint, Response, current_app, g, jsonify, request

from .. import db
from ..auth import get_owned_task, require_auth
from ..errors import BadRequest, ValidationError
from ..models import Task, TaskPriority, TaskStatus, ensure_utc
from ..query import list_tasks, parse_query_args

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__)

# Fields a client may set.  Anything else in a payload (id, owner_id,
# owner, user, created_at, ...) is ignored.
WRITABLE_FIELDS = ("title", "description", "status", "priority", "due_date")


# =====================================================================
# Helper Functions
# =====================================================================


def validate_task_data(
    data: dict[str, Any], required_fields: list[str] | None = None
) -> tuple[bool, str | None]:
    """
    Validate an incoming task payload.

    Checks required fields, that a supplied title is non-blank and at most
    200 characters, enum membership for status/priority, and ISO-8601
    conformance for ``due_date``.

    Returns:
        ``(is_valid, error_message)``; the message is ``None`` when valid.
    """
    if required_fields:
        for field in required_fields:
            value = data.get(field)
            if not value or (isinstance(value, str) and not value.strip()):
                return False, f"'{field}' is required"

    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not title.strip():
            return False, "'title' is required"
        if len(title) > 200:
            return False, "Title must be 200 characters or less"

    if "description" in data and data["description"] is not None:
        if not isinstance(data["description"], str):
            return False, "description must be a string"

    if "status" in data:
        valid_statuses = [s.value for s in TaskStatus]
        if data["status"] not in valid_statuses:
            return False, f"Invalid status. Must be one of: {valid_statuses}"

    if "priority" in data:
        valid_priorities = [p.value for p in TaskPriority]
        if data["priority"] not in valid_priorities:
            return False, f"Invalid priority. Must be one of: {valid_priorities}"

    if "due_date" in data and data["due_date"]:
        try:
            datetime.fromisoformat(data["due_date"].replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            return (
                False,
                "Invalid due_date format. Use ISO format (YYYY-MM-DDTHH:MM:SS)",
            )

    return True, None


def parse_due_date(date_string: str | None) -> datetime | None:
    """Parse an optional ISO-8601 string into a UTC datetime."""
    if not date_string:
        return None
    return ensure_utc(datetime.fromisoformat(date_string.replace("Z", "+00:00")))


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise BadRequest("Request body must be a JSON object")
    return data


# =====================================================================
# API Endpoints
# =====================================================================


@tasks_bp.route("/health", methods=["GET"])
def health_check() -> tuple[Response, int]:
    """Public liveness probe."""
    return (
        jsonify(
            {
                "success": True,
                "status": "healthy",
                "service": "taskboard",
                "environment": os.getenv("ENVIRONMENT", "unknown"),
            }
        ),
        200,
    )


@tasks_bp.route("/tasks", methods=["GET"])
@require_auth
def get_tasks() -> tuple[Response, int]:
    """
    List the caller's tasks.

    See ``taskboard.query`` for the query-string grammar.

    Returns:
        ``{success, count, pagination, data}`` where ``count`` is the total
        number of matches across all pages.
    """
    requester = g.requester
    page = list_tasks(
        requester.id,
        requester.role,
        parse_query_args(request.args),
        default_limit=current_app.config["TASKS_DEFAULT_PAGE_LIMIT"],
        max_limit=current_app.config["TASKS_MAX_PAGE_LIMIT"],
    )
    return (
        jsonify(
            {
                "success": True,
                "count": page.total,
                "pagination": page.pagination,
                "data": page.tasks,
            }
        ),
        200,
    )


@tasks_bp.route("/tasks/<int:task_id>", methods=["GET"])
@require_auth
def get_task(task_id: int) -> tuple[Response, int]:
    """
    Retrieve a single task by id.

    Args:
        task_id: Primary key from the URL path.

    Returns:
        ``{success, data}`` with the full serialised task.  A missing task
        is a 404; a task owned by someone else is a 403 unless the caller
        is an admin.
    """
    task = get_owned_task(task_id, g.requester)
    return jsonify({"success": True, "data": task.to_dict()}), 200


@tasks_bp.route("/tasks", methods=["POST"])
@require_auth
def create_task() -> tuple[Response, int]:
    """
    Create a task owned by the caller.

    Requires ``title``; ``description``, ``status``, ``priority`` and
    ``due_date`` are optional.  A duplicate title surfaces as a 400 from
    the error translator.
    """
    data = _json_body()
    is_valid, error = validate_task_data(data, required_fields=["title"])
    if not is_valid:
        raise ValidationError(error)

    task = Task(
        owner_id=g.requester.id,
        title=data["title"].strip(),
        description=data.get("description"),
        status=data.get("status", TaskStatus.PENDING.value),
        priority=data.get("priority", TaskPriority.MEDIUM.value),
        due_date=parse_due_date(data.get("due_date")),
    )
    db.session.add(task)
    db.session.commit()
    logger.info("Task %s created by user_id=%s", task.id, g.requester.id)
    return jsonify({"success": True, "data": task.to_dict()}), 201


@tasks_bp.route("/tasks/<int:task_id>", methods=["PUT"])
@require_auth
def update_task(task_id: int) -> tuple[Response, int]:
    """
    Update a task.

    Only fields present in the body are changed.  Ownership and system
    fields cannot be modified.
    """
    task = get_owned_task(task_id, g.requester)

    data = _json_body()
    is_valid, error = validate_task_data(data)
    if not is_valid:
        raise ValidationError(error)

    if "title" in data:
        task.title = data["title"].strip()
    if "description" in data:
        task.description = data["description"]
    if "status" in data:
        task.status = data["status"]
    if "priority" in data:
        task.priority = data["priority"]
    if "due_date" in data:
        task.due_date = parse_due_date(data["due_date"])

    ignored = sorted(set(data) - set(WRITABLE_FIELDS))
    if ignored:
        logger.info("Ignoring non-writable fields on task %s: %s", task_id, ignored)

    db.session.commit()
    return jsonify({"success": True, "data": task.to_dict()}), 200


@tasks_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@require_auth
def delete_task(task_id: int) -> tuple[Response, int]:
    """
    Permanently delete a task.

    Same access rule as ``get_task``.  Returns ``{success, data: {}}``.
    """
    task = get_owned_task(task_id, g.requester)
    db.session.delete(task)
    db.session.commit()
    logger.info("Task %s deleted by user_id=%s", task_id, g.requester.id)
    return jsonify({"success": True, "data": {}}), 200
