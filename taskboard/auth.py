"""
JWT helpers, the ``require_auth`` decorator and task access rules.

Tokens are RS256-signed with the configured private key and verified with
the matching public key.  Each token carries a unique ``jti`` so that a
logout can revoke it before it expires.

Token claims:
    - ``user_id`` -- integer primary key of the authenticated user.
    - ``role``    -- ``user`` or ``admin`` at issue time.
    - ``jti``     -- unique token id, checked against ``RevokedToken``.
    - ``iat`` / ``exp`` -- issued-at and expiry (UTC epoch seconds).
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any

import jwt
from flask import current_app, g, request
from sqlalchemy import delete, select

from . import db
from .errors import BadRequest, Forbidden, NotFound, Unauthorized
from .models import SQL_INTEGER_MAX, RevokedToken, Task, User, UserRole

DEFAULT_ALLOWED_ALGORITHMS = ["RS256"]
REQUIRED_TOKEN_CLAIMS = ["user_id", "role", "jti", "iat", "exp"]


@dataclass(frozen=True)
class Requester:
    """Identity of the authenticated caller."""

    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def create_token(
    user_id: int,
    role: str,
    private_key: str,
    expiry_hours: int,
) -> str:
    """
    Create an RS256-signed JWT for *user_id*.

    Raises:
        ValueError: If *user_id* is not positive or *role* is unknown.
    """
    if int(user_id) <= 0:
        raise ValueError("user_id must be a positive integer")
    if role not in {r.value for r in UserRole}:
        raise ValueError(f"unknown role: {role!r}")

    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=int(expiry_hours))
    payload: dict[str, Any] = {
        "user_id": int(user_id),
        "role": role,
        "jti": uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def verify_token(
    token: str,
    public_key: str,
    algorithms: list[str] | None = None,
) -> dict[str, Any] | None:
    """
    Decode and validate a JWT, returning the payload on success.

    Checks signature, expiry, issued-at and presence of every required
    claim, then validates that ``user_id`` is a positive integer and
    ``jti`` a non-empty string.

    Returns:
        The decoded payload, or ``None`` if verification fails.
    """
    try:
        decoded = jwt.decode(
            token,
            public_key,
            algorithms=algorithms or DEFAULT_ALLOWED_ALGORITHMS,
            options={"require": REQUIRED_TOKEN_CLAIMS},
            leeway=int(current_app.config.get("JWT_CLOCK_SKEW_SECONDS", 30)),
        )
    except jwt.InvalidTokenError:
        return None

    user_id = decoded.get("user_id")
    jti = decoded.get("jti")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    if not 0 < user_id <= SQL_INTEGER_MAX:
        return None
    if not isinstance(jti, str) or not jti.strip():
        return None
    return decoded


def is_token_revoked(jti: str) -> bool:
    return db.session.scalar(select(RevokedToken.id).where(RevokedToken.jti == jti)) is not None


def prune_revoked_tokens(now: datetime | None = None) -> int:
    """
    Delete denylist rows whose token has expired anyway.

    A token past ``exp`` (plus the allowed clock skew) is rejected anyway,
    so its ``jti`` no longer needs to be remembered.  The caller commits.

    Returns:
        The number of rows removed.
    """
    leeway = timedelta(seconds=current_app.config.get("JWT_CLOCK_SKEW_SECONDS", 0))
    cutoff = (now or datetime.now(timezone.utc)) - leeway
    result = db.session.execute(
        delete(RevokedToken)
        .where(RevokedToken.expires_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _extract_bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def require_auth(view_func: Callable[..., Any]):
    """
    Decorator that enforces Bearer-token authentication.

    On success the request-scoped ``flask.g`` receives ``current_user``
    (the ``User`` row), ``requester`` (a ``Requester``) and ``token_claims``.
    Handlers pass ``g.requester`` on explicitly to anything that needs it.

    Raises:
        Unauthorized: When the header is missing, the token is invalid,
            expired or revoked, or its user no longer exists.
    """

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        token = _extract_bearer_token()
        if token is None:
            raise Unauthorized("Missing or invalid Authorization header")

        payload = verify_token(
            token,
            current_app.config["JWT_PUBLIC_KEY"],
            algorithms=DEFAULT_ALLOWED_ALGORITHMS,
        )
        if payload is None:
            raise Unauthorized("Invalid or expired token")
        if is_token_revoked(payload["jti"]):
            raise Unauthorized("Token has been revoked")

        user = db.session.get(User, payload["user_id"])
        if user is None:
            raise Unauthorized("User no longer exists")

        # Role comes from the database so a demotion takes effect immediately.
        g.current_user = user
        g.requester = Requester(id=user.id, role=user.role)
        g.token_claims = payload
        return view_func(*args, **kwargs)

    return wrapper


def can_access(task: Task, requester: Requester) -> bool:
    """Return True when *requester* owns *task* or is an admin."""
    return task.owner_id == requester.id or requester.is_admin


def get_owned_task(task_id: int, requester: Requester) -> Task:
    """
    Load a task for a single-item operation.

    Raises:
        BadRequest: The id cannot be stored in a SQL integer column.
        NotFound: No task has this id.
        Forbidden: The task belongs to someone else and the requester is
            not an admin.
    """
    if task_id > SQL_INTEGER_MAX:
        raise BadRequest(f"Invalid task id {task_id}")
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFound(f"Task not found with id of {task_id}")
    if not can_access(task, requester):
        raise Forbidden(f"User {requester.id} is not authorized to access this task")
    return task
