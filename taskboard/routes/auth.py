"""
Authentication API endpoints.

Endpoints:
    POST /api/v1/auth/register  -- Create an account and receive a JWT.
    POST /api/v1/auth/login     -- Authenticate and receive a JWT.
    GET  /api/v1/auth/me        -- Return the authenticated user.
    POST /api/v1/auth/logout    -- Revoke the presented JWT.

Tokens are RS256 JWTs carrying ``user_id``, ``role`` and a unique ``jti``;
see ``taskboard.auth`` for issuing and verification.  Registration always
creates an ordinary ``user`` account, whatever role the body asks for.
Login failures share one message so the response does not reveal which
emails are registered.  Logout stores the token's ``jti`` in the
``revoked_tokens`` denylist and prunes entries whose tokens have expired.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import select

from .. import db
from ..auth import create_token, prune_revoked_tokens, require_auth
from ..errors import BadRequest, Unauthorized, ValidationError
from ..models import RevokedToken, User, UserRole

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def _validate_required_fields(data: dict[str, Any], required_fields: list[str]) -> str | None:
    """Return an error for the first missing or blank field, else ``None``."""
    for field in required_fields:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            return f"'{field}' is required"
    return None


def _token_response(user: User, status_code: int) -> tuple[Response, int]:
    token = create_token(
        user_id=user.id,
        role=user.role,
        private_key=current_app.config["JWT_PRIVATE_KEY"],
        expiry_hours=current_app.config["JWT_EXPIRY_HOURS"],
    )
    return jsonify({"success": True, "token": token, "user": user.to_dict()}), status_code


@auth_bp.route("/register", methods=["POST"])
def register() -> tuple[Response, int]:
    """
    Register a new account.

    Expects ``name``, ``email`` and ``password``; ``phone`` is optional.
    New accounts always get the ``user`` role, whatever the body says.
    Duplicate email or phone surfaces as a 400 from the error translator.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")

    missing = _validate_required_fields(data, ["name", "email", "password"])
    if missing:
        raise ValidationError(missing)

    name = data["name"].strip()
    email = data["email"].strip().lower()
    password = data["password"]
    phone = data.get("phone")
    if phone is not None and not isinstance(phone, str):
        raise ValidationError("phone must be a string")
    phone = phone.strip() if phone else None

    if len(name) > 80:
        raise ValidationError("name must be 80 characters or less")
    if len(email) > 120:
        raise ValidationError("email must be 120 characters or less")
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("Please add a valid email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

    user = User(name=name, email=email, phone=phone, role=UserRole.USER.value)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    logger.info("Registered user_id=%s", user.id)

    return _token_response(user, 201)


@auth_bp.route("/login", methods=["POST"])
def login() -> tuple[Response, int]:
    """
    Authenticate with ``email`` and ``password``.

    The same message is returned for an unknown email and a wrong password.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")

    missing = _validate_required_fields(data, ["email", "password"])
    if missing:
        raise ValidationError(missing)

    email = data["email"].strip().lower()
    user = db.session.scalar(select(User).where(User.email == email))
    if user is None or not user.check_password(data["password"]):
        raise Unauthorized("Invalid credentials")

    return _token_response(user, 200)


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me() -> tuple[Response, int]:
    """Return the authenticated user's profile (never the password hash)."""
    return jsonify({"success": True, "data": g.current_user.to_dict()}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout() -> tuple[Response, int]:
    """
    Revoke the token used for this request.

    The token's ``jti`` is added to the denylist so it fails ``require_auth``
    from now on; other tokens of the same user stay valid.  Denylist rows
    for tokens that have expired in the meantime are dropped at the same
    time.
    """
    claims = g.token_claims
    pruned = prune_revoked_tokens()
    db.session.add(
        RevokedToken(
            jti=claims["jti"],
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )
    )
    db.session.commit()
    logger.info(
        "Revoked token for user_id=%s (pruned %d expired entries)", claims["user_id"], pruned
    )
    return jsonify({"success": True, "data": {}}), 200
