"""Test helper functions shared by the Taskboard test suites."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _generate_rsa_key_pair() -> tuple[str, str]:
    """Generate an in-memory RSA private/public key pair as PEM strings."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


DEFAULT_PASSWORD = "s3cret-password"

# Generated once per test process and handed to the app through TEST_JWT_*.
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = _generate_rsa_key_pair()


def generate_throwaway_key_pair() -> tuple[str, str]:
    """Generate a fresh RSA key pair for negative-path tests."""
    return _generate_rsa_key_pair()


def build_claims(
    user_id: int = 1,
    role: str = "user",
    *,
    expired: bool = False,
    jti: str | None = None,
) -> dict[str, Any]:
    """Build a complete claim set with a one-hour lifetime."""
    now = datetime.now(timezone.utc)
    expiry_time = now - timedelta(hours=1) if expired else now + timedelta(hours=1)
    return {
        "user_id": int(user_id),
        "role": role,
        "jti": jti or uuid.uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int(expiry_time.timestamp()),
    }


def encode_token(
    payload: dict[str, Any],
    private_key: str = TEST_PRIVATE_KEY,
    algorithm: str = "RS256",
) -> str:
    return jwt.encode(payload, private_key, algorithm=algorithm)


def auth_headers(token: str) -> dict[str, str]:
    """Build JSON API headers with bearer token auth."""
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
