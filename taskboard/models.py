"""
Database Models for the Taskboard API.

Defines the SQLAlchemy ORM models: ``User`` (credentials and role),
``Task`` (a unit of work owned by exactly one user) and ``RevokedToken``
(JWT ids invalidated by logout), together with the enumerations used for
task status, task priority and user role.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from werkzeug.security import check_password_hash, generate_password_hash

from . import db

# Largest value a SQL BIGINT / SQLite INTEGER column can hold.
SQL_INTEGER_MAX = 2**63 - 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalise a datetime to UTC.

    Naive datetimes are assumed to already represent UTC; aware datetimes
    are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_iso(value: datetime | None) -> str | None:
    """
    Convert a datetime to a UTC ISO-8601 string.

    SQLite does not store timezone information, so values read back from
    the database may be naive even though they were written in UTC.
    """
    if value is None:
        return None
    return ensure_utc(value).isoformat()


class TaskStatus(str, Enum):
    """Task lifecycle statuses."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRole(str, Enum):
    """Roles a user account can hold."""

    USER = "user"
    ADMIN = "admin"


class User(db.Model):
    """
    Registered account.

    Passwords are stored only as Werkzeug hashes and ``to_dict`` never
    includes ``password_hash``.

    Attributes:
        id: Auto-incrementing primary key.
        name: Display name (max 80 chars).
        email: Unique login identifier (max 120 chars).
        phone: Optional unique phone number.
        role: ``user`` or ``admin``.
        password_hash: Werkzeug-generated password hash.
        created_at: Account creation timestamp (UTC).
    """

    __tablename__ = "users"

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(80), nullable=False)
    email: str = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone: str | None = db.Column(db.String(32), unique=True, nullable=True)
    role: str = db.Column(db.String(20), nullable=False, default=UserRole.USER.value)
    password_hash: str = db.Column(db.String(256), nullable=False)
    created_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )

    tasks = db.relationship("Task", back_populates="owner", cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def to_summary(self) -> dict[str, Any]:
        """Return the short owner representation embedded in task payloads."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "created_at": to_utc_iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email}>"


class Task(db.Model):
    """
    Task owned by a single user.

    Attributes:
        id: Auto-incrementing primary key.
        title: Short summary, unique across the whole collection
            (max 200 characters).
        description: Optional longer text.
        status: Lifecycle status (see ``TaskStatus``).
        priority: Importance level (see ``TaskPriority``).
        due_date: Optional timezone-aware deadline.
        owner_id: The owning user.  Set once at creation and never
            reassigned.
        created_at: Creation timestamp (UTC).
        updated_at: Last modification timestamp (UTC).
    """

    __tablename__ = "tasks"

    # Field names a serialised task may contain, in output order.
    SERIALIZED_FIELDS = (
        "id",
        "title",
        "description",
        "status",
        "priority",
        "due_date",
        "owner_id",
        "owner",
        "created_at",
        "updated_at",
    )

    id: int = db.Column(db.Integer, primary_key=True)
    title: str = db.Column(db.String(200), unique=True, nullable=False)
    description: str | None = db.Column(db.Text, nullable=True)
    status: str = db.Column(
        db.String(20), nullable=False, default=TaskStatus.PENDING.value
    )
    priority: str = db.Column(
        db.String(20), nullable=False, default=TaskPriority.MEDIUM.value
    )
    due_date: datetime | None = db.Column(db.DateTime(timezone=True), nullable=True)
    owner_id: int = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    created_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    updated_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    owner = db.relationship("User", back_populates="tasks")

    def to_dict(self, fields: Iterable[str] | None = None) -> dict[str, Any]:
        """
        Serialise the task to a JSON-safe dictionary.

        Args:
            fields: Optional projection.  When given, only these fields
                (plus ``id``, which is always present) are returned;
                names that are not task fields are ignored.

        Returns:
            A dictionary with datetimes rendered as UTC ISO-8601 strings.
        """
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "due_date": to_utc_iso(self.due_date),
            "owner_id": self.owner_id,
            "owner": self.owner.to_summary() if self.owner is not None else None,
            "created_at": to_utc_iso(self.created_at),
            "updated_at": to_utc_iso(self.updated_at),
        }
        if fields is None:
            return data
        wanted = {"id", *fields}
        return {name: data[name] for name in self.SERIALIZED_FIELDS if name in wanted}

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title}>"


class RevokedToken(db.Model):
    """JWT id invalidated by an explicit logout."""

    __tablename__ = "revoked_tokens"

    id: int = db.Column(db.Integer, primary_key=True)
    jti: str = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at: datetime = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at: datetime = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow
    )
