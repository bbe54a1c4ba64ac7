"""
Shared pytest fixtures for the Taskboard test suite.

Provides the Flask application, test client, per-test database lifecycle,
user and task factories, and bearer-token headers for an ordinary user, a
second user and an admin.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from faker import Faker

from tests.helpers import DEFAULT_PASSWORD, TEST_PRIVATE_KEY, TEST_PUBLIC_KEY, auth_headers

# Must be set before the app package (and config) is imported.
os.environ["FLASK_ENV"] = "testing"
os.environ["TEST_JWT_PRIVATE_KEY"] = TEST_PRIVATE_KEY
os.environ["TEST_JWT_PUBLIC_KEY"] = TEST_PUBLIC_KEY

from taskboard import create_app, db  # noqa: E402
from taskboard.auth import create_token  # noqa: E402
from taskboard.models import Task, TaskPriority, TaskStatus, User, UserRole  # noqa: E402

fake = Faker()


# -----------------------------------------------------------------------------
# Application Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def app():
    """Provide the testing app once for the whole session."""
    application = create_app("testing")
    yield application


@pytest.fixture(scope="function")
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db_session(app):
    """
    Provide a clean database for each test.

    Creates all tables before the test and drops them afterwards so no
    rows leak between tests.
    """
    with app.app_context():
        db.create_all()
        yield db
        db.session.rollback()
        db.drop_all()


# -----------------------------------------------------------------------------
# Identity Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def user_factory(db_session):
    """Return a callable that inserts a ``User`` with Faker defaults."""

    def _create_user(
        *,
        name: str | None = None,
        email: str | None = None,
        role: str = UserRole.USER.value,
        password: str = DEFAULT_PASSWORD,
    ) -> User:
        user = User(
            name=name or fake.name(),
            email=(email or fake.unique.email()).lower(),
            role=role,
        )
        user.set_password(password)
        db_session.session.add(user)
        db_session.session.commit()
        return user

    return _create_user


@pytest.fixture
def user(user_factory) -> User:
    return user_factory(name="User One", email="user.one@example.com")


@pytest.fixture
def other_user(user_factory) -> User:
    return user_factory(name="User Two", email="user.two@example.com")


@pytest.fixture
def admin_user(user_factory) -> User:
    return user_factory(
        name="Admin", email="admin@example.com", role=UserRole.ADMIN.value
    )


@pytest.fixture
def token_for(app):
    """Return a callable that mints a valid token for a ``User``."""

    def _token(target: User) -> str:
        return create_token(
            user_id=target.id,
            role=target.role,
            private_key=app.config["JWT_PRIVATE_KEY"],
            expiry_hours=app.config["JWT_EXPIRY_HOURS"],
        )

    return _token


@pytest.fixture
def api_headers(user, token_for) -> dict[str, str]:
    return auth_headers(token_for(user))


@pytest.fixture
def other_headers(other_user, token_for) -> dict[str, str]:
    return auth_headers(token_for(other_user))


@pytest.fixture
def admin_headers(admin_user, token_for) -> dict[str, str]:
    return auth_headers(token_for(admin_user))


# -----------------------------------------------------------------------------
# Task Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def task_factory(db_session, user):
    """
    Return a callable that inserts a ``Task``.

    Tasks belong to ``user`` unless *owner* is given.  *created_at* can be
    pinned so ordering tests do not depend on insertion timing.
    """

    def _create_task(
        *,
        owner: User | None = None,
        title: str | None = None,
        description: str | None = None,
        status: str = TaskStatus.PENDING.value,
        priority: str = TaskPriority.MEDIUM.value,
        due_date: datetime | None = None,
        created_at: datetime | None = None,
    ) -> Task:
        task = Task(
            owner_id=(owner or user).id,
            title=title or fake.unique.sentence(nb_words=5),
            description=description if description is not None else fake.paragraph(),
            status=status,
            priority=priority,
            due_date=due_date,
        )
        if created_at is not None:
            task.created_at = created_at
        db_session.session.add(task)
        db_session.session.commit()
        return task

    return _create_task


@pytest.fixture
def sample_task(task_factory) -> Task:
    return task_factory(
        title="Sample Task",
        description="This is a sample task for testing",
    )


@pytest.fixture
def twelve_tasks(task_factory) -> list[Task]:
    """
    Twelve tasks for ``user``, one minute apart.

    Returned newest first, which is the default list order.
    """
    base = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    tasks = [
        task_factory(title=f"Task {index:02d}", created_at=base + timedelta(minutes=index))
        for index in range(12)
    ]
    return list(reversed(tasks))


@pytest.fixture
def multiple_tasks(task_factory) -> list[Task]:
    """A varied set of four tasks for ``user`` covering status, priority and due date."""
    return [
        task_factory(
            title="Write quarterly report",
            description="Numbers for the board",
            status=TaskStatus.PENDING.value,
            priority=TaskPriority.HIGH.value,
            due_date=datetime(2025, 1, 5, tzinfo=timezone.utc),
        ),
        task_factory(
            title="Review pull requests",
            description="Backend REPORT tooling",
            status=TaskStatus.IN_PROGRESS.value,
            priority=TaskPriority.MEDIUM.value,
            due_date=datetime(2025, 1, 15, tzinfo=timezone.utc),
        ),
        task_factory(
            title="Plan team offsite",
            description="Book venue",
            status=TaskStatus.COMPLETED.value,
            priority=TaskPriority.LOW.value,
        ),
        task_factory(
            title="Fix login bug",
            description="Users stuck on 100% progress_bar",
            status=TaskStatus.IN_PROGRESS.value,
            priority=TaskPriority.HIGH.value,
            due_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
        ),
    ]


@pytest.fixture
def valid_task_data() -> dict[str, Any]:
    return {
        "title": "Test Task",
        "description": "This is a test task description",
        "status": TaskStatus.PENDING.value,
        "priority": TaskPriority.MEDIUM.value,
        "due_date": (datetime.now(timezone.utc) + timedelta(days=7)).isoformat(),
    }
