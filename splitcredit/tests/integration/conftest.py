"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against the database named by TEST_DATABASE_URL, defaulting
    to in-memory SQLite. Flask-SQLAlchemy pins in-memory SQLite to a single
    connection, so every session sees the same data.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in reverse FK order so tests are isolated.

Users, groups and pending members are created directly through the models:
registration and group management belong to other services, and these tests
only need rows to point at. Tokens are issued with the same claims the
identity service uses.

Helper functions (not fixtures):
  - make_user(app, ...)          → user id
  - make_group(app, ...)         → group id
  - add_pending(app, ...)        → pending member id
  - auth_headers(app, user_id)   → {"Authorization": "Bearer <token>"}
  - post_expense(client, ...)    → HTTP response
  - post_settlement(client, ...) → HTTP response
  - age_settlement(app, ...)     → backdates a settlement's created_at

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from splitcredit.app import create_app
from splitcredit.app.extensions import db as _db
from splitcredit.app.middleware.auth_middleware import issue_access_token
from splitcredit.app.models.group import Currency, Group
from splitcredit.app.models.membership import Membership
from splitcredit.app.models.pending_member import PendingMember, PendingMembership
from splitcredit.app.models.settlement import Settlement
from splitcredit.app.models.user import User


_phone_numbers = count(9000000001)


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the entire test session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        for table in reversed(_db.metadata.sorted_tables):
            _db.session.execute(table.delete())
        _db.session.commit()


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(app, name: str = "Asha", phone_number: str | None = None) -> int:
    """Inserts a registered user and returns its id."""
    if phone_number is None:
        phone_number = f"+91{next(_phone_numbers)}"
    with app.app_context():
        user = User(name=name, phone_number=phone_number)
        _db.session.add(user)
        _db.session.commit()
        return user.id


def make_group(
    app,
    owner_id: int,
    member_ids: list[int] = (),
    name: str = "Flat 4B",
    currency: Currency = Currency.INR,
) -> int:
    """Inserts a group with the owner as its first member, then the others in order."""
    with app.app_context():
        group = Group(name=name, owner_user_id=owner_id, currency=currency)
        _db.session.add(group)
        _db.session.flush()
        for user_id in [owner_id, *member_ids]:
            _db.session.add(Membership(user_id=user_id, group_id=group.id))
            _db.session.flush()
        _db.session.commit()
        return group.id


def add_pending(
    app,
    group_id: int,
    added_by: int,
    phone_number: str,
    display_name: str = "Ravi",
) -> int:
    """
    Adds a not-yet-registered contact to a group. One PendingMember per
    phone number is reused across groups. Returns the pending member id.
    """
    with app.app_context():
        pending = _db.session.execute(
            _db.select(PendingMember).where(PendingMember.phone_number == phone_number)
        ).scalar_one_or_none()
        if pending is None:
            pending = PendingMember(
                phone_number=phone_number,
                display_name=display_name,
                added_by_user_id=added_by,
            )
            _db.session.add(pending)
            _db.session.flush()
        _db.session.add(PendingMembership(
            pending_member_id=pending.id,
            group_id=group_id,
            added_by_user_id=added_by,
        ))
        _db.session.commit()
        return pending.id


def token_for(app, user_id: int, ttl: timedelta = timedelta(minutes=15)) -> str:
    return issue_access_token(
        user_id,
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config["JWT_ALGORITHM"],
        ttl=ttl,
    )


def auth_headers(app, user_id: int) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token_for(app, user_id)}"}


def post_expense(client, app, user_id: int, group_id: int, **payload):
    """
    Creates an expense and returns the HTTP response.
    For split_mode='equal', do not pass splits (the server computes them).
    """
    payload.setdefault("title", "Test Expense")
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(app, user_id),
    )


def post_settlement(client, app, user_id: int, group_id: int, to_user_id: int,
                    amount: str, **extra):
    """POSTs a settlement from user_id and returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/settlements",
        json={"to_user_id": to_user_id, "amount": amount, **extra},
        headers=auth_headers(app, user_id),
    )


def age_settlement(app, settlement_id: int, days: float,
                   now: datetime | None = None) -> datetime:
    """Moves a settlement's created_at `days` into the past. Returns the new value."""
    now = now or datetime.now(timezone.utc)
    created_at = now - timedelta(days=days)
    with app.app_context():
        settlement = _db.session.get(Settlement, settlement_id)
        settlement.created_at = created_at
        _db.session.commit()
    return created_at
