"""
Shared pytest fixtures for the Driver Logbook tests.
Uses an in-memory SQLite database so tests never touch production data.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from datetime import date

from app import app as flask_app, limiter
from models import db as _db, User, DailyReport


@pytest.fixture(scope="session")
def app():
    """Create the Flask application with a test config."""
    flask_app.config.update(
        {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "SECRET_KEY": "test-secret",
            "MAIL_ENABLED": False,
            "LOGIN_DISABLED": False,
            "RATELIMIT_ENABLED": False,
            "ODOMETER_ROLLOVER_MAX": None,
            "MAX_SHIFT_HOURS": 20,
        }
    )
    limiter.enabled = False
    with flask_app.app_context():
        _db.create_all()
        yield flask_app
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_db(app):
    """Run each test in its own app context and empty every table afterwards."""
    with app.app_context():
        yield
        _db.session.rollback()
        for table in reversed(_db.metadata.sorted_tables):
            _db.session.execute(table.delete())
        _db.session.commit()
        _db.session.remove()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db_session(app):
    """Provide the SQLAlchemy session for direct model tests."""
    return _db.session


# ── Helper: Create Users & Reports ───────────────────────────────────────────


def make_user(email="driver@test.org", display_name="山田 太郎", password="password123", **kwargs):
    user = User(email=email, display_name=display_name, **kwargs)
    user.set_password(password)
    _db.session.add(user)
    _db.session.commit()
    return user


def make_report(user, day, **fields):
    """Persist a report for *user*; *day* may be a date or an ISO string."""
    if isinstance(day, str):
        day = date.fromisoformat(day)
    fields.setdefault("is_worked", True)
    report = DailyReport(user_id=user.id, date=day, **fields)
    report.refresh_distance()
    _db.session.add(report)
    _db.session.commit()
    return report


@pytest.fixture()
def driver_user(app):
    return make_user()


@pytest.fixture()
def other_user(app):
    return make_user(email="other@test.org", display_name="佐藤 花子")


# ── Helper: Login ────────────────────────────────────────────────────────────


def login(client, email="driver@test.org", password="password123"):
    """Log in via the login form and return the response."""
    return client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=True,
    )
