"""
Driver Logbook
SQLAlchemy models for User and DailyReport.
"""

import secrets
from datetime import datetime, timedelta, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

from calculations import calculate_distance

db = SQLAlchemy()

RESET_TOKEN_LIFETIME = timedelta(hours=24)


def _utcnow():
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# User  (authentication)
# ---------------------------------------------------------------------------
class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    is_active_user = db.Column(db.Boolean, nullable=False, default=True)
    reset_token = db.Column(db.String(100), unique=True, nullable=True)
    reset_token_expires = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    # Relationships
    reports = db.relationship(
        "DailyReport",
        backref="user",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def generate_reset_token(self):
        """Create a single-use password-reset token valid for 24 hours."""
        self.reset_token = secrets.token_urlsafe(32)
        self.reset_token_expires = datetime.now(timezone.utc).replace(tzinfo=None) + RESET_TOKEN_LIFETIME
        return self.reset_token

    def clear_reset_token(self):
        self.reset_token = None
        self.reset_token_expires = None

    @classmethod
    def verify_reset_token(cls, token):
        """Return the user owning *token*, or None if it is unknown or expired."""
        if not token:
            return None
        user = cls.query.filter_by(reset_token=token).first()
        if user is None or user.reset_token_expires is None:
            return None
        if user.reset_token_expires < datetime.now(timezone.utc).replace(tzinfo=None):
            return None
        return user

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------------
# DailyReport
# ---------------------------------------------------------------------------
class DailyReport(db.Model):
    __tablename__ = "daily_reports"
    __table_args__ = (
        db.UniqueConstraint("user_id", "date", name="uq_daily_reports_user_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    is_worked = db.Column(db.Boolean, nullable=False, default=True)

    start_time = db.Column(db.String(5), nullable=True)  # HH:MM
    end_time = db.Column(db.String(5), nullable=True)

    start_odometer = db.Column(db.Float, nullable=True)
    end_odometer = db.Column(db.Float, nullable=True)
    distance_km = db.Column(db.Float, nullable=True)  # cached, recomputed on save

    deliveries = db.Column(db.Integer, nullable=True)
    highway_fee = db.Column(db.Integer, nullable=True)  # yen
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def refresh_distance(self, rollover_max=None):
        """Recompute the cached ``distance_km`` from the odometer readings."""
        if self.is_worked:
            self.distance_km = calculate_distance(
                self.start_odometer, self.end_odometer, rollover_max=rollover_max
            )
        else:
            self.distance_km = None
        return self.distance_km

    def clear_work_details(self):
        """Days off carry no work data."""
        self.start_time = None
        self.end_time = None
        self.start_odometer = None
        self.end_odometer = None
        self.distance_km = None
        self.deliveries = None
        self.highway_fee = None

    def __repr__(self):
        return f"<DailyReport {self.id} – {self.date} user={self.user_id}>"


# ---------------------------------------------------------------------------
# Query helpers  (every query is scoped to the owning user)
# ---------------------------------------------------------------------------
def reports_for_user(user_id, period=None):
    """Return a query of *user_id*'s reports, optionally limited to *period*."""
    query = DailyReport.query.filter(DailyReport.user_id == user_id)
    if period is not None:
        query = query.filter(
            DailyReport.date >= period.start,
            DailyReport.date <= period.end,
        )
    return query


def get_report_by_date(user_id, day):
    return reports_for_user(user_id).filter(DailyReport.date == day).first()


def latest_end_odometer(user_id):
    """
    End odometer of the most recent worked day, used to pre-fill the start
    reading of a new report. Returns None when there is no such report.
    """
    report = (
        reports_for_user(user_id)
        .filter(DailyReport.is_worked.is_(True), DailyReport.end_odometer.isnot(None))
        .order_by(DailyReport.date.desc())
        .first()
    )
    return report.end_odometer if report else None
