from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ADDICTION_TYPES = ["alcohol", "cigarette", "pornography", "sugar", "games", "social_media", "other"]
ADDICTION_DURATIONS = ["<1", "1-3", "3-5", "+5"]
MAIN_TRIGGERS = ["stress", "boredom", "anxiety", "environment", "friends", "other"]
MAIN_GOALS = ["stop", "reduce", "control", "understand"]


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password = db.Column(db.String(120))  # null for users created through a one-time code
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sessions = db.relationship("AuthSession", backref="user", lazy=True, cascade="all, delete-orphan")


class AuthSession(db.Model):
    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)


class AuthCode(db.Model):
    code = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)


class Profile(db.Model):
    id = db.Column(db.Integer, db.ForeignKey("user.id"), primary_key=True)
    addiction_type = db.Column(db.String(20), nullable=False)
    addiction_duration = db.Column(db.String(10), nullable=False)
    main_trigger = db.Column(db.String(20), nullable=False)
    main_goal = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Streak(db.Model):
    # One active streak per user; the relapse sequence relies on this index.
    __table_args__ = (
        db.Index(
            "ix_streak_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=db.text("is_active"),
            postgresql_where=db.text("is_active"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime)
    days_count = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Relapse(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    relapse_date = db.Column(db.DateTime, nullable=False)
    trigger = db.Column(db.String(120))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
