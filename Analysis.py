import logging
import random
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, redirect
from sqlalchemy.exc import SQLAlchemyError

from Authentication import DASHBOARD_PATH, QUIZ_PATH, session_required
from backend import get_backend
from Quiz import QUESTIONS

logger = logging.getLogger(__name__)

analysis_bp = Blueprint("analysis", __name__)

ACHIEVEMENTS = [
    (1, "First day"),
    (7, "One week"),
    (30, "One month"),
    (90, "Three months"),
    (365, "One year"),
]
RECENT_RELAPSES_LIMIT = 10
QUOTES = [
    "Every clean day is a victory. Stay strong!",
    "You are stronger than your addictions. Believe it!",
    "Progress, not perfection, is the goal.",
    "Your journey inspires others. Keep going!",
    "Every moment of resistance makes you stronger.",
]

_LABELS = {question["field"]: question["options"] for question in QUESTIONS}


def days_clean(start_date, now=None):
    """Whole days elapsed since ``start_date``, truncated, never negative."""
    now = now or datetime.utcnow()
    return max(0, int((now - start_date) / timedelta(days=1)))


def achievements(days):
    return [{"days": threshold, "label": label, "unlocked": days >= threshold} for threshold, label in ACHIEVEMENTS]


def unlocked_thresholds(days):
    return [threshold for threshold, _ in ACHIEVEMENTS if days >= threshold]


def _read(backend, what, query, default):
    try:
        return query()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching {what}: {str(e)}")
        backend.session.rollback()
        return default


def serialize_profile(profile):
    if profile is None:
        return None
    data = {}
    for field in _LABELS:
        value = getattr(profile, field)
        data[field] = value
        data[f"{field}_label"] = _LABELS[field].get(value, value)
    return data


def serialize_streak(streak):
    return {
        "id": streak.id,
        "start_date": streak.start_date.isoformat(),
        "end_date": streak.end_date.isoformat() if streak.end_date else None,
        "days_count": streak.days_count,
        "is_active": streak.is_active,
    }


def serialize_relapse(relapse):
    return {
        "id": relapse.id,
        "relapse_date": relapse.relapse_date.isoformat(),
        "trigger": relapse.trigger,
        "notes": relapse.notes,
    }


def load_dashboard(backend, user_id, now=None):
    """
    Read the dashboard state for ``user_id``.

    Returns ``None`` when the user has no profile yet. Any read that fails is
    logged and replaced by its empty value so the page still renders.
    """
    now = now or datetime.utcnow()
    try:
        profile = backend.profiles.get(user_id)
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching profile: {str(e)}")
        backend.session.rollback()
        profile = None
    else:
        if profile is None:
            return None

    streak = _read(backend, "active streak", lambda: backend.streaks.get_active(user_id), None)
    relapses = _read(backend, "relapses", lambda: backend.relapses.recent(user_id, RECENT_RELAPSES_LIMIT), [])
    total_relapses = _read(backend, "relapse count", lambda: backend.relapses.count(user_id), len(relapses))
    longest_closed = _read(backend, "longest streak", lambda: backend.streaks.longest_closed(user_id), 0)

    days = days_clean(streak.start_date, now) if streak else 0
    logger.debug(f"Dashboard loaded for user {user_id}: {days} days clean, {total_relapses} relapses")
    return {
        "page": "dashboard",
        "quote": random.choice(QUOTES),
        "profile": serialize_profile(profile),
        "streak": serialize_streak(streak) if streak else None,
        "days_clean": days,
        "achievements": achievements(days),
        "relapses": [serialize_relapse(relapse) for relapse in relapses],
        "stats": {
            "total_relapses": total_relapses,
            "longest_streak": max(longest_closed, days),
            "main_trigger": profile.main_trigger if profile else None,
        },
    }


@analysis_bp.route(DASHBOARD_PATH, methods=["GET"])
@session_required
def dashboard(user_id):
    payload = load_dashboard(get_backend(), user_id)
    if payload is None:
        return redirect(QUIZ_PATH)
    return jsonify(payload), 200
