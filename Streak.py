import logging
from datetime import datetime

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from Analysis import days_clean, load_dashboard, serialize_relapse, serialize_streak
from Authentication import json_body, session_required
from backend import WriteSequenceError, get_backend

logger = logging.getLogger(__name__)

streak_bp = Blueprint("streak", __name__)

RELAPSE_ERROR_MESSAGE = "Failed to register relapse. Please try again."


def register_relapse(backend, user_id, trigger=None, notes=None, now=None):
    """
    Record a relapse and rotate the user's active streak.

    The relapse insert, the close of the active streak and the opening of the
    replacement streak are committed together. Returns the new relapse, or
    ``None`` when the user has no active streak.
    """
    streak = backend.streaks.get_active(user_id)
    if streak is None:
        return None
    now = now or datetime.utcnow()
    days = days_clean(streak.start_date, now)
    with backend.transaction():
        with backend.step("insert relapse"):
            relapse = backend.relapses.add(user_id, now, trigger=trigger, notes=notes)
        with backend.step("close streak"):
            closed = backend.streaks.close(streak.id, now, days)
        if not closed:
            raise WriteSequenceError("close streak", f"streak {streak.id} is no longer active")
        with backend.step("open streak"):
            backend.streaks.open(user_id, now)
    logger.info(f"Relapse recorded for user {user_id}; streak {streak.id} closed at {days} days")
    return relapse


@streak_bp.route("/api/relapses", methods=["POST"])
@session_required
def create_relapse(user_id):
    data = json_body()
    if data is None:
        return jsonify({"message": "Relapse details must be a JSON object"}), 400
    logger.debug(f"Relapse payload for user {user_id}: {data}")
    backend = get_backend()
    try:
        relapse = register_relapse(
            backend,
            user_id,
            trigger=str(data.get("trigger") or "").strip(),
            notes=str(data.get("notes") or "").strip(),
        )
    except WriteSequenceError as e:
        logger.error(f"Relapse sequence aborted for user {user_id} at {e.step}")
        return jsonify({"message": RELAPSE_ERROR_MESSAGE}), 500
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching active streak: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": RELAPSE_ERROR_MESSAGE}), 500
    if relapse is None:
        return jsonify({"message": "No active streak to reset"}), 409
    return jsonify({
        "message": "Relapse recorded",
        "relapse": serialize_relapse(relapse),
        "dashboard": load_dashboard(backend, user_id),
    }), 201


@streak_bp.route("/api/streaks/history", methods=["GET"])
@session_required
def streak_history(user_id):
    backend = get_backend()
    try:
        streaks = backend.streaks.history(user_id)
        logger.debug(f"Fetched {len(streaks)} streaks for user {user_id}")
        return jsonify([serialize_streak(streak) for streak in streaks]), 200
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching streak history: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": "Failed to fetch streak history"}), 500
