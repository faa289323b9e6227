import logging
from datetime import datetime

from flask import Blueprint, jsonify, redirect
from sqlalchemy.exc import SQLAlchemyError

from Authentication import DASHBOARD_PATH, QUIZ_PATH, json_body, session_required
from backend import WriteSequenceError, get_backend
from models import ADDICTION_DURATIONS, ADDICTION_TYPES, MAIN_GOALS, MAIN_TRIGGERS

logger = logging.getLogger(__name__)

quiz_bp = Blueprint("quiz", __name__)

QUESTIONS = [
    {
        "field": "addiction_type",
        "question": "Which addiction do you want to fight?",
        "options": dict(zip(ADDICTION_TYPES, [
            "Alcohol", "Cigarettes", "Pornography", "Sugar", "Games", "Social media", "Other",
        ])),
    },
    {
        "field": "addiction_duration",
        "question": "How long has this habit existed?",
        "options": dict(zip(ADDICTION_DURATIONS, [
            "Less than 1 year", "1 to 3 years", "3 to 5 years", "More than 5 years",
        ])),
    },
    {
        "field": "main_trigger",
        "question": "What is your biggest trigger?",
        "options": dict(zip(MAIN_TRIGGERS, [
            "Stress", "Boredom", "Anxiety", "Environment", "Friends", "Other",
        ])),
    },
    {
        "field": "main_goal",
        "question": "What is your main goal?",
        "options": dict(zip(MAIN_GOALS, [
            "Stop completely", "Reduce consumption", "Control relapses", "Understand the behavior",
        ])),
    },
]

SAVE_ERROR_MESSAGE = "Failed to save your answers. Please try again."


class QuizIncompleteError(ValueError):
    pass


class QuizFlow:
    """Linear questionnaire: one answer per step, moving one step at a time."""

    def __init__(self, questions=QUESTIONS):
        self.questions = questions
        self.step = 0
        self.answers = {}

    @property
    def current_question(self):
        return self.questions[self.step]

    @property
    def is_last_step(self):
        return self.step == len(self.questions) - 1

    @property
    def can_proceed(self):
        return bool(self.answers.get(self.current_question["field"]))

    def answer(self, value):
        question = self.current_question
        if not isinstance(value, str) or value not in question["options"]:
            raise QuizIncompleteError(f"Invalid answer for {question['field']}: {value!r}")
        self.answers[question["field"]] = value

    def next(self):
        if not self.can_proceed or self.is_last_step:
            return False
        self.step += 1
        return True

    def back(self):
        if self.step == 0:
            return False
        self.step -= 1
        return True

    def finish(self):
        if not self.is_last_step or not self.can_proceed:
            raise QuizIncompleteError("All questions must be answered")
        return {question["field"]: self.answers[question["field"]] for question in self.questions}

    @classmethod
    def replay(cls, submitted):
        """Walk a fresh flow through ``submitted`` answers in question order."""
        flow = cls()
        for question in flow.questions:
            value = submitted.get(question["field"])
            if not value:
                raise QuizIncompleteError(f"{question['field']} is required")
            flow.answer(value)
            flow.next()
        return flow


def complete_onboarding(backend, user_id, answers, now=None):
    """Insert the profile and the first streak as one unit; returns the streak."""
    now = now or datetime.utcnow()
    with backend.transaction():
        with backend.step("insert profile"):
            backend.profiles.add(user_id, answers)
        with backend.step("insert streak"):
            streak = backend.streaks.open(user_id, now)
    logger.info(f"Onboarding completed for user {user_id}")
    return streak


@quiz_bp.route(QUIZ_PATH, methods=["GET"])
@session_required
def quiz_page(user_id):
    backend = get_backend()
    try:
        if backend.profiles.exists(user_id):
            return redirect(DASHBOARD_PATH)
    except SQLAlchemyError as e:
        logger.error(f"Database error checking profile for user {user_id}: {str(e)}")
        backend.session.rollback()
    return jsonify({
        "page": "quiz",
        "questions": [
            {
                "field": question["field"],
                "question": question["question"],
                "options": [{"value": value, "label": label} for value, label in question["options"].items()],
            }
            for question in QUESTIONS
        ],
    }), 200


@quiz_bp.route("/api/quiz", methods=["POST"])
@session_required
def submit_quiz(user_id):
    data = json_body()
    if data is None:
        return jsonify({"message": "Answers must be a JSON object"}), 400
    logger.debug(f"Quiz payload for user {user_id}: {data}")
    try:
        answers = QuizFlow.replay(data).finish()
    except QuizIncompleteError as e:
        logger.error(f"Quiz rejected: {str(e)}")
        return jsonify({"message": str(e)}), 400
    backend = get_backend()
    try:
        if backend.profiles.exists(user_id):
            return jsonify({"message": "Onboarding already completed", "redirect": DASHBOARD_PATH}), 409
    except SQLAlchemyError as e:
        logger.error(f"Database error checking profile for user {user_id}: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": SAVE_ERROR_MESSAGE}), 500
    try:
        complete_onboarding(backend, user_id, answers)
    except WriteSequenceError as e:
        logger.error(f"Onboarding aborted for user {user_id} at {e.step}")
        return jsonify({"message": SAVE_ERROR_MESSAGE}), 500
    return jsonify({"message": "Onboarding complete", "redirect": DASHBOARD_PATH}), 201
