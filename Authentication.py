import logging
import secrets
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for
from flask import session as flask_session
import requests
from sqlalchemy.exc import SQLAlchemyError

from backend import AuthError, OAuthError, get_backend

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

LOGIN_PATH = "/"
CALLBACK_PATH = "/auth/callback"
QUIZ_PATH = "/quiz"
DASHBOARD_PATH = "/dashboard"

PUBLIC_PATHS = frozenset({LOGIN_PATH, CALLBACK_PATH})
# Sign-in surface of the auth provider; reachable without a session.
AUTH_API_PATHS = frozenset({
    "/api/register", "/api/login", "/api/magic-link", "/api/logout", "/auth/github",
})
OAUTH_STATE_KEY = "oauth_state"

LOGIN_ERROR_MESSAGE = "Authentication failed. Please try again."


@dataclass(frozen=True)
class GateDecision:
    redirect_to: Optional[str] = None

    @property
    def allowed(self):
        return self.redirect_to is None


ALLOW = GateDecision()


def post_auth_path(has_profile):
    return DASHBOARD_PATH if has_profile else QUIZ_PATH


def decide_access(path, session, has_profile):
    """
    Route a request based on session presence and onboarding state.

    ``has_profile`` is called with the session's user id, and only when a
    signed-in user lands on the login page. A failing lookup is logged and the
    requested page is served as-is.
    """
    if session is None and path not in PUBLIC_PATHS:
        return GateDecision(LOGIN_PATH)
    if session is not None and path == LOGIN_PATH:
        try:
            return GateDecision(post_auth_path(has_profile(session.user_id)))
        except SQLAlchemyError as e:
            logger.error(f"Profile lookup failed for user {session.user_id}: {str(e)}")
    return ALLOW


def current_session():
    options = current_app.config["AUTH_COOKIE"]
    token = request.cookies.get(options.name)
    if not token:
        return None
    backend = get_backend()
    try:
        return backend.auth.get_session(token)
    except SQLAlchemyError as e:
        logger.error(f"Session lookup failed: {str(e)}")
        backend.session.rollback()
        return None


def access_gate():
    if request.method == "OPTIONS" or request.endpoint == "static":
        return None
    if request.path in AUTH_API_PATHS:
        return None
    g.session = current_session()
    backend = get_backend()
    decision = decide_access(request.path, g.session, backend.profiles.exists)
    if not decision.allowed:
        logger.debug(f"Access gate: {request.path} -> {decision.redirect_to}")
        return redirect(decision.redirect_to)
    return None


def session_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        session = g.get("session")
        if session is None:
            logger.error("Session missing in request")
            return jsonify({"message": "Authentication required"}), 401
        return f(session.user_id, *args, **kwargs)
    return decorated


def set_session_cookie(response, session):
    options = current_app.config["AUTH_COOKIE"]
    response.set_cookie(
        options.name,
        session.access_token,
        max_age=options.max_age,
        path=options.path,
        domain=options.domain,
        secure=options.secure,
        httponly=options.httponly,
        samesite=options.samesite,
    )
    return response


def clear_session_cookie(response):
    options = current_app.config["AUTH_COOKIE"]
    response.set_cookie(
        options.name,
        options.value,
        max_age=0,
        expires=0,
        path=options.path,
        domain=options.domain,
        secure=options.secure,
        httponly=options.httponly,
        samesite=options.samesite,
    )
    return response


def json_body():
    """The request JSON object (empty when there is no body), or None for any other JSON value."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _credentials():
    data = json_body()
    if data is None:
        return None, None
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return None, None
    return email, password


def _post_auth_redirect(user_id):
    backend = get_backend()
    try:
        return post_auth_path(backend.profiles.exists(user_id))
    except SQLAlchemyError as e:
        logger.error(f"Profile lookup failed after sign-in for user {user_id}: {str(e)}")
        backend.session.rollback()
        # The gate re-checks on the next request to the login page.
        return LOGIN_PATH


@auth_bp.route(LOGIN_PATH, methods=["GET"])
def login_page():
    error = request.args.get("error")
    return jsonify({
        "page": "login",
        "error": LOGIN_ERROR_MESSAGE if error else None,
    }), 200


@auth_bp.route("/api/register", methods=["POST"])
def register():
    email, password = _credentials()
    if email is None:
        return jsonify({"message": "Email and password required"}), 400
    backend = get_backend()
    try:
        session = backend.auth.sign_up(email, password)
    except AuthError as e:
        logger.error(f"Sign-up rejected: {str(e)}")
        return jsonify({"message": str(e)}), 400
    except SQLAlchemyError as e:
        logger.error(f"Database error during sign-up: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": "Failed to register"}), 500
    response = jsonify({"message": "User registered", "redirect": _post_auth_redirect(session.user_id)})
    response.status_code = 201
    return set_session_cookie(response, session)


@auth_bp.route("/api/login", methods=["POST"])
def login():
    email, password = _credentials()
    if email is None:
        return jsonify({"message": "Email and password required"}), 400
    backend = get_backend()
    try:
        session = backend.auth.sign_in_with_password(email, password)
    except AuthError as e:
        logger.error(f"Sign-in rejected: {str(e)}")
        return jsonify({"message": str(e)}), 401
    except SQLAlchemyError as e:
        logger.error(f"Database error during sign-in: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": "Failed to sign in"}), 500
    response = jsonify({"message": "Signed in", "redirect": _post_auth_redirect(session.user_id)})
    return set_session_cookie(response, session)


@auth_bp.route("/api/magic-link", methods=["POST"])
def magic_link():
    data = json_body()
    email = data.get("email") if data is not None else None
    if not isinstance(email, str) or not email:
        return jsonify({"message": "Email required"}), 400
    backend = get_backend()
    try:
        code = backend.auth.issue_code(email)
    except AuthError as e:
        return jsonify({"message": str(e)}), 400
    except SQLAlchemyError as e:
        logger.error(f"Database error issuing sign-in code: {str(e)}")
        backend.session.rollback()
        return jsonify({"message": "Failed to send sign-in link"}), 500
    # No mail transport: the link itself is only logged in debug and test runs.
    if current_app.debug or current_app.testing:
        logger.debug(f"Sign-in link for {email}: {url_for('auth.callback', code=code, _external=True)}")
    else:
        logger.info(f"Sign-in link issued for {email}")
    return jsonify({"message": "Check your email for the sign-in link"}), 202


@auth_bp.route("/auth/github", methods=["GET"])
def github_sign_in():
    github = get_backend().github
    if not github.enabled:
        logger.error("GitHub sign-in requested but GITHUB_CLIENT_ID/GITHUB_CLIENT_SECRET are not set")
        return redirect(f"{LOGIN_PATH}?error=oauth_unavailable")
    state = secrets.token_urlsafe(16)
    flask_session[OAUTH_STATE_KEY] = state
    return redirect(github.authorization_url(url_for("auth.callback", _external=True), state))


@auth_bp.route("/api/logout", methods=["POST"])
def logout():
    token = request.cookies.get(current_app.config["AUTH_COOKIE"].name)
    backend = get_backend()
    try:
        backend.auth.sign_out(token)
    except SQLAlchemyError as e:
        logger.error(f"Database error during sign-out: {str(e)}")
        backend.session.rollback()
    response = jsonify({"message": "Signed out", "redirect": LOGIN_PATH})
    return clear_session_cookie(response)


def _exchange(backend, code, state):
    """GitHub grants arrive with ``state``; one-time sign-in codes arrive without it."""
    if state is None:
        return backend.auth.exchange_code_for_session(code)
    expected = flask_session.pop(OAUTH_STATE_KEY, None)
    if not expected or not secrets.compare_digest(state, expected):
        raise OAuthError("OAuth state mismatch")
    access_token = backend.github.exchange_code(code, url_for("auth.callback", _external=True))
    return backend.auth.sign_in_with_oauth(backend.github.fetch_email(access_token))


@auth_bp.route(CALLBACK_PATH, methods=["GET"])
def callback():
    code = request.args.get("code")
    if not code:
        return redirect(f"{LOGIN_PATH}?error=no_code")
    backend = get_backend()
    try:
        session = _exchange(backend, code, request.args.get("state"))
    except (AuthError, SQLAlchemyError, requests.RequestException) as e:
        logger.error(f"Code exchange failed: {str(e)}")
        backend.session.rollback()
        return redirect(f"{LOGIN_PATH}?error=auth_failed")
    try:
        user = backend.auth.get_user(session.access_token)
        if user is None:
            destination = f"{LOGIN_PATH}?error=auth_failed"
        else:
            destination = post_auth_path(backend.profiles.exists(user.id))
    except Exception as e:
        logger.error(f"Error in auth callback: {str(e)}")
        backend.session.rollback()
        destination = f"{LOGIN_PATH}?error=callback_error"
    return set_session_cookie(redirect(destination), session)
