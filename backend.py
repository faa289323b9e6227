"""
Backend client: auth provider plus the profile, streak and relapse repositories.

One BackendClient is built by the application factory and shared by every
blueprint through ``get_backend()``. Repositories never commit; multi-step
writes go through ``BackendClient.transaction()`` so they either land together
or not at all.
"""
import logging
import secrets
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

import bcrypt
import jwt
import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import AuthCode, AuthSession, Profile, Relapse, Streak, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class AuthError(Exception):
    pass


class OAuthError(AuthError):
    pass


class WriteSequenceError(Exception):
    def __init__(self, step, cause):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause


@dataclass
class Session:
    access_token: str
    session_id: str
    user_id: int
    expires_at: datetime


class AuthProvider:
    def __init__(self, session, secret_key, session_ttl=3600, code_ttl=300):
        self.session = session
        self.secret_key = secret_key
        self.session_ttl = session_ttl
        self.code_ttl = code_ttl

    def sign_up(self, email, password):
        email = self._normalize_email(email)
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        existing = self._find_user(email)
        if existing and not existing.password:
            raise AuthError("This email signs in with a sign-in link or GitHub")
        if existing:
            raise AuthError("Email already registered")
        hashed_password = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
        user = User(email=email, password=hashed_password.decode("utf-8"))
        self.session.add(user)
        self.session.commit()
        logger.info(f"User registered: {user.id}")
        return self._open_session(user)

    def sign_in_with_password(self, email, password):
        if not isinstance(email, str) or not isinstance(password, str):
            raise AuthError("Invalid credentials")
        user = self._find_user(email.strip().lower())
        if not user or not user.password or not password:
            raise AuthError("Invalid credentials")
        if not bcrypt.checkpw(password.encode("utf-8"), user.password.encode("utf-8")):
            raise AuthError("Invalid credentials")
        return self._open_session(user)

    def issue_code(self, email):
        """Create a one-time authorization code for ``email``, creating the user if needed."""
        user = self._get_or_create_user(self._normalize_email(email))
        code = secrets.token_urlsafe(32)
        self.session.add(AuthCode(
            code=code,
            user_id=user.id,
            expires_at=datetime.utcnow() + timedelta(seconds=self.code_ttl),
        ))
        self.session.commit()
        return code

    def sign_in_with_oauth(self, email):
        """Open a session for an email the OAuth provider has verified."""
        user = self._get_or_create_user(self._normalize_email(email))
        self.session.commit()
        return self._open_session(user)

    def exchange_code_for_session(self, code):
        auth_code = self.session.get(AuthCode, code)
        if not auth_code:
            raise AuthError("Unknown authorization code")
        user_id = auth_code.user_id
        expired = auth_code.expires_at < datetime.utcnow()
        # Codes are single use whether or not they are still valid.
        self.session.delete(auth_code)
        self.session.commit()
        if expired:
            raise AuthError("Authorization code expired")
        return self._open_session(self.session.get(User, user_id))

    def get_session(self, token):
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            logger.debug("Session token expired")
            return None
        except jwt.InvalidTokenError:
            logger.debug("Invalid session token")
            return None
        row = self.session.get(AuthSession, payload.get("sid"))
        if not row or str(row.user_id) != payload.get("sub") or row.expires_at < datetime.utcnow():
            return None
        return Session(access_token=token, session_id=row.id, user_id=row.user_id, expires_at=row.expires_at)

    def get_user(self, token):
        session = self.get_session(token)
        if not session:
            return None
        return self.session.get(User, session.user_id)

    def sign_out(self, token):
        session = self.get_session(token)
        if not session:
            return
        row = self.session.get(AuthSession, session.session_id)
        if row:
            self.session.delete(row)
            self.session.commit()
        logger.info(f"User {session.user_id} signed out")

    def _find_user(self, email):
        return self.session.query(User).filter_by(email=email).first()

    def _get_or_create_user(self, email):
        user = self._find_user(email)
        if not user:
            user = User(email=email)
            self.session.add(user)
            self.session.flush()
        return user

    def _open_session(self, user):
        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=self.session_ttl)
        row = AuthSession(id=str(uuid.uuid4()), user_id=user.id, created_at=now, expires_at=expires_at)
        self.session.add(row)
        self.session.commit()
        payload = {
            "sub": str(user.id),
            "sid": row.id,
            "email": user.email,
            "exp": expires_at,
            "iat": now,
        }
        token = jwt.encode(payload, self.secret_key, algorithm="HS256")
        return Session(access_token=token, session_id=row.id, user_id=user.id, expires_at=expires_at)

    @staticmethod
    def _normalize_email(email):
        if not isinstance(email, str):
            raise AuthError("A valid email is required")
        email = email.strip().lower()
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise AuthError("A valid email is required")
        return email


class GitHubOAuthClient:
    """Authorization-code flow against GitHub; yields the account's verified email."""

    def __init__(self, client_id=None, client_secret=None,
                 authorize_url="https://github.com/login/oauth/authorize",
                 token_url="https://github.com/login/oauth/access_token",
                 api_url="https://api.github.com",
                 timeout=10):
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.api_url = api_url
        self.timeout = timeout

    @property
    def enabled(self):
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, redirect_uri, state):
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": "user:email",
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code, redirect_uri):
        response = requests.post(
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise OAuthError(payload.get("error_description") or "GitHub did not return an access token")
        return token

    def fetch_email(self, access_token):
        response = requests.get(
            f"{self.api_url}/user/emails",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/vnd.github+json"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        for entry in response.json():
            if entry.get("primary") and entry.get("verified"):
                return entry["email"]
        raise OAuthError("GitHub account has no verified primary email")


class ProfileRepository:
    def __init__(self, session):
        self.session = session

    def exists(self, user_id):
        return self.session.query(Profile.id).filter_by(id=user_id).first() is not None

    def get(self, user_id):
        return self.session.get(Profile, user_id)

    def add(self, user_id, answers):
        profile = Profile(id=user_id, **answers)
        self.session.add(profile)
        self.session.flush()
        return profile


class StreakRepository:
    def __init__(self, session):
        self.session = session

    def get_active(self, user_id):
        return (
            self.session.query(Streak).filter_by(user_id=user_id, is_active=True)
            .order_by(Streak.start_date.desc())
            .first()
        )

    def history(self, user_id):
        return self.session.query(Streak).filter_by(user_id=user_id).order_by(Streak.start_date.desc()).all()

    def longest_closed(self, user_id):
        streak = (
            self.session.query(Streak).filter_by(user_id=user_id, is_active=False)
            .order_by(Streak.days_count.desc())
            .first()
        )
        return streak.days_count if streak else 0

    def open(self, user_id, start_date):
        streak = Streak(user_id=user_id, start_date=start_date, days_count=0, is_active=True)
        self.session.add(streak)
        self.session.flush()
        return streak

    def close(self, streak_id, end_date, days_count):
        """Deactivate a streak if it is still active; returns the number of rows changed."""
        updated = (
            self.session.query(Streak).filter_by(id=streak_id, is_active=True)
            .update({"is_active": False, "end_date": end_date, "days_count": days_count},
                    synchronize_session="fetch")
        )
        self.session.flush()
        return updated


class RelapseRepository:
    def __init__(self, session):
        self.session = session

    def add(self, user_id, relapse_date, trigger=None, notes=None):
        relapse = Relapse(user_id=user_id, relapse_date=relapse_date, trigger=trigger or None, notes=notes or None)
        self.session.add(relapse)
        self.session.flush()
        return relapse

    def recent(self, user_id, limit=10):
        return (
            self.session.query(Relapse).filter_by(user_id=user_id)
            .order_by(Relapse.relapse_date.desc())
            .limit(limit)
            .all()
        )

    def count(self, user_id):
        return self.session.query(Relapse).filter_by(user_id=user_id).count()


class BackendClient:
    def __init__(self, session, secret_key, session_ttl=3600, code_ttl=300, github=None):
        self.session = session
        self.auth = AuthProvider(session, secret_key, session_ttl, code_ttl)
        self.github = github or GitHubOAuthClient()
        self.profiles = ProfileRepository(session)
        self.streaks = StreakRepository(session)
        self.relapses = RelapseRepository(session)

    @classmethod
    def from_config(cls, config, session):
        return cls(
            session,
            config["BACKEND_KEY"],
            session_ttl=config.get("SESSION_TTL_SECONDS", 3600),
            code_ttl=config.get("AUTH_CODE_TTL_SECONDS", 300),
            github=GitHubOAuthClient(
                config.get("GITHUB_CLIENT_ID"),
                config.get("GITHUB_CLIENT_SECRET"),
            ),
        )

    @contextmanager
    def transaction(self):
        try:
            yield self
            with self.step("commit"):
                self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @contextmanager
    def step(self, name):
        """Label one step of a write sequence so a failure names where it stopped."""
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Write step '{name}' failed: {str(e)}")
            raise WriteSequenceError(name, e) from e


def get_backend():
    return current_app.extensions["backend"]
