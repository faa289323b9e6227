import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class CookieOptions:
    """Attributes the auth provider writes on the session cookie."""
    name: str = "recovery-session"
    value: str = ""
    domain: Optional[str] = None
    path: str = "/"
    max_age: int = 3600
    secure: bool = True
    httponly: bool = True
    samesite: str = "Lax"


class Config:
    BACKEND_URL = os.getenv("BACKEND_URL")
    BACKEND_KEY = os.getenv("BACKEND_KEY")
    SECRET_KEY = BACKEND_KEY  # signs the OAuth state cookie
    SQLALCHEMY_DATABASE_URI = BACKEND_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 3600))
    AUTH_CODE_TTL_SECONDS = int(os.getenv("AUTH_CODE_TTL_SECONDS", 300))
    AUTH_COOKIE = CookieOptions(
        max_age=SESSION_TTL_SECONDS,
        secure=os.getenv("COOKIE_SECURE", "true").lower() == "true",
    )
    GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID")
    GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET")
    CREATE_TABLES = os.getenv("CREATE_TABLES", "true").lower() == "true"

    @classmethod
    def validate(cls):
        missing = [key for key in ("BACKEND_URL", "BACKEND_KEY") if not getattr(cls, key)]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


class TestingConfig(Config):
    TESTING = True
    BACKEND_URL = "sqlite:///:memory:"
    BACKEND_KEY = "test-backend-key"
    SECRET_KEY = BACKEND_KEY
    SQLALCHEMY_DATABASE_URI = BACKEND_URL
    AUTH_COOKIE = CookieOptions(secure=False)
    GITHUB_CLIENT_ID = "test-client-id"
    GITHUB_CLIENT_SECRET = "test-client-secret"
    CREATE_TABLES = True
