"""
Configuration settings for the timeline chat backend.

Values come from the environment or a ``.env`` file (pydantic-settings).
``SECRET_KEY`` must match the key the agent auth service signs tokens with;
without one a local development key is kept next to the database.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional
import secrets
import os

BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEV_SECRET_FILE = os.path.join(BACKEND_DIR, ".dev_secret_key")


def load_dev_secret_key(path: str = DEV_SECRET_FILE) -> str:
    """Read the development signing key, creating it on first use."""
    if os.path.exists(path):
        with open(path, "r") as f:
            key = f.read().strip()
        if key:
            return key

    key = secrets.token_urlsafe(32)
    try:
        with open(path, "w") as f:
            f.write(key)
    except OSError:
        pass  # read-only checkout, key lives for this process only
    return key


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "Timeline Chat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (SQLite file in backend/ unless overridden)
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(BACKEND_DIR, 'timeline_chat.db')}"

    # JWT Authentication (tokens are issued by the agent auth service)
    SECRET_KEY: str = Field(default_factory=load_dev_secret_key)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Realtime
    AUTH_TIMEOUT_SECONDS: float = 10.0
    WS_SEND_TIMEOUT_SECONDS: float = 1.0

    # Messaging
    INITIAL_MESSAGE_LIMIT: int = 20
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 200
    MESSAGE_MAX_LENGTH: Optional[int] = None  # no cap unless configured

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
