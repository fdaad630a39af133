"""
TeamUp – Application configuration.
Reads environment variables from a .env file via pydantic-settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── App ──
    APP_NAME: str = "TeamUp"
    DEBUG: bool = False
    APP_BASE_URL: str = "http://127.0.0.1:8000"

    # ── Database ──
    DATABASE_URL: str = "sqlite+aiosqlite:///./teamup.db"

    # ── JWT ──
    SECRET_KEY: str = "change-me-to-a-random-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ── Roster rules ──
    MAX_TEAM_SIZE: int = 10
    # Pending PBL join requests / applications a user may hold elsewhere (0 disables)
    PBL_PENDING_LIMIT: int = 2

    # ── Notifications (SMTP) ──
    EMAIL_NOTIFICATIONS: bool = False
    SMTP_SERVER: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""

settings = Settings()
