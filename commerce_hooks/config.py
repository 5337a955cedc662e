"""
Application configuration, read from environment variables and an optional .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "Commerce Hooks"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    SECRET_KEY: str = "change-me-in-production"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    CORS_ORIGINS: str = "*"

    # ── Database ─────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./commerce_hooks.db"

    # ── Credential encryption ────────────────────────────
    ENCRYPTION_KEY: str = ""

    # ── OpenAI (chat agent) ──────────────────────────────
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"

    # ── WhatsApp ─────────────────────────────────────────
    META_GRAPH_API_URL: str = "https://graph.facebook.com/v24.0"
    CHAT_REUSE_WINDOW_HOURS: int = 24

    # ── Outbound HTTP ────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: float = 20.0

    # ── Nuby / Arrendasoft ───────────────────────────────
    NUBY_PAGE_LIMIT: int = 50
    NUBY_MAX_PAGES: int = 2

    # ── Rate Limiting ────────────────────────────────────
    RATE_LIMIT_PER_MINUTE: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
