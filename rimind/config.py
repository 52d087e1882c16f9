"""Application settings loaded from the environment (and an optional .env file)."""
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration.

    Only JWT_SECRET_KEY matters for authentication; OPENAI_API_KEY is
    optional and its absence only disables assistant replies.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "development"
    LOG_LEVEL: Optional[str] = None

    DATABASE_URL: str = "sqlite+aiosqlite:///./rimind.db"

    # Session tokens
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    SESSION_TTL_SECONDS: int = 60 * 60 * 24 * 3
    SESSION_COOKIE_NAME: str = "accessToken"

    # Wallet challenges
    CHALLENGE_TTL_SECONDS: int = 60 * 5

    # Assistant
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT: float = 30.0
    ASSISTANT_SYSTEM_PROMPT: str = (
        "You are Rimind, a friendly assistant. Answer clearly and concisely."
    )

    CORS_ORIGINS: list[str] = []

    @field_validator("OPENAI_API_KEY")
    @classmethod
    def blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def log_level(self) -> str:
        if self.LOG_LEVEL:
            return self.LOG_LEVEL.upper()
        return "INFO" if self.is_production else "DEBUG"


settings = Settings()
