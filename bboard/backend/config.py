"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    APP_NAME: str = "B Board"
    ANTHROPIC_API_KEY: str = ""
    AI_MODEL_DEFAULT: str = "sonnet"
    AI_MODEL_FALLBACK: str = "haiku"
    AI_REQUEST_TIMEOUT_SECONDS: float = 20.0
    DB_PATH: str = str(Path(__file__).parent / "bboard.db")
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    SEED_DEMO_DATA: bool = True

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_SENDER: str = "standups@bboard.local"
    SMTP_USE_TLS: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
