# src/praxis_bff/config.py

import logging
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/praxis_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.info(f"Praxis-BFF: loaded .env file from: {ENV_FILE_PATH}")
else:
    logger.debug(f"Praxis-BFF: .env file not found at {ENV_FILE_PATH}. Relying on environment variables.")

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    # === WorkOS Directory Details ===
    WORKOS_API_KEY: Optional[str] = None
    WORKOS_CLIENT_ID: Optional[str] = None
    WORKOS_API_BASE_URL: AnyHttpUrl = "https://api.workos.com"
    DIRECTORY_TIMEOUT_SECONDS: float = 10.0

    # === Session Management ===
    SESSION_SECRET_KEY: Optional[str] = None
    SESSION_COOKIE_NAME: str = "wos-session"
    SESSION_COOKIE_SAMESITE: Literal["lax", "strict"] = "lax"

    # === Runtime ===
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def DIRECTORY_BASE_URL(self) -> str:
        return str(self.WORKOS_API_BASE_URL).rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("SESSION_COOKIE_SAMESITE", mode="before")
    @classmethod
    def normalize_samesite(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


try:
    settings = Settings()
except Exception as e:
    logger.error(f"Praxis-BFF: Error instantiating Settings: {e}", exc_info=True)
    raise
