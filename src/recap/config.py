"""Service settings read from the environment and an optional .env file."""

from __future__ import annotations

import base64
import re
import tempfile
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class AuthMode(str, Enum):
    """How outbound calls to the speech and completion endpoints authenticate."""

    entra = "entra"
    apikey = "apikey"


class Settings(BaseSettings):
    """Every option can be set by its upper-case name in the environment."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Outbound authentication
    AUTH_MODE: AuthMode = AuthMode.entra
    ENTRA_TENANT_ID: str = ""
    ENTRA_CLIENT_ID: str = ""
    ENTRA_CLIENT_SECRET: str = ""
    COGNITIVE_SCOPE: str = "https://cognitiveservices.azure.com/.default"

    # Speech-to-text (Whisper deployment)
    WHISPER_ENDPOINT: str = ""
    WHISPER_KEY: str = ""

    # Summarization (Azure OpenAI chat deployment)
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_API_KEY: str = ""
    AZURE_OPENAI_DEPLOYMENT_NAME: str = ""
    AZURE_OPENAI_API_VERSION: str = "2025-04-01-preview"
    SUMMARY_MAX_TOKENS: int = 1024

    # Pipeline cadence
    SUMMARY_INTERVAL_MINUTES: int = 5
    REMOTE_TIMEOUT_SECONDS: float = 30.0

    # Google Workspace chat delivery
    GOOGLE_SERVICE_ACCOUNT_FILE: str = ""  # Path to service account JSON key file
    GOOGLE_CHAT_SPACE_ID: str = ""  # Default space when the caller supplies none

    # Base64-encoded Google service account JSON (for containerized deployments)
    GOOGLE_SERVICE_ACCOUNT_JSON_B64: str = ""

    @property
    def azure_openai_base_endpoint(self) -> str:
        """Azure OpenAI endpoint with any ``/openai/...`` path stripped."""
        return re.sub(r"/openai/.*$", "", self.AZURE_OPENAI_ENDPOINT)

    def get_service_account_path(self) -> str | None:
        """Path of the Google service account key used for chat delivery.

        A mounted key file wins. Otherwise the base64 form is decoded into the
        temp directory, readable only by the current user.
        None means no chat gateway is configured.
        """
        if self.GOOGLE_SERVICE_ACCOUNT_FILE:
            return self.GOOGLE_SERVICE_ACCOUNT_FILE
        if not self.GOOGLE_SERVICE_ACCOUNT_JSON_B64:
            return None

        key_path = Path(tempfile.gettempdir()) / "meeting-recap-chat-key.json"
        key_path.write_bytes(base64.b64decode(self.GOOGLE_SERVICE_ACCOUNT_JSON_B64))
        key_path.chmod(0o600)
        return str(key_path)


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings; tests clear the cache to pick up env changes."""
    return Settings()
