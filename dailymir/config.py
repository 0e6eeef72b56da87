"""App configuration: environment variable loading with typed defaults.

Loads settings from .env file (via python-dotenv) and os.environ.
Real environment variables take precedence over .env file values.

The remote study API base URL has no default: components that talk to the
API call Settings.require_api_base_url(), which raises ConfigError when it
is missing. The app itself still starts so /health can report it.

Usage:
    from dailymir.config import get_settings
    settings = get_settings()
    print(settings.api_base_url)  # "https://api.example.com"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from dailymir.errors import ConfigError

# Only load .env from the project root: don't traverse parent directories.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DOTENV_PATH = PROJECT_ROOT / ".env"

_AUTH_BACKENDS = ("gotrue", "fake")


@dataclass(frozen=True)
class Settings:
    """Typed configuration for the dailymir BFF.

    All fields except the remote endpoints have sensible defaults for local
    development. Empty strings mean "not configured".
    """

    # App
    app_env: str
    app_port: int
    log_level: str
    cors_origins: list[str]

    # Remote study API
    api_base_url: str
    http_timeout_seconds: float

    # Auth collaborator
    auth_backend: str
    auth_url: str
    auth_anon_key: str
    auth_service_role_key: str

    # Assets
    avatar_base_url: str

    def require_api_base_url(self) -> str:
        """Returns the API base URL without a trailing slash.

        Raises:
            ConfigError: If API_BASE_URL is not set.
        """
        if not self.api_base_url:
            raise ConfigError("API_BASE_URL no definida: revisa variables de entorno")
        return self.api_base_url.rstrip("/")


def _resolve_auth_backend(value: str) -> str:
    """Validates the AUTH_BACKEND value.

    Raises:
        ValueError: If the value is not a known backend.
    """
    normalized = value.strip().lower()
    if normalized in _AUTH_BACKENDS:
        return normalized
    valid = ", ".join(_AUTH_BACKENDS)
    raise ValueError(
        f"Invalid value for AUTH_BACKEND: {value!r}. "
        f"Valid options: {valid}"
    )


def _split_csv(value: str) -> list[str]:
    """Splits a comma-separated string into a list of stripped, non-empty values."""
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_settings() -> Settings:
    """Loads configuration from .env file and environment variables.

    Returns:
        A fully resolved Settings instance.
    """
    load_dotenv(_DOTENV_PATH)

    return Settings(
        # App
        app_env=os.environ.get("APP_ENV", "development"),
        app_port=int(os.environ.get("APP_PORT", "8000")),
        log_level=os.environ.get("LOG_LEVEL", "info"),
        cors_origins=_split_csv(
            os.environ.get("CORS_ORIGINS", "http://localhost:3000")
        ),
        # Remote study API
        api_base_url=os.environ.get("API_BASE_URL", ""),
        http_timeout_seconds=float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15")),
        # Auth collaborator
        auth_backend=_resolve_auth_backend(os.environ.get("AUTH_BACKEND", "gotrue")),
        auth_url=os.environ.get("AUTH_URL", ""),
        auth_anon_key=os.environ.get("AUTH_ANON_KEY", ""),
        auth_service_role_key=os.environ.get("AUTH_SERVICE_ROLE_KEY", ""),
        # Assets
        avatar_base_url=os.environ.get("AVATAR_BASE_URL", "/avatars/"),
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Returns the singleton Settings instance. Loads .env on first call."""
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings
