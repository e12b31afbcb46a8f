from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from auth.urls import is_https_url

from .constants import (
    DEFAULT_ENTRA_INSTANCE,
    DEFAULT_ENTRA_SCOPES,
    DEFAULT_GITHUB_API_URL,
    DEFAULT_GITHUB_INSTANCE,
    DEFAULT_GITHUB_ISSUER,
    LOGGER,
)

REQUIRED_ENV = (
    "BRIDGE_PUBLIC_URL",
    "GITHUB_APP_CLIENT_ID",
    "GITHUB_APP_CLIENT_SECRET",
    "ENTRA_APP_TENANT_ID",
    "ENTRA_APP_CLIENT_ID",
    "ENTRA_APP_CLIENT_SECRET",
)


@dataclass(frozen=True)
class Settings:
    public_url: str
    github_client_id: str
    github_client_secret: str
    github_instance: str
    github_callback_path: str
    github_issuer: str
    github_api_url: str
    entra_instance: str
    entra_tenant_id: str
    entra_client_id: str
    entra_client_secret: str
    entra_callback_path: str
    entra_scopes: list[str]
    token_cache_url: str
    http_timeout: float
    debug: bool

    @property
    def github_authorize_url(self) -> str:
        return f"{self.github_instance.rstrip('/')}/authorize"

    @property
    def github_token_url(self) -> str:
        return f"{self.github_instance.rstrip('/')}/access_token"

    @property
    def entra_authorize_url(self) -> str:
        return f"{self.entra_instance}{self.entra_tenant_id}/oauth2/v2.0/authorize"

    @property
    def entra_token_url(self) -> str:
        return f"{self.entra_instance}{self.entra_tenant_id}/oauth2/v2.0/token"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env(key: str, default: str = "") -> str:
    return os.getenv(key, default).strip() or default


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")
    if value <= 0:
        raise RuntimeError(f"{key} must be greater than zero.")
    return value


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    if not is_https_url(os.getenv("BRIDGE_PUBLIC_URL", "").strip()):
        raise RuntimeError(
            "BRIDGE_PUBLIC_URL must be a valid public HTTPS URL (for example: "
            "https://auth.example.com)."
        )

    for key in ("GITHUB_APP_CALLBACK_PATH", "ENTRA_APP_CALLBACK_PATH"):
        path = os.getenv(key, "").strip()
        if path and not path.startswith("/"):
            raise RuntimeError(f"{key} must start with '/'.")


def load_settings() -> Settings:
    instance = _get_env("ENTRA_APP_INSTANCE", DEFAULT_ENTRA_INSTANCE)
    if not instance.endswith("/"):
        instance = f"{instance}/"

    return Settings(
        public_url=_get_env("BRIDGE_PUBLIC_URL").rstrip("/"),
        github_client_id=_get_env("GITHUB_APP_CLIENT_ID"),
        github_client_secret=_get_env("GITHUB_APP_CLIENT_SECRET"),
        github_instance=_get_env("GITHUB_APP_INSTANCE", DEFAULT_GITHUB_INSTANCE),
        github_callback_path=_get_env("GITHUB_APP_CALLBACK_PATH", "/postauth-github"),
        github_issuer=_get_env("GITHUB_APP_ISSUER", DEFAULT_GITHUB_ISSUER),
        github_api_url=_get_env("GITHUB_API_URL", DEFAULT_GITHUB_API_URL),
        entra_instance=instance,
        entra_tenant_id=_get_env("ENTRA_APP_TENANT_ID"),
        entra_client_id=_get_env("ENTRA_APP_CLIENT_ID"),
        entra_client_secret=_get_env("ENTRA_APP_CLIENT_SECRET"),
        entra_callback_path=_get_env("ENTRA_APP_CALLBACK_PATH", "/postauth-entra"),
        entra_scopes=_get_env("ENTRA_APP_SCOPES", DEFAULT_ENTRA_SCOPES).split(),
        token_cache_url=_get_env("TOKEN_CACHE_URL"),
        http_timeout=_get_env_float("BRIDGE_HTTP_TIMEOUT", 10.0),
        debug=is_truthy(os.getenv("BRIDGE_DEBUG", "0")),
    )


def get_bind_address() -> tuple[str, int]:
    return _get_env("BRIDGE_HOST", "127.0.0.1"), _get_env_int("BRIDGE_PORT", 8000)


def setup_logging(debug_enabled: bool) -> None:
    level = logging.DEBUG if debug_enabled else logging.INFO
    logging.basicConfig(level=level)
    LOGGER.setLevel(level)
