"""Chat backend configuration.

Loads settings from two YAML files:
  * chat.settings.yaml: non-secret configuration
  * chat.secrets.yaml:  secrets (never committed)

Both files are optional; anything missing falls back to the model defaults.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chat.settings.yaml")
SECRETS_FILE  = Path("chat.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str = "0.0.0.0"
    port:            int = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseSettings(BaseModel):
    path: str = "chat.duckdb"


class AuthSettings(BaseModel):
    # 7 days
    token_expire_minutes: int = 10080


class RealtimeSettings(BaseModel):
    """Knobs for the WebSocket session core."""
    rate_limit_max:       int  = 5
    rate_limit_window_ms: int  = 10000
    # Send a local-only ``error`` frame to the originating connection when
    # an event is dropped. Other clients never see it.
    diagnostics:          bool = False

    @field_validator("rate_limit_max", "rate_limit_window_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


class PaginationSettings(BaseModel):
    default_page_size: int = 50
    max_page_size:     int = 100


class LoggingSettings(BaseModel):
    level: str = "info"


class AppSettings(BaseModel):
    server:     ServerSettings     = Field(default_factory=ServerSettings)
    database:   DatabaseSettings   = Field(default_factory=DatabaseSettings)
    auth:       AuthSettings       = Field(default_factory=AuthSettings)
    realtime:   RealtimeSettings   = Field(default_factory=RealtimeSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    logging:    LoggingSettings    = Field(default_factory=LoggingSettings)
    secrets:    Secrets            = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _resolve_database_path(settings: AppSettings, base_dir: Path) -> None:
    """Anchor a relative database path to the settings file's directory."""
    raw = settings.database.path
    if raw == ":memory:":
        return
    path = Path(raw)
    if not path.is_absolute():
        settings.database.path = str(base_dir / path)


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    if secrets_path is None:
        secrets_path = settings_path.parent / SECRETS_FILE.name
    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    _resolve_database_path(app_settings, settings_path.resolve().parent)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, rate_limit=%s/%sms)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.database.path,
        app_settings.realtime.rate_limit_max,
        app_settings.realtime.rate_limit_window_ms,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppSettings) -> None:
    """Replace the process-wide settings (used by tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached settings so the next get_config() reloads them."""
    global _config
    _config = None
