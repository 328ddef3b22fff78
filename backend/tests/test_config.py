"""Tests for settings loading and path resolution."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from app.config import AppSettings, RealtimeSettings, load_config


def test_defaults_when_files_missing(tmp_path):
    """Missing settings and secrets files fall back to model defaults."""
    cfg = load_config(settings_path=tmp_path / "chat.settings.yaml")

    assert cfg.server.port == 3000
    assert cfg.realtime.rate_limit_max == 5
    assert cfg.realtime.rate_limit_window_ms == 10000
    assert cfg.realtime.diagnostics is False
    assert cfg.pagination.max_page_size == 100
    assert cfg.secrets.jwt.algorithm == "HS256"
    assert Path(cfg.database.path) == tmp_path / "chat.duckdb"


def test_settings_and_secrets_are_merged(tmp_path):
    settings_file = tmp_path / "chat.settings.yaml"
    settings_file.write_text(
        "realtime:\n"
        "  rate_limit_max: 3\n"
        "  rate_limit_window_ms: 500\n"
        "  diagnostics: true\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    (tmp_path / "chat.secrets.yaml").write_text(
        "jwt:\n"
        "  secret_key: from-secrets-file\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert cfg.realtime.rate_limit_max == 3
    assert cfg.realtime.rate_limit_window_ms == 500
    assert cfg.realtime.diagnostics is True
    assert cfg.logging.level == "debug"
    assert cfg.secrets.jwt.secret_key == "from-secrets-file"


def test_explicit_secrets_path(tmp_path):
    settings_file = tmp_path / "chat.settings.yaml"
    secrets_file = tmp_path / "elsewhere" / "secrets.yaml"
    secrets_file.parent.mkdir()
    secrets_file.write_text("jwt:\n  secret_key: elsewhere\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file, secrets_path=secrets_file)
    assert cfg.secrets.jwt.secret_key == "elsewhere"


def test_database_path_relative_to_settings_dir(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    settings_file = config_dir / "chat.settings.yaml"
    settings_file.write_text("database:\n  path: data/chat.duckdb\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.database.path) == config_dir / "data" / "chat.duckdb"


def test_database_absolute_and_memory_paths_unchanged(tmp_path):
    absolute = tmp_path / "abs" / "chat.duckdb"
    settings_file = tmp_path / "chat.settings.yaml"

    settings_file.write_text(f"database:\n  path: {absolute}\n", encoding="utf-8")
    assert Path(load_config(settings_path=settings_file).database.path) == absolute

    settings_file.write_text('database:\n  path: ":memory:"\n', encoding="utf-8")
    assert load_config(settings_path=settings_file).database.path == ":memory:"


@pytest.mark.parametrize("field", ["rate_limit_max", "rate_limit_window_ms"])
def test_rate_limit_settings_must_be_positive(field):
    with pytest.raises(ValidationError):
        RealtimeSettings(**{field: 0})


def test_app_settings_defaults():
    cfg = AppSettings()
    assert cfg.database.path == "chat.duckdb"
    assert cfg.auth.token_expire_minutes == 10080
