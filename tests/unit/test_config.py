"""Tests for configuration and scoring profile loading."""

from importlib import resources

import pytest
from pydantic import ValidationError

from stepwright.config import load_config
from stepwright.scoring import load_scoring_profile


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/stepwright.db
providers: [openai]
engine:
  self_correction_attempts: 2
limits:
  daily_limit_usd: 25
"""
    )
    monkeypatch.setenv("STEPWRIGHT_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///tmp/stepwright.db"
    assert config.providers == ["openai"]
    assert config.engine.self_correction_attempts == 2
    assert config.limits.daily_limit_usd == 25
    assert config.limits.monthly_limit_usd == 100.0
    assert config.selector.cache_ttl_seconds == 300.0


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("STEPWRIGHT_DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("STEPWRIGHT_LEDGER_URL", "sqlite+aiosqlite:///usage.db")
    monkeypatch.setenv("STEPWRIGHT_PROVIDERS", "openai, anthropic,")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"
    assert config.ledger_url == "sqlite+aiosqlite:///usage.db"
    assert config.providers == ["openai", "anthropic"]


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.database_url is None
    assert config.engine.cleanup_after_days == 7


def test_packaged_scoring_profile():
    profile = load_scoring_profile()
    assert profile.schema_version == 1
    assert profile.weights_for("quality")["quality"] == 0.4
    assert profile.weights_for("unknown") == profile.weights_for("balanced")
    assert profile.quality.min_words_for("writing") == 200
    assert profile.quality.min_words_for("general") == 50


@pytest.mark.parametrize(
    "replacement",
    [
        ("schema_version: 1", "schema_version: 2"),
        ("    cost: 0.4\n", "    cost: 0.5\n"),
        ("    accuracy: 0.25\n", ""),
    ],
)
def test_invalid_scoring_profile_is_rejected(tmp_path, replacement):
    raw = resources.files("stepwright").joinpath("scoring.yaml").read_text()
    old, new = replacement
    assert old in raw
    path = tmp_path / "scoring.yaml"
    path.write_text(raw.replace(old, new, 1))

    with pytest.raises(ValidationError):
        load_scoring_profile(path)
