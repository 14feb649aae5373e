"""Settings loading and startup-time configuration failures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from social_market_bot.config import load_settings
from social_market_bot.exceptions import ConfigError
from social_market_bot.models import OriginChannel

PRIVATE_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

_ALL_KEYS = (
    "APP_ENV",
    "CHAIN_RPC_URL",
    "PRIVATE_KEY",
    "PREDICTION_MARKET_ADDRESS",
    "AGENT_USERNAME",
    "CHAIN_ID",
    "TELEGRAM_BOT_TOKEN",
    "TWITTER_BEARER_TOKEN",
    "TWITTER_USER_ACCESS_TOKEN",
    "OPENAI_API_KEY",
    "LLM_EXTRACTION_ENABLED",
    "MARKET_DEFAULT_FEE_BPS",
    "TX_CONFIRMATION_TIMEOUT_SECONDS",
    "TX_POLL_INTERVAL_SECONDS",
    "MARKET_ID_STRATEGY",
)


def _set_required_env(monkeypatch: Any, tmp_path: Path, **overrides: str) -> None:
    monkeypatch.chdir(tmp_path)
    for key in _ALL_KEYS:
        monkeypatch.delenv(key, raising=False)
    values = {
        "CHAIN_RPC_URL": "http://localhost:8545",
        "PRIVATE_KEY": PRIVATE_KEY,
        "PREDICTION_MARKET_ADDRESS": CONTRACT,
        "AGENT_USERNAME": "@PredictBot",
        "JOURNAL_DIR": str(tmp_path / "journal"),
    }
    values.update(overrides)
    for key, value in values.items():
        monkeypatch.setenv(key, value)


def test_load_settings_with_required_values(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path)
    settings = load_settings()
    assert settings.agent_username == "PredictBot"
    assert settings.market_default_duration_days == 7
    assert settings.market_default_category == "SOCIAL"
    assert settings.market_default_fee_bps == 100
    assert settings.market_id_strategy == "event"
    assert settings.chain_id is None
    assert (tmp_path / "journal").is_dir()


def test_private_key_accepted_with_prefix(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path, PRIVATE_KEY="0x" + PRIVATE_KEY)
    assert load_settings().private_key == "0x" + PRIVATE_KEY


@pytest.mark.parametrize(
    "missing",
    ["CHAIN_RPC_URL", "PRIVATE_KEY", "PREDICTION_MARKET_ADDRESS", "AGENT_USERNAME"],
)
def test_missing_required_value_is_config_error(
    monkeypatch: Any, tmp_path: Path, missing: str
) -> None:
    _set_required_env(monkeypatch, tmp_path)
    monkeypatch.delenv(missing)
    with pytest.raises(ConfigError, match=f"(?i){missing}"):
        load_settings()


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("PRIVATE_KEY", "abc123"),
        ("PREDICTION_MARKET_ADDRESS", "0x1234"),
        ("MARKET_DEFAULT_FEE_BPS", "20000"),
        ("TX_CONFIRMATION_TIMEOUT_SECONDS", "0"),
        ("MARKET_ID_STRATEGY", "guess"),
        ("LLM_EXTRACTION_ENABLED", "true"),
    ],
)
def test_invalid_values_are_config_errors(
    monkeypatch: Any, tmp_path: Path, key: str, value: str
) -> None:
    _set_required_env(monkeypatch, tmp_path, **{key: value})
    with pytest.raises(ConfigError):
        load_settings()


def test_config_error_never_echoes_private_key(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path, PRIVATE_KEY="zz" + PRIVATE_KEY[2:])
    with pytest.raises(ConfigError) as excinfo:
        load_settings()
    assert PRIVATE_KEY[2:] not in str(excinfo.value)


def test_channel_credentials_required_when_serving(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(monkeypatch, tmp_path, TWITTER_BEARER_TOKEN="app")
    settings = load_settings()
    with pytest.raises(ConfigError, match="TELEGRAM_BOT_TOKEN"):
        settings.require_channel(OriginChannel.TELEGRAM)
    with pytest.raises(ConfigError, match="TWITTER_USER_ACCESS_TOKEN"):
        settings.require_channel(OriginChannel.TWITTER)
    settings.require_channel(OriginChannel.CHAT)


def test_safe_summary_has_no_credentials(monkeypatch: Any, tmp_path: Path) -> None:
    _set_required_env(
        monkeypatch,
        tmp_path,
        TELEGRAM_BOT_TOKEN="123:secret-bot-token",
        OPENAI_API_KEY="sk-test-secret",
    )
    summary = load_settings().safe_summary()
    rendered = repr(summary)
    assert PRIVATE_KEY not in rendered
    assert "secret-bot-token" not in rendered
    assert "sk-test-secret" not in rendered
    assert summary["telegram_configured"] is True
    assert summary["chain_rpc_host"] == "localhost"
