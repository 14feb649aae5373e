"""Typed settings loader for the market-creation bot."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import AnyUrl, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError
from .models import OriginChannel

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_private_key(secret: str) -> str:
    """Return the signing secret with a leading ``0x``, adding it when absent."""
    secret = secret.strip()
    if secret[:2].lower() == "0x":
        return "0x" + secret[2:]
    return "0x" + secret


class Settings(BaseSettings):
    """Application settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="APP_ENV")

    chain_rpc_url: AnyUrl = Field(alias="CHAIN_RPC_URL")
    private_key: str = Field(alias="PRIVATE_KEY", repr=False)
    prediction_market_address: str = Field(alias="PREDICTION_MARKET_ADDRESS")
    agent_username: str = Field(alias="AGENT_USERNAME")
    chain_id: int | None = Field(default=None, alias="CHAIN_ID")
    chain_rpc_timeout_seconds: float = Field(default=15.0, alias="CHAIN_RPC_TIMEOUT_SECONDS")
    tx_confirmation_timeout_seconds: float = Field(
        default=120.0,
        alias="TX_CONFIRMATION_TIMEOUT_SECONDS",
    )
    tx_poll_interval_seconds: float = Field(default=2.0, alias="TX_POLL_INTERVAL_SECONDS")
    market_id_strategy: Literal["event", "counter"] = Field(
        default="event",
        alias="MARKET_ID_STRATEGY",
    )
    market_contract_abi_file: Path | None = Field(default=None, alias="MARKET_CONTRACT_ABI_FILE")

    market_default_duration_days: int = Field(default=7, alias="MARKET_DEFAULT_DURATION_DAYS")
    market_default_category: str = Field(default="SOCIAL", alias="MARKET_DEFAULT_CATEGORY")
    market_default_fee_bps: int = Field(default=100, alias="MARKET_DEFAULT_FEE_BPS")
    frontend_url: AnyUrl | None = Field(default=None, alias="FRONTEND_URL")

    telegram_bot_token: str | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN", repr=False)
    telegram_poll_timeout_seconds: int = Field(default=30, alias="TELEGRAM_POLL_TIMEOUT_SECONDS")
    twitter_api_base_url: AnyUrl = Field(
        default="https://api.twitter.com",
        alias="TWITTER_API_BASE_URL",
    )
    twitter_bearer_token: str | None = Field(
        default=None, alias="TWITTER_BEARER_TOKEN", repr=False
    )
    twitter_user_access_token: str | None = Field(
        default=None, alias="TWITTER_USER_ACCESS_TOKEN", repr=False
    )

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY", repr=False)
    openai_api_base: AnyUrl | None = Field(default=None, alias="OPENAI_API_BASE")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    llm_extraction_enabled: bool = Field(default=False, alias="LLM_EXTRACTION_ENABLED")

    pipeline_max_workers: int = Field(default=4, alias="PIPELINE_MAX_WORKERS")
    http_timeout_seconds: float = Field(default=15.0, alias="HTTP_TIMEOUT_SECONDS")
    journal_dir: Path = Field(default=Path("./data/journal"), alias="JOURNAL_DIR")

    @field_validator(
        "chain_id",
        "market_contract_abi_file",
        "frontend_url",
        "telegram_bot_token",
        "twitter_bearer_token",
        "twitter_user_access_token",
        "openai_api_key",
        "openai_api_base",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: Any) -> Any:
        """Treat empty env-string values as unset optionals."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("agent_username", mode="before")
    @classmethod
    def strip_mention_prefix(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lstrip("@")
        return value

    @model_validator(mode="after")
    def validate_settings(self) -> Settings:
        """Validate formats and cross-field bounds."""
        if not self.private_key.strip():
            raise ValueError("PRIVATE_KEY must not be empty.")
        if not _PRIVATE_KEY_RE.match(normalize_private_key(self.private_key)):
            raise ValueError("PRIVATE_KEY must be 32 bytes of hex, with or without '0x'.")
        if not _ADDRESS_RE.match(self.prediction_market_address.strip()):
            raise ValueError("PREDICTION_MARKET_ADDRESS must be a 0x-prefixed 20-byte address.")
        if not self.agent_username:
            raise ValueError("AGENT_USERNAME must not be empty.")
        if self.chain_id is not None and self.chain_id <= 0:
            raise ValueError("CHAIN_ID must be > 0 when set.")
        if self.chain_rpc_timeout_seconds <= 0:
            raise ValueError("CHAIN_RPC_TIMEOUT_SECONDS must be > 0.")
        if self.tx_confirmation_timeout_seconds <= 0:
            raise ValueError("TX_CONFIRMATION_TIMEOUT_SECONDS must be > 0.")
        if self.tx_poll_interval_seconds <= 0:
            raise ValueError("TX_POLL_INTERVAL_SECONDS must be > 0.")
        if self.tx_poll_interval_seconds > self.tx_confirmation_timeout_seconds:
            raise ValueError(
                "TX_POLL_INTERVAL_SECONDS cannot exceed TX_CONFIRMATION_TIMEOUT_SECONDS."
            )
        if self.market_contract_abi_file is not None and not self.market_contract_abi_file.exists():
            raise ValueError(
                f"MARKET_CONTRACT_ABI_FILE does not exist: {self.market_contract_abi_file}"
            )
        if self.market_default_duration_days <= 0:
            raise ValueError("MARKET_DEFAULT_DURATION_DAYS must be > 0.")
        if not self.market_default_category.strip():
            raise ValueError("MARKET_DEFAULT_CATEGORY must not be empty.")
        if not (0 <= self.market_default_fee_bps <= 10_000):
            raise ValueError("MARKET_DEFAULT_FEE_BPS must be between 0 and 10000.")
        if self.telegram_poll_timeout_seconds <= 0:
            raise ValueError("TELEGRAM_POLL_TIMEOUT_SECONDS must be > 0.")
        if self.llm_extraction_enabled and not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_EXTRACTION_ENABLED=true.")
        if self.pipeline_max_workers <= 0:
            raise ValueError("PIPELINE_MAX_WORKERS must be > 0.")
        if self.http_timeout_seconds <= 0:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be > 0.")
        return self

    def require_channel(self, channel: OriginChannel) -> None:
        """Raise ConfigError when a listener is enabled without its credentials."""
        if channel is OriginChannel.TELEGRAM and not self.telegram_bot_token:
            raise ConfigError("TELEGRAM_BOT_TOKEN is required to serve Telegram commands.")
        if channel is OriginChannel.TWITTER:
            missing = [
                name
                for name, value in (
                    ("TWITTER_BEARER_TOKEN", self.twitter_bearer_token),
                    ("TWITTER_USER_ACCESS_TOKEN", self.twitter_user_access_token),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"Missing required settings for Twitter: {', '.join(missing)}"
                )

    def safe_summary(self) -> dict[str, Any]:
        """Return config summary safe for journaling (no credentials)."""
        return {
            "app_env": self.app_env,
            "chain_rpc_host": self.chain_rpc_url.host,
            "chain_id": self.chain_id,
            "prediction_market_address": self.prediction_market_address,
            "agent_username": self.agent_username,
            "tx_confirmation_timeout_seconds": self.tx_confirmation_timeout_seconds,
            "market_id_strategy": self.market_id_strategy,
            "market_default_duration_days": self.market_default_duration_days,
            "market_default_category": self.market_default_category,
            "market_default_fee_bps": self.market_default_fee_bps,
            "telegram_configured": bool(self.telegram_bot_token),
            "twitter_configured": bool(
                self.twitter_bearer_token and self.twitter_user_access_token
            ),
            "llm_extraction_enabled": self.llm_extraction_enabled,
            "openai_model": self.openai_model,
            "pipeline_max_workers": self.pipeline_max_workers,
        }


def _describe_errors(exc: ValidationError) -> str:
    # Inputs are left out so the signing secret never reaches a log line.
    parts = []
    for error in exc.errors(include_url=False, include_input=False):
        location = ".".join(str(item) for item in error["loc"]) or "settings"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def load_settings() -> Settings:
    """Load and validate settings, raising ConfigError on failure."""
    try:
        settings = Settings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {_describe_errors(exc)}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed reading environment/.env: {exc}") from exc

    settings.journal_dir.mkdir(parents=True, exist_ok=True)
    return settings
