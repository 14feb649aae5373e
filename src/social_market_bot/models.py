"""Typed value objects shared by the command pipeline stages."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ExtractionSource = Literal["grammar", "model"]
ExtractionFailureReason = Literal["no_match", "missing_trigger", "model_error"]
ValidationFailureKind = Literal[
    "missing_fields",
    "invalid_value",
    "invalid_amount",
    "invalid_strategy",
]


class OriginChannel(str, Enum):
    """Social or chat surface a command arrived from."""

    TWITTER = "twitter"
    TELEGRAM = "telegram"
    CHAT = "chat"


class RawCommand(BaseModel):
    """Platform-neutral inbound command produced by a channel adapter."""

    model_config = ConfigDict(frozen=True)

    text: str
    origin_channel: OriginChannel
    origin_id: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExtractedMarketFields(BaseModel):
    """Untrusted market fields pulled out of free text.

    Grammar extraction fills question and options only; model extraction may
    also return duration, category, tags and fee in whatever shape the model
    chose, so every field stays loosely typed until validation.
    """

    question: Any = None
    option_a: Any = None
    option_b: Any = None
    duration_days: Any = None
    category: Any = None
    tags: Any = None
    fee_basis_points: Any = None
    source: ExtractionSource = "grammar"
    pattern: int | None = Field(default=None, description="Grammar pattern index (1-3)")


class StrategyDepositFields(BaseModel):
    """Untrusted deposit-strategy fields pulled out of free text."""

    strategy: Any = None
    amount: Any = None
    source: ExtractionSource = "grammar"


class ExtractionFailure(BaseModel):
    """Typed extraction failure; always answered with format help."""

    reason: ExtractionFailureReason
    detail: str | None = None


class ParsedMarketRequest(BaseModel):
    """Validated market creation request, ready for on-chain submission."""

    model_config = ConfigDict(frozen=True)

    question: str = Field(min_length=1)
    option_a: str = Field(min_length=1)
    option_b: str = Field(min_length=1)
    duration_seconds: int = Field(gt=0)
    category: str = "SOCIAL"
    tags: tuple[str, ...] = ()
    fee_basis_points: int = Field(default=100, ge=0, le=10_000)

    def contract_args(self) -> tuple[Any, ...]:
        """Positional arguments for the contract's createMarket entry point."""
        return (
            self.question,
            self.option_a,
            self.option_b,
            self.duration_seconds,
            self.category,
            list(self.tags),
            self.fee_basis_points,
        )

    def as_parameters(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "option_a": self.option_a,
            "option_b": self.option_b,
            "duration_seconds": self.duration_seconds,
            "category": self.category,
            "tags": list(self.tags),
            "fee_basis_points": self.fee_basis_points,
        }


class StrategyDepositRequest(BaseModel):
    """Validated deposit-strategy selection."""

    model_config = ConfigDict(frozen=True)

    strategy: str
    amount: float = Field(gt=0)


class ValidationFailure(BaseModel):
    """Typed validation failure with a user-facing remediation message."""

    kind: ValidationFailureKind
    message: str
    missing_fields: list[str] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    """Outcome of one confirmed createMarket transaction."""

    model_config = ConfigDict(frozen=True)

    market_id: int = Field(ge=0)
    transaction_hash: str
    block_number: int | None = None
    market_id_source: Literal["event", "counter"] = "event"


class ReplyMessage(BaseModel):
    """Reply sent back to the origin channel: text plus machine-readable content."""

    text: str
    content: dict[str, Any] = Field(default_factory=dict)

    @field_validator("text")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply text must not be blank")
        return value
