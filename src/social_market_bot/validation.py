"""Completeness and domain checks for extracted command fields."""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from .config import Settings
from .models import (
    ExtractedMarketFields,
    ParsedMarketRequest,
    StrategyDepositFields,
    StrategyDepositRequest,
    ValidationFailure,
)

SECONDS_PER_DAY = 24 * 60 * 60
MAX_FEE_BASIS_POINTS = 10_000

STRATEGY_DESCRIPTIONS: dict[str, str] = {
    "segment": (
        "The Segment strategy allows you to earn yield by providing liquidity to "
        "Segment Finance. Your BTC will be used to mint seBTC tokens."
    ),
    "solv": (
        "The Solv strategy uses Solv Protocol to convert your BTC into LSTs "
        "(Liquid Staking Tokens) for additional yield opportunities."
    ),
    "avalon": (
        "The Avalon strategy provides exposure to Avalon's yield generation "
        "mechanisms through their specialized vaults."
    ),
    "bedrock": (
        "The Bedrock strategy utilizes Bedrock Finance's yield optimization to "
        "generate returns on your BTC."
    ),
    "pell": (
        "The Pell strategy leverages Pell's yield farming strategies to maximize "
        "returns on your BTC."
    ),
    "ionic": (
        "The Ionic strategy uses Ionic Protocol's lending and borrowing features to "
        "generate yield on your BTC deposits."
    ),
}
SUPPORTED_STRATEGIES: tuple[str, ...] = tuple(STRATEGY_DESCRIPTIONS)

INVALID_STRATEGY_MESSAGE = (
    "Please specify a valid strategy (Segment, Solv, Avalon, Bedrock, Pell, or Ionic)."
)
INVALID_AMOUNT_MESSAGE = "Please specify a valid amount greater than 0."

_DURATION_TEXT_RE = re.compile(r"^\s*(\d+)\s*(?:d|days?)?\s*$", re.IGNORECASE)


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _parse_whole_number(value: Any) -> int | None:
    """Return an int for ints, integral floats and digit strings, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        match = _DURATION_TEXT_RE.match(value)
        if match:
            return int(match.group(1))
        stripped = value.strip()
        if stripped.startswith("-") and stripped[1:].isdigit():
            return int(stripped)
    return None


def _parse_tags(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return None
    tags: list[str] = []
    for item in value:
        if not isinstance(item, str):
            return None
        if item.strip():
            tags.append(item.strip())
    return tuple(tags)


def _parse_amount(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        try:
            amount = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return amount if math.isfinite(amount) else None


class ParameterValidator:
    """Fill defaults and enforce domain constraints on extracted fields."""

    def __init__(
        self,
        *,
        default_duration_days: int = 7,
        default_category: str = "SOCIAL",
        default_fee_basis_points: int = 100,
        logger: logging.Logger | None = None,
    ) -> None:
        self.default_duration_days = default_duration_days
        self.default_category = default_category
        self.default_fee_basis_points = default_fee_basis_points
        self.logger = logger or logging.getLogger("social_market_bot.validation")

    @classmethod
    def from_settings(cls, settings: Settings, logger: logging.Logger) -> ParameterValidator:
        return cls(
            default_duration_days=settings.market_default_duration_days,
            default_category=settings.market_default_category,
            default_fee_basis_points=settings.market_default_fee_bps,
            logger=logger,
        )

    def validate(self, fields: ExtractedMarketFields) -> ParsedMarketRequest | ValidationFailure:
        """Return a complete request or the first failing rule."""
        question = _clean_text(fields.question)
        option_a = _clean_text(fields.option_a)
        option_b = _clean_text(fields.option_b)

        missing: list[str] = []
        if question is None:
            missing.append("question")
        if option_a is None:
            missing.append("option_a")
        if option_b is None:
            missing.append("option_b")
        # Model output must state a duration; grammar commands never carry one.
        if fields.source == "model" and fields.duration_days is None:
            missing.append("duration")
        if missing:
            return ValidationFailure(
                kind="missing_fields",
                missing_fields=missing,
                message=(
                    f"Error: Missing required market parameters ({', '.join(missing)}). "
                    "Please provide question, options, and duration."
                ),
            )

        if option_a.casefold() == option_b.casefold():
            return self._invalid("The two options must be different.")

        if fields.duration_days is None:
            duration_days: int | None = self.default_duration_days
        else:
            duration_days = _parse_whole_number(fields.duration_days)
        if duration_days is None or duration_days <= 0:
            return self._invalid("Duration must be a whole number of days greater than 0.")

        if fields.fee_basis_points is None:
            fee: int | None = self.default_fee_basis_points
        else:
            fee = _parse_whole_number(fields.fee_basis_points)
        if fee is None or not (0 <= fee <= MAX_FEE_BASIS_POINTS):
            return self._invalid(
                f"Market fee must be a whole number of basis points between 0 and "
                f"{MAX_FEE_BASIS_POINTS} (100 = 1%)."
            )

        tags = _parse_tags(fields.tags)
        if tags is None:
            return self._invalid("Tags must be a list of text labels.")

        category = self.default_category
        if fields.category is not None:
            if not isinstance(fields.category, str):
                return self._invalid("Category must be text.")
            category = fields.category.strip() or self.default_category

        return ParsedMarketRequest(
            question=question,
            option_a=option_a,
            option_b=option_b,
            duration_seconds=duration_days * SECONDS_PER_DAY,
            category=category,
            tags=tags,
            fee_basis_points=fee,
        )

    def validate_strategy_deposit(
        self, fields: StrategyDepositFields
    ) -> StrategyDepositRequest | ValidationFailure:
        """Check amount first, then the strategy name against the supported set."""
        amount = _parse_amount(fields.amount)
        if amount is None or amount <= 0:
            return ValidationFailure(kind="invalid_amount", message=INVALID_AMOUNT_MESSAGE)

        strategy = _clean_text(fields.strategy)
        if strategy is None or strategy.lower() not in STRATEGY_DESCRIPTIONS:
            return ValidationFailure(kind="invalid_strategy", message=INVALID_STRATEGY_MESSAGE)

        return StrategyDepositRequest(strategy=strategy.lower(), amount=amount)

    def _invalid(self, message: str) -> ValidationFailure:
        self.logger.info("Market parameters rejected: %s", message)
        return ValidationFailure(kind="invalid_value", message=f"Error: {message}")
