"""Ordered-pattern grammar for market and deposit commands."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..models import ExtractedMarketFields, ExtractionFailure, StrategyDepositFields

_CREATE_MARKET_MARKER_RE = re.compile(r"create\s+market\s*:", re.IGNORECASE)
_CREATE_COMMAND_RE = re.compile(r"^\s*/create(?:@\w+)?(?=\s|$)", re.IGNORECASE)

# Priority order matters: a labelled command must never fall through to the
# unlabelled or question-less forms.
_EXPLICIT_OPTIONS_RE = re.compile(r'"([^"]+)"\s*Options:\s*([^/]+)/([^/\n]+)', re.IGNORECASE)
_IMPLICIT_OPTIONS_RE = re.compile(r'"([^"]+)"\s*([^/]+)/([^/\n]+)', re.IGNORECASE)
_OPTIONS_ONLY_RE = re.compile(r"([^/]+)/([^/\n]+)", re.IGNORECASE)

_DEPOSIT_RE = re.compile(
    r"^\s*/?deposit(?:@\w+)?\s+"
    r"(?P<amount>-?\d+(?:\.\d+)?)\s*(?:btc\b)?\s*"
    r"(?:(?:into|in|to)\s+)?(?:the\s+)?"
    r"(?P<strategy>[A-Za-z][\w-]*)"
    r"(?:\s+strategy)?\s*[.!]?\s*$",
    re.IGNORECASE,
)
_DEPOSIT_COMMAND_RE = re.compile(r"^\s*/?deposit\b", re.IGNORECASE)
_HELP_COMMAND_RE = re.compile(r"^\s*/(?:help|start)(?:@\w+)?\s*$", re.IGNORECASE)


def synthesize_question(option_a: str, option_b: str) -> str:
    """Question used when a command names only the two options."""
    return f"Which will win: {option_a} or {option_b}?"


@dataclass(frozen=True)
class _TriggerSplit:
    content: str
    found: bool


class MarketRequestExtractor:
    """Turn command text into market fields using three prioritized patterns."""

    def __init__(
        self,
        agent_username: str | None = None,
        *,
        require_trigger: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.agent_username = (agent_username or "").lstrip("@") or None
        self.require_trigger = require_trigger
        self.logger = logger or logging.getLogger("social_market_bot.extraction")

    def extract(self, text: str) -> ExtractedMarketFields | ExtractionFailure:
        """Return the first pattern match, or a typed failure."""
        split = self.strip_trigger(text)
        if not split.found and self.require_trigger:
            return ExtractionFailure(reason="missing_trigger", detail="no create trigger found")

        content = split.content
        match = _EXPLICIT_OPTIONS_RE.search(content)
        if match:
            return self._fields(match.group(1), match.group(2), match.group(3), pattern=1)

        match = _IMPLICIT_OPTIONS_RE.search(content)
        if match:
            return self._fields(match.group(1), match.group(2), match.group(3), pattern=2)

        match = _OPTIONS_ONLY_RE.search(content)
        if match:
            option_a = match.group(1).strip()
            option_b = match.group(2).strip()
            return ExtractedMarketFields(
                question=synthesize_question(option_a, option_b),
                option_a=option_a,
                option_b=option_b,
                source="grammar",
                pattern=3,
            )

        self.logger.debug("No market grammar pattern matched", extra={"content": content[:120]})
        return ExtractionFailure(reason="no_match", detail="no question/options pattern matched")

    def strip_trigger(self, text: str) -> _TriggerSplit:
        """Drop everything up to and including the create marker or command."""
        command = _CREATE_COMMAND_RE.match(text)
        if command:
            return _TriggerSplit(content=text[command.end():].strip(), found=True)
        marker = _CREATE_MARKET_MARKER_RE.search(text)
        if marker:
            return _TriggerSplit(content=text[marker.end():].strip(), found=True)
        return _TriggerSplit(content=self._strip_mention(text).strip(), found=False)

    def is_addressed_to_agent(self, text: str) -> bool:
        """True when the text mentions the configured agent account."""
        if not self.agent_username:
            return False
        return f"@{self.agent_username.lower()}" in text.lower()

    def _strip_mention(self, text: str) -> str:
        if not self.agent_username:
            return text
        return re.sub(rf"@{re.escape(self.agent_username)}\b", "", text, flags=re.IGNORECASE)

    @staticmethod
    def _fields(
        question: str, option_a: str, option_b: str, *, pattern: int
    ) -> ExtractedMarketFields:
        return ExtractedMarketFields(
            question=question.strip(),
            option_a=option_a.strip(),
            option_b=option_b.strip(),
            source="grammar",
            pattern=pattern,
        )


def extract_strategy_deposit(text: str) -> StrategyDepositFields | ExtractionFailure:
    """Parse ``deposit <amount> [BTC] [into] <strategy>`` commands."""
    match = _DEPOSIT_RE.match(text)
    if not match:
        return ExtractionFailure(reason="no_match", detail="no deposit pattern matched")
    return StrategyDepositFields(
        strategy=match.group("strategy"),
        amount=match.group("amount"),
        source="grammar",
    )


def is_deposit_command(text: str) -> bool:
    return _DEPOSIT_COMMAND_RE.match(text) is not None


def is_help_command(text: str) -> bool:
    return _HELP_COMMAND_RE.match(text) is not None
