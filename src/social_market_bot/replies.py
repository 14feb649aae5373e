"""Reply texts and best-effort delivery back to the origin channel."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .adapters.base import ChannelAdapter
from .exceptions import ChainError, DeliveryError, JournalError, SubmissionTimeoutError
from .journal import JournalWriter
from .models import (
    OriginChannel,
    ParsedMarketRequest,
    ReplyMessage,
    StrategyDepositRequest,
    SubmissionResult,
    ValidationFailure,
)
from .validation import STRATEGY_DESCRIPTIONS

GENERIC_RETRY_TEXT = "Sorry, there was an error creating the market. Please try again later."


def format_help(agent_username: str | None, channel: OriginChannel | None = None) -> str:
    """Usage text listing both accepted market formats."""
    mention = f"@{agent_username} " if agent_username else ""
    lines = [
        "To create a prediction market, use one of these formats:",
        f'1. {mention}create market: "Your question?" Options: Option1/Option2',
        f"2. {mention}create market: Option1/Option2",
    ]
    if channel in (OriginChannel.TELEGRAM, OriginChannel.CHAT, None):
        lines += [
            "",
            "Chat command:",
            '/create "Your question here" Options: Option1/Option2',
            "",
            "Example:",
            '/create "Will GPT-5 pass the Turing Test by 2026?" Options: Yes/No',
        ]
    return "\n".join(lines)


def help_message(agent_username: str | None, channel: OriginChannel | None) -> ReplyMessage:
    return ReplyMessage(
        text=format_help(agent_username, channel),
        content={"error": "invalid_format"},
    )


def success_message(
    request: ParsedMarketRequest,
    result: SubmissionResult,
    *,
    frontend_url: str | None = None,
) -> ReplyMessage:
    lines = [
        "✨ Market created successfully!",
        "",
        f"Market ID: {result.market_id}",
        f"Question: {request.question}",
        f"Options: {request.option_a} vs {request.option_b}",
        f"Tx Hash: {result.transaction_hash}",
    ]
    content: dict[str, Any] = {
        "marketId": result.market_id,
        "transactionHash": result.transaction_hash,
        "parameters": request.as_parameters(),
    }
    if frontend_url:
        market_url = f"{frontend_url.rstrip('/')}/markets/{result.market_id}"
        lines += ["", f"🔗 Make your prediction at: {market_url}"]
        content["marketUrl"] = market_url
    return ReplyMessage(text="\n".join(lines), content=content)


def validation_message(failure: ValidationFailure) -> ReplyMessage:
    content: dict[str, Any] = {"error": failure.kind}
    if failure.missing_fields:
        content["missingFields"] = list(failure.missing_fields)
    return ReplyMessage(text=failure.message, content=content)


def chain_failure_message(exc: ChainError) -> ReplyMessage:
    if isinstance(exc, SubmissionTimeoutError):
        return ReplyMessage(
            text=(
                f"Your market transaction {exc.transaction_hash} was broadcast but not "
                f"confirmed within {exc.timeout_seconds:g} seconds. It may still confirm, "
                "so check it before creating the market again."
            ),
            content={"error": "timeout", "transactionHash": exc.transaction_hash},
        )
    content: dict[str, Any] = {"error": "chain_error"}
    text = GENERIC_RETRY_TEXT
    if exc.category == "market_id_unresolved" and exc.transaction_hash:
        text = (
            f"Your market was created in transaction {exc.transaction_hash}, but its id "
            "could not be read yet. Please do not create it again."
        )
        content["transactionHash"] = exc.transaction_hash
    return ReplyMessage(text=text, content=content)


def deposit_help_message() -> ReplyMessage:
    return ReplyMessage(
        text=(
            "To choose a BTC yield strategy, use:\n"
            "/deposit <amount> BTC into <strategy>\n\n"
            "Strategies: Segment, Solv, Avalon, Bedrock, Pell, Ionic\n"
            "Example: /deposit 0.5 BTC into Solv"
        ),
        content={"error": "invalid_format"},
    )


def strategy_message(request: StrategyDepositRequest) -> ReplyMessage:
    info = STRATEGY_DESCRIPTIONS.get(request.strategy, "Strategy information not available.")
    return ReplyMessage(
        text=(
            f"Great! I'll help you deposit {request.amount:g} BTC into the "
            f"{request.strategy} strategy.\n\n{info}\n\n"
            "Would you like to proceed with the deposit?"
        ),
        content={
            "strategy": request.strategy,
            "amount": request.amount,
            "readyToDeposit": True,
        },
    )


class ReplyDispatcher:
    """Route replies to the adapter for each origin channel.

    Delivery is best-effort: a failed acknowledgment is logged and journaled
    but never raised, because the market may already be confirmed on-chain.
    """

    def __init__(
        self,
        adapters: Iterable[ChannelAdapter],
        logger: logging.Logger,
        journal: JournalWriter | None = None,
    ) -> None:
        self._adapters = {adapter.channel: adapter for adapter in adapters}
        self.logger = logger
        self.journal = journal

    def register(self, adapter: ChannelAdapter) -> None:
        self._adapters[adapter.channel] = adapter

    def reply(self, channel: OriginChannel, origin_id: str, message: ReplyMessage) -> bool:
        """Send ``message``; return True when the platform accepted it."""
        adapter = self._adapters.get(channel)
        if adapter is None:
            self.logger.error("No adapter registered for channel %s", channel.value)
            self._journal("reply_failed", channel, origin_id, {"error": "no_adapter"})
            return False
        try:
            adapter.send(origin_id, message.text, message.content)
        except DeliveryError as exc:
            self.logger.warning("Reply to %s %s failed: %s", channel.value, origin_id, exc)
            self._journal("reply_failed", channel, origin_id, {"error": str(exc)})
            return False
        except Exception as exc:
            self.logger.exception("Unexpected error replying to %s %s", channel.value, origin_id)
            self._journal(
                "reply_failed",
                channel,
                origin_id,
                {"error": str(exc), "type": type(exc).__name__},
            )
            return False
        self._journal("reply_sent", channel, origin_id, {"content": message.content})
        return True

    def _journal(
        self,
        event_type: str,
        channel: OriginChannel,
        origin_id: str,
        payload: dict[str, Any],
    ) -> None:
        if self.journal is None:
            return
        try:
            self.journal.write_event(
                event_type,
                payload=payload,
                metadata={"origin_channel": channel.value, "origin_id": origin_id},
            )
        except JournalError as exc:
            self.logger.error("Failed to journal %s: %s", event_type, exc)
