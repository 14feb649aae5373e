"""Pipeline transition table and reply catalogue tests."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from social_market_bot.exceptions import ChainError
from social_market_bot.models import (
    OriginChannel,
    ParsedMarketRequest,
    ReplyMessage,
    SubmissionResult,
)
from social_market_bot.pipeline.state import (
    PipelineRecord,
    PipelineTracker,
    is_terminal_pipeline_state,
)
from social_market_bot.replies import (
    GENERIC_RETRY_TEXT,
    ReplyDispatcher,
    chain_failure_message,
    format_help,
    success_message,
)


def _tracker() -> PipelineTracker:
    record = PipelineRecord(
        command_id="cmd-1",
        origin_channel=OriginChannel.TELEGRAM,
        origin_id="9:1",
    )
    start = datetime(2026, 10, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    return PipelineTracker(record=record, now_provider=lambda: start)


def test_happy_path_transitions_record_utc_events() -> None:
    tracker = _tracker()
    for state in ("extracted", "validated", "submitted", "confirmed", "replied"):
        tracker.transition(state)  # type: ignore[arg-type]
    record = tracker.record
    assert record.current_state == "replied"
    assert record.succeeded
    assert all(event.ts.tzinfo == UTC for event in record.events)
    assert record.events[0].ts.hour == 10


@pytest.mark.parametrize(
    "path",
    [
        ("submitted",),
        ("extracted", "submitted"),
        ("extracted", "validated", "confirmed"),
    ],
)
def test_skipping_stages_is_rejected(path: tuple[str, ...]) -> None:
    tracker = _tracker()
    with pytest.raises(ValueError, match="Invalid pipeline transition"):
        for state in path:
            tracker.transition(state)  # type: ignore[arg-type]


def test_failed_is_absorbing_and_remembers_stage() -> None:
    tracker = _tracker()
    tracker.transition("extracted")
    tracker.fail("validation_missing_fields")
    record = tracker.record
    assert record.current_state == "failed"
    assert record.failure_stage == "extracted"
    assert not record.succeeded
    with pytest.raises(ValueError):
        tracker.transition("validated")


def test_cannot_fail_after_confirmation() -> None:
    tracker = _tracker()
    for state in ("extracted", "validated", "submitted", "confirmed"):
        tracker.transition(state)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        tracker.fail("late")


def test_terminal_states() -> None:
    assert is_terminal_pipeline_state("confirmed")
    assert is_terminal_pipeline_state("failed")
    assert not is_terminal_pipeline_state("submitted")


def test_parsed_request_invariants() -> None:
    with pytest.raises(ValidationError):
        ParsedMarketRequest(question="Q?", option_a="A", option_b="B", duration_seconds=0)
    with pytest.raises(ValidationError):
        ParsedMarketRequest(
            question="Q?", option_a="A", option_b="B", duration_seconds=60, fee_basis_points=10_001
        )


def test_help_lists_both_formats_and_chat_variant() -> None:
    twitter_help = format_help("predictbot", OriginChannel.TWITTER)
    assert '@predictbot create market: "Your question?" Options: Option1/Option2' in twitter_help
    assert "@predictbot create market: Option1/Option2" in twitter_help
    assert "/create" not in twitter_help
    assert "/create" in format_help("predictbot", OriginChannel.TELEGRAM)


def test_success_message_payload() -> None:
    request = ParsedMarketRequest(
        question="Rain?", option_a="Yes", option_b="No", duration_seconds=86400
    )
    message = success_message(request, SubmissionResult(market_id=12, transaction_hash="0xabc"))
    assert "Market ID: 12" in message.text
    assert "Yes vs No" in message.text
    assert message.content["parameters"]["question"] == "Rain?"
    assert "marketUrl" not in message.content


def test_chain_failure_messages() -> None:
    generic = chain_failure_message(ChainError("boom", category="rpc"))
    assert generic.text == GENERIC_RETRY_TEXT
    unresolved = chain_failure_message(
        ChainError("count read failed", category="market_id_unresolved", transaction_hash="0x1")
    )
    assert "0x1" in unresolved.text
    assert unresolved.content["transactionHash"] == "0x1"


def test_reply_message_rejects_blank_text() -> None:
    with pytest.raises(ValidationError):
        ReplyMessage(text="   ")


def test_dispatcher_without_adapter_returns_false() -> None:
    dispatcher = ReplyDispatcher([], logging.getLogger("test.replies"))
    assert dispatcher.reply(OriginChannel.TWITTER, "1", ReplyMessage(text="hi")) is False
