"""Tests for the ordered market/deposit command grammar."""

from __future__ import annotations

import pytest

from social_market_bot.extraction.grammar import (
    MarketRequestExtractor,
    extract_strategy_deposit,
    is_deposit_command,
    is_help_command,
    synthesize_question,
)
from social_market_bot.models import ExtractedMarketFields, ExtractionFailure


def _extractor(require_trigger: bool = True) -> MarketRequestExtractor:
    return MarketRequestExtractor("predictbot", require_trigger=require_trigger)


@pytest.mark.parametrize(
    ("question", "option_a", "option_b"),
    [
        ("Will it rain tomorrow?", "Yes", "No"),
        ("Who wins the final?", "Team Red", "Team Blue"),
        ("Will BTC/ETH ratio rise?", "Up", "Down"),
    ],
)
def test_labelled_options_use_first_pattern(question: str, option_a: str, option_b: str) -> None:
    fields = _extractor().extract(
        f'@predictbot create market: "{question}" Options: {option_a}/{option_b}'
    )
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.pattern == 1
    assert fields.question == question
    assert fields.option_a == option_a
    assert fields.option_b == option_b
    assert fields.source == "grammar"


def test_unlabelled_options_use_second_pattern() -> None:
    fields = _extractor().extract('create market: "Will it snow?"  Yes / No ')
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.pattern == 2
    assert fields.question == "Will it snow?"
    assert fields.option_a == "Yes"
    assert fields.option_b == "No"


def test_options_only_synthesizes_question() -> None:
    fields = _extractor().extract("@predictbot create market: Yes/No")
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.pattern == 3
    assert fields.option_a == "Yes"
    assert fields.option_b == "No"
    assert "Yes" in fields.question and "No" in fields.question
    assert fields.question == synthesize_question("Yes", "No")


def test_trigger_is_case_insensitive_and_mention_optional() -> None:
    fields = _extractor().extract('CREATE MARKET: "Q?" options: A/B')
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.pattern == 1
    assert (fields.option_a, fields.option_b) == ("A", "B")


def test_chat_command_variant_with_bot_suffix() -> None:
    fields = _extractor().extract('/create@PredictBot "Will GPT-5 ship?" Options: Yes/No')
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.pattern == 1
    assert fields.question == "Will GPT-5 ship?"


def test_no_question_and_no_options_is_no_match() -> None:
    failure = _extractor().extract("@predictbot create market: will it rain tomorrow")
    assert isinstance(failure, ExtractionFailure)
    assert failure.reason == "no_match"


def test_mention_without_trigger_reports_missing_trigger() -> None:
    failure = _extractor().extract("@predictbot what's up? Yes/No")
    assert isinstance(failure, ExtractionFailure)
    assert failure.reason == "missing_trigger"


def test_untriggered_extractor_strips_mention() -> None:
    fields = _extractor(require_trigger=False).extract('@predictbot "Rain today?" Options: Yes/No')
    assert isinstance(fields, ExtractedMarketFields)
    assert fields.question == "Rain today?"


def test_is_addressed_to_agent() -> None:
    extractor = _extractor()
    assert extractor.is_addressed_to_agent("hey @PredictBot create market: A/B")
    assert not extractor.is_addressed_to_agent("hey @someoneelse")


def test_help_and_deposit_detection() -> None:
    assert is_help_command("/help")
    assert is_help_command("/start@PredictBot ")
    assert not is_help_command("/helpme")
    assert is_deposit_command("/deposit 1 BTC into solv")
    assert is_deposit_command("deposit 1 into pell")
    assert not is_deposit_command("/create A/B")


@pytest.mark.parametrize(
    ("text", "amount", "strategy"),
    [
        ("/deposit 0.5 BTC into Solv", "0.5", "Solv"),
        ("deposit 2 btc in the bedrock strategy", "2", "bedrock"),
        ("/deposit 1 ionic", "1", "ionic"),
        ("/deposit -1 BTC to pell", "-1", "pell"),
    ],
)
def test_deposit_grammar(text: str, amount: str, strategy: str) -> None:
    fields = extract_strategy_deposit(text)
    assert not isinstance(fields, ExtractionFailure)
    assert fields.amount == amount
    assert fields.strategy == strategy


def test_deposit_grammar_without_amount_fails() -> None:
    failure = extract_strategy_deposit("/deposit into solv")
    assert isinstance(failure, ExtractionFailure)
    assert failure.reason == "no_match"
