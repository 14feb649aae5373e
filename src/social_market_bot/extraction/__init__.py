"""Command text extraction: ordered grammar plus optional model fallback."""

from .grammar import (
    MarketRequestExtractor,
    extract_strategy_deposit,
    is_deposit_command,
    is_help_command,
    synthesize_question,
)
from .llm import ModelFieldExtractor, parse_model_json

__all__ = [
    "MarketRequestExtractor",
    "ModelFieldExtractor",
    "extract_strategy_deposit",
    "is_deposit_command",
    "is_help_command",
    "parse_model_json",
    "synthesize_question",
]
