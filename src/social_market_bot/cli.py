"""Command-line entry point: parse offline, create once, or serve listeners."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import uuid

from rich.console import Console
from rich.table import Table

from .adapters.chat import ChatAdapter
from .adapters.telegram import TelegramAdapter
from .adapters.twitter import TwitterAdapter
from .chain.submission import MarketSubmissionService
from .config import Settings, load_settings
from .exceptions import ChainError, ConfigError, JournalError, ModelExtractionError
from .extraction.grammar import (
    MarketRequestExtractor,
    extract_strategy_deposit,
    is_deposit_command,
)
from .extraction.llm import ModelFieldExtractor
from .journal import JournalWriter
from .log_setup import setup_logger
from .models import ExtractionFailure, OriginChannel, ReplyMessage, ValidationFailure
from .pipeline.orchestrator import CommandPipeline, PipelineRunner
from .replies import ReplyDispatcher, format_help
from .validation import ParameterValidator


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Turn social commands into on-chain prediction markets."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("help", help="Print the accepted command formats.")

    parse_cmd = sub.add_parser("parse", help="Extract and validate a command offline.")
    parse_cmd.add_argument("text", help="Command text, e.g. 'create market: Yes/No'.")
    parse_cmd.add_argument(
        "--agent-username",
        default=None,
        help="Agent account name to strip from mentions.",
    )

    create_cmd = sub.add_parser("create", help="Run one command through the full pipeline.")
    create_cmd.add_argument("text", help="Command text to submit.")

    serve_cmd = sub.add_parser("serve", help="Listen for commands on social surfaces.")
    serve_cmd.add_argument("--telegram", action="store_true", help="Serve Telegram commands.")
    serve_cmd.add_argument("--twitter", action="store_true", help="Serve Twitter mentions.")
    return parser.parse_args(argv)


def _print_parse_result(console: Console, text: str, agent_username: str | None) -> int:
    validator = ParameterValidator()
    table = Table(title="Parsed Command")
    table.add_column("Field")
    table.add_column("Value", overflow="fold")

    if is_deposit_command(text):
        deposit = extract_strategy_deposit(text)
        if isinstance(deposit, ExtractionFailure):
            console.print(f"Extraction failed: {deposit.reason}")
            return 1
        validated_deposit = validator.validate_strategy_deposit(deposit)
        if isinstance(validated_deposit, ValidationFailure):
            console.print(
                f"Validation failed ({validated_deposit.kind}): {validated_deposit.message}"
            )
            return 1
        table.add_row("strategy", validated_deposit.strategy)
        table.add_row("amount", f"{validated_deposit.amount:g}")
        console.print(table)
        return 0

    extractor = MarketRequestExtractor(agent_username, require_trigger=False)
    fields = extractor.extract(text)
    if isinstance(fields, ExtractionFailure):
        console.print(f"Extraction failed: {fields.reason}")
        console.print(format_help(agent_username), markup=False)
        return 1
    validated = validator.validate(fields)
    if isinstance(validated, ValidationFailure):
        console.print(f"Validation failed ({validated.kind}): {validated.message}")
        return 1

    table.add_row("pattern", str(fields.pattern))
    for key, value in validated.as_parameters().items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)
    return 0


def _build_pipeline(
    settings: Settings,
    logger: logging.Logger,
    journal: JournalWriter,
    dispatcher: ReplyDispatcher,
) -> CommandPipeline:
    model_extractor = None
    if settings.llm_extraction_enabled:
        model_extractor = ModelFieldExtractor.from_settings(settings, logger)
    return CommandPipeline(
        agent_username=settings.agent_username,
        validator=ParameterValidator.from_settings(settings, logger),
        submitter=MarketSubmissionService(settings, logger),
        dispatcher=dispatcher,
        logger=logger,
        journal=journal,
        model_extractor=model_extractor,
        frontend_url=str(settings.frontend_url) if settings.frontend_url else None,
    )


def main(argv: list[str] | None = None) -> int:
    """Run the selected CLI command."""
    args = parse_args(argv)
    logger = setup_logger()
    console = Console()

    if args.command == "help":
        console.print(format_help(None), markup=False)
        return 0
    if args.command == "parse":
        return _print_parse_result(console, args.text, args.agent_username)

    session_id = uuid.uuid4().hex[:12]
    try:
        settings = load_settings()
        if args.command == "serve":
            if not (args.telegram or args.twitter):
                raise ConfigError("Choose at least one of --telegram/--twitter to serve.")
            if args.telegram:
                settings.require_channel(OriginChannel.TELEGRAM)
            if args.twitter:
                settings.require_channel(OriginChannel.TWITTER)
    except ConfigError as exc:
        logger.error("Configuration failure: %s", exc)
        return 2

    try:
        journal = JournalWriter(journal_dir=settings.journal_dir, session_id=session_id)
        journal.write_event(
            event_type="startup",
            payload={"command": args.command, **settings.safe_summary()},
            metadata={"session_id": session_id},
        )
    except JournalError as exc:
        logger.error("Failed to initialize journal: %s", exc)
        return 3

    def print_reply(origin_id: str, message: ReplyMessage) -> None:
        console.print(message.text, markup=False)

    dispatcher = ReplyDispatcher([ChatAdapter(print_reply)], logger, journal)
    try:
        pipeline = _build_pipeline(settings, logger, journal, dispatcher)
    except (ChainError, ModelExtractionError) as exc:
        logger.error("Failed to initialize pipeline: %s", exc)
        _write_shutdown(journal, logger, session_id, 4)
        return 4

    exit_code = 0
    try:
        if args.command == "create":
            record = pipeline.handle(ChatAdapter.to_raw_command(args.text, f"cli-{session_id}"))
            exit_code = 0 if record.succeeded else 1
        else:
            exit_code = _serve(args, settings, logger, pipeline, dispatcher)
    except JournalError as exc:
        exit_code = 3
        logger.error("Run failed: %s", exc)
    finally:
        _write_shutdown(journal, logger, session_id, exit_code)
    return exit_code


def _serve(
    args: argparse.Namespace,
    settings: Settings,
    logger: logging.Logger,
    pipeline: CommandPipeline,
    dispatcher: ReplyDispatcher,
) -> int:
    listeners: list[TelegramAdapter | TwitterAdapter] = []
    if args.telegram:
        listeners.append(TelegramAdapter(settings, logger))
    if args.twitter:
        listeners.append(TwitterAdapter(settings, logger))
    for listener in listeners:
        dispatcher.register(listener)

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    runner = PipelineRunner(pipeline, logger, max_workers=settings.pipeline_max_workers)
    try:
        runner.serve(listeners, stop_event)
    finally:
        for listener in listeners:
            listener.close()
    return 0


def _write_shutdown(
    journal: JournalWriter,
    logger: logging.Logger,
    session_id: str,
    exit_code: int,
) -> None:
    try:
        journal.write_event(
            "shutdown",
            payload={"exit_code": exit_code},
            metadata={"session_id": session_id},
        )
    except JournalError:
        logger.error("Failed to write shutdown event to journal.")


if __name__ == "__main__":
    sys.exit(main())
