"""Command pipeline: extract, validate, submit, reply."""

from __future__ import annotations

import functools
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any, Protocol

from ..exceptions import ChainError, JournalError
from ..extraction.grammar import (
    MarketRequestExtractor,
    extract_strategy_deposit,
    is_deposit_command,
    is_help_command,
)
from ..extraction.llm import ModelFieldExtractor
from ..journal import JournalWriter
from ..models import (
    ExtractedMarketFields,
    ExtractionFailure,
    OriginChannel,
    ParsedMarketRequest,
    RawCommand,
    ReplyMessage,
    StrategyDepositFields,
    SubmissionResult,
    ValidationFailure,
)
from ..redaction import sanitize_text
from ..replies import (
    GENERIC_RETRY_TEXT,
    ReplyDispatcher,
    chain_failure_message,
    deposit_help_message,
    help_message,
    strategy_message,
    success_message,
    validation_message,
)
from ..validation import ParameterValidator
from .state import PipelineRecord, PipelineTracker, is_terminal_pipeline_state


class MarketSubmitter(Protocol):
    """Signs and confirms one market request.

    Implementations should call ``on_broadcast`` with the transaction hash as
    soon as the node accepts it; the pipeline records the broadcast from the
    result or error hash when they do not.
    """

    def submit(
        self,
        request: ParsedMarketRequest,
        *,
        on_broadcast: Callable[[str], None] | None = None,
    ) -> SubmissionResult: ...


class CommandListener(Protocol):
    channel: OriginChannel

    def run(self, handle: Callable[[RawCommand], Any], stop_event: threading.Event) -> None: ...


class CommandPipeline:
    """Run one RawCommand through the pipeline and reply exactly once.

    The pipeline never looks at which platform it serves beyond choosing
    whether a trigger phrase is required and whether the model extractor may
    be used (conversational surfaces only).
    """

    def __init__(
        self,
        *,
        agent_username: str,
        validator: ParameterValidator,
        submitter: MarketSubmitter,
        dispatcher: ReplyDispatcher,
        logger: logging.Logger,
        journal: JournalWriter | None = None,
        model_extractor: ModelFieldExtractor | None = None,
        frontend_url: str | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.agent_username = agent_username
        self.validator = validator
        self.submitter = submitter
        self.dispatcher = dispatcher
        self.logger = logger
        self.journal = journal
        self.model_extractor = model_extractor
        self.frontend_url = frontend_url
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        self._triggered_extractor = MarketRequestExtractor(
            agent_username, require_trigger=True, logger=logger
        )
        self._untriggered_extractor = MarketRequestExtractor(
            agent_username, require_trigger=False, logger=logger
        )

    def handle(self, command: RawCommand) -> PipelineRecord:
        """Process one command to a terminal state and return its record."""
        tracker = self.open(command)
        try:
            finish = self.prepare(command, tracker)
            return finish() if finish is not None else tracker.record
        except Exception as exc:
            self.recover(command, tracker, exc)
            raise

    def open(self, command: RawCommand) -> PipelineTracker:
        """Start a pipeline record for ``command`` in state ``received``."""
        record = PipelineRecord(
            command_id=uuid.uuid4().hex[:12],
            origin_channel=command.origin_channel,
            origin_id=command.origin_id,
        )
        tracker = PipelineTracker(record=record, now_provider=self._now_provider)
        self._write_event(
            "command_received",
            record,
            payload={"text": command.text[:500]},
        )
        return tracker

    def prepare(
        self, command: RawCommand, tracker: PipelineTracker
    ) -> Callable[[], PipelineRecord] | None:
        """Run every step that needs no signer.

        Returns the submission step for a validated market request, or None
        once the command has already been answered.
        """
        if is_help_command(command.text):
            tracker.record.kind = "help"
            tracker.transition("extracted", note="help")
            tracker.transition("validated", note="help")
            self._reply(
                tracker,
                help_message(self.agent_username, command.origin_channel),
                final_state="replied",
            )
            return None

        if is_deposit_command(command.text):
            tracker.record.kind = "strategy"
            self._handle_deposit(command, tracker)
            return None
        validated = self._prepare_market(command, tracker)
        if validated is None:
            return None
        return functools.partial(self._submit_market, tracker, validated)

    def recover(
        self,
        command: RawCommand,
        tracker: PipelineTracker | None,
        exc: BaseException,
    ) -> None:
        """Fail a command that hit an unexpected error and answer it if nobody has."""
        self.logger.error(
            "Pipeline crashed on %s command %s: %s: %s",
            command.origin_channel.value,
            command.origin_id,
            type(exc).__name__,
            sanitize_text(str(exc)),
        )
        if tracker is not None:
            record = tracker.record
            if not is_terminal_pipeline_state(record.current_state):
                tracker.fail("internal_error", metadata={"error": type(exc).__name__})
                self._write_event(
                    "pipeline_failed",
                    record,
                    payload={
                        "failure_stage": record.failure_stage,
                        "failure_reason": "internal_error",
                        "transaction_hash": record.transaction_hash,
                    },
                )
            if record.reply_attempted:
                return
            record.reply_attempted = True
        self.dispatcher.reply(
            command.origin_channel,
            command.origin_id,
            ReplyMessage(text=GENERIC_RETRY_TEXT, content={"error": "internal_error"}),
        )

    def _prepare_market(
        self, command: RawCommand, tracker: PipelineTracker
    ) -> ParsedMarketRequest | None:
        record = tracker.record
        fields = self._extract_market(command)
        if isinstance(fields, ExtractionFailure):
            self._fail(
                tracker,
                f"extraction_{fields.reason}",
                help_message(self.agent_username, command.origin_channel),
                metadata={"detail": fields.detail},
            )
            return None
        tracker.transition("extracted", note=f"{fields.source}:{fields.pattern or '-'}")
        self._write_event(
            "command_extracted",
            record,
            payload={"source": fields.source, "pattern": fields.pattern},
        )

        validated = self.validator.validate(fields)
        if isinstance(validated, ValidationFailure):
            self._fail(
                tracker,
                f"validation_{validated.kind}",
                validation_message(validated),
                metadata={"missing_fields": validated.missing_fields},
            )
            return None
        record.request = validated
        tracker.transition("validated")
        self._write_event("command_validated", record, payload=validated.as_parameters())
        return validated

    def _submit_market(
        self, tracker: PipelineTracker, validated: ParsedMarketRequest
    ) -> PipelineRecord:
        record = tracker.record

        def on_broadcast(transaction_hash: str) -> None:
            record.transaction_hash = transaction_hash
            tracker.transition("submitted", metadata={"transaction_hash": transaction_hash})
            self._write_event(
                "market_submitted",
                record,
                payload={"transaction_hash": transaction_hash},
            )

        try:
            result = self.submitter.submit(validated, on_broadcast=on_broadcast)
        except ChainError as exc:
            self.logger.error(
                "Market submission failed for command %s (%s): %s",
                record.command_id,
                exc.category,
                sanitize_text(str(exc)),
            )
            # A hash on the error means the transaction left the signer.
            if exc.transaction_hash and record.current_state == "validated":
                on_broadcast(exc.transaction_hash)
            self._fail(
                tracker,
                f"chain_{exc.category}",
                chain_failure_message(exc),
                metadata={"transaction_hash": exc.transaction_hash},
            )
            return record

        if record.current_state == "validated":
            on_broadcast(result.transaction_hash)
        record.result = result
        record.transaction_hash = result.transaction_hash
        tracker.transition("confirmed", metadata={"market_id": result.market_id})
        self._write_event(
            "market_confirmed",
            record,
            payload={
                "market_id": result.market_id,
                "transaction_hash": result.transaction_hash,
                "market_id_source": result.market_id_source,
                "block_number": result.block_number,
            },
        )
        self._reply(
            tracker,
            success_message(validated, result, frontend_url=self.frontend_url),
            final_state="replied",
        )
        return record

    def _handle_deposit(self, command: RawCommand, tracker: PipelineTracker) -> None:
        record = tracker.record
        fields = self._extract_deposit(command)
        if isinstance(fields, ExtractionFailure):
            self._fail(tracker, f"extraction_{fields.reason}", deposit_help_message())
            return
        tracker.transition("extracted", note=f"deposit:{fields.source}")
        self._write_event("command_extracted", record, payload={"source": fields.source})

        validated = self.validator.validate_strategy_deposit(fields)
        if isinstance(validated, ValidationFailure):
            self._fail(tracker, f"validation_{validated.kind}", validation_message(validated))
            return
        tracker.transition("validated")
        self._write_event("command_validated", record, payload=validated.model_dump())
        self._reply(tracker, strategy_message(validated), final_state="replied")

    def _extract_market(self, command: RawCommand) -> ExtractedMarketFields | ExtractionFailure:
        if command.origin_channel is not OriginChannel.CHAT:
            return self._triggered_extractor.extract(command.text)
        fields = self._untriggered_extractor.extract(command.text)
        if isinstance(fields, ExtractionFailure) and self.model_extractor is not None:
            self.logger.info("Grammar did not match; trying model extraction")
            return self.model_extractor.extract(command.text)
        return fields

    def _extract_deposit(self, command: RawCommand) -> StrategyDepositFields | ExtractionFailure:
        fields = extract_strategy_deposit(command.text)
        if (
            isinstance(fields, ExtractionFailure)
            and command.origin_channel is OriginChannel.CHAT
            and self.model_extractor is not None
        ):
            return self.model_extractor.extract_strategy(command.text)
        return fields

    def _fail(
        self,
        tracker: PipelineTracker,
        reason: str,
        message: ReplyMessage,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        record = tracker.record
        tracker.fail(reason, metadata=metadata)
        self._write_event(
            "pipeline_failed",
            record,
            payload={
                "failure_stage": record.failure_stage,
                "failure_reason": reason,
                "transaction_hash": record.transaction_hash,
            },
        )
        self._reply(tracker, message, final_state=None)

    def _reply(
        self,
        tracker: PipelineTracker,
        message: ReplyMessage,
        *,
        final_state: str | None,
    ) -> None:
        record = tracker.record
        record.reply_attempted = True
        delivered = self.dispatcher.reply(record.origin_channel, record.origin_id, message)
        record.reply_delivered = delivered
        if delivered and final_state == "replied":
            tracker.transition("replied")

    def _write_event(
        self,
        event_type: str,
        record: PipelineRecord,
        *,
        payload: dict[str, Any],
    ) -> None:
        if self.journal is None:
            return
        try:
            self.journal.write_event(
                event_type,
                payload=payload,
                metadata={
                    "command_id": record.command_id,
                    "origin_channel": record.origin_channel.value,
                    "origin_id": record.origin_id,
                    "state": record.current_state,
                },
            )
        except JournalError as exc:
            self.logger.error(
                "Failed to write %s journal event: %s",
                event_type,
                sanitize_text(str(exc)),
            )


class PipelineRunner:
    """Feed commands from concurrent listeners into the pipeline.

    Extraction, validation and replies for non-market commands run on a
    bounded worker pool. Broadcasting and awaiting confirmation run on a
    single submission thread, the one place the signer's nonce is consumed,
    so a slow confirmation never holds up help or failure replies.
    """

    def __init__(
        self,
        pipeline: CommandPipeline,
        logger: logging.Logger,
        *,
        max_workers: int = 4,
    ) -> None:
        self.pipeline = pipeline
        self.logger = logger
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="pipeline",
        )
        self._submissions = ThreadPoolExecutor(max_workers=1, thread_name_prefix="submission")

    def dispatch(self, command: RawCommand) -> Future[PipelineRecord]:
        outcome: Future[PipelineRecord] = Future()
        outcome.add_done_callback(self._log_outcome)
        self._executor.submit(self._run_prepare, command, outcome)
        return outcome

    def serve(self, listeners: Iterable[CommandListener], stop_event: threading.Event) -> None:
        """Run every listener on its own thread until ``stop_event`` is set."""
        threads = [
            threading.Thread(
                target=listener.run,
                args=(self.dispatch, stop_event),
                name=f"listener-{listener.channel.value}",
                daemon=True,
            )
            for listener in listeners
        ]
        for thread in threads:
            thread.start()
        try:
            while not stop_event.is_set() and any(thread.is_alive() for thread in threads):
                stop_event.wait(1.0)
        finally:
            stop_event.set()
            for thread in threads:
                thread.join(timeout=5.0)
            self.shutdown()

    def shutdown(self) -> None:
        # Prepare workers may still queue submissions, so drain them first.
        self._executor.shutdown(wait=True)
        self._submissions.shutdown(wait=True)

    def _run_prepare(self, command: RawCommand, outcome: Future[PipelineRecord]) -> None:
        tracker: PipelineTracker | None = None
        try:
            tracker = self.pipeline.open(command)
            finish = self.pipeline.prepare(command, tracker)
            if finish is None:
                outcome.set_result(tracker.record)
                return
            self._submissions.submit(self._run_submission, command, tracker, finish, outcome)
        except Exception as exc:
            self.pipeline.recover(command, tracker, exc)
            outcome.set_exception(exc)

    def _run_submission(
        self,
        command: RawCommand,
        tracker: PipelineTracker,
        finish: Callable[[], PipelineRecord],
        outcome: Future[PipelineRecord],
    ) -> None:
        try:
            outcome.set_result(finish())
        except Exception as exc:
            self.pipeline.recover(command, tracker, exc)
            outcome.set_exception(exc)

    def _log_outcome(self, future: Future[PipelineRecord]) -> None:
        exc = future.exception()
        if exc is not None:
            self.logger.error(
                "Pipeline worker crashed: %s: %s",
                type(exc).__name__,
                sanitize_text(str(exc)),
            )
            return
        record = future.result()
        self.logger.info(
            "Command %s from %s finished in state %s",
            record.command_id,
            record.origin_channel.value,
            record.current_state,
        )
