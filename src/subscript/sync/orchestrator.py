"""
Sync orchestrator: one pass of fetch -> select -> extract -> persist.

Failure policy:
- Listing unseen mail fails: the run is marked failed and the error is
  raised to the caller.
- One message fails at any stage, for any reason: the failure is recorded
  on that message's outcome and the run continues.
"""

import base64
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..config import Config
from ..content import ContentSelector, MarkItDownConverter
from ..errors import SubscriptError, TransportError
from ..extraction import ExtractionResult, OllamaExtractionClient
from ..mail_client import FetchedMessage, ImapFetcher
from ..schemas.message import DecomposedMessage
from ..state_store import StoreRouter, StoreTarget, SyncStatus, resolve_message_target

logger = logging.getLogger(__name__)


class FailureStage(str, Enum):
    """Pipeline stage at which a message failed."""

    FETCH = "fetch"
    CONVERSION = "conversion"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"


@dataclass
class MessageOutcome:
    """Result of processing one unseen message."""

    uid: str
    subject: str | None = None
    target: StoreTarget | None = None
    receipt_id: int | None = None
    pending_id: int | None = None
    failed_stage: FailureStage | None = None
    error: str | None = None

    @property
    def imported(self) -> bool:
        return self.pending_id is not None


@dataclass
class SyncSummary:
    """Result of one sync run."""

    status: SyncStatus
    processed: int = 0
    imported: int = 0
    skipped: bool = False  # required settings missing, nothing was attempted
    sync_log_id: int | None = None
    outcomes: list[MessageOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> list[MessageOutcome]:
        return [o for o in self.outcomes if not o.imported]


class SyncOrchestrator:
    """
    Runs the ingestion pipeline over every unseen message.

    Messages are processed strictly one at a time. The run-level sync log is
    written to the store named by the run target; each message is written to
    the test store if the run targets it or the subject carries `[test]`.
    """

    def __init__(
        self,
        config: Config,
        fetcher: ImapFetcher,
        selector: ContentSelector,
        extractor: OllamaExtractionClient,
        stores: StoreRouter,
    ):
        self.config = config
        self.fetcher = fetcher
        self.selector = selector
        self.extractor = extractor
        self.stores = stores

    def run(self, target: StoreTarget = StoreTarget.PRODUCTION) -> SyncSummary:
        """
        Run one sync pass.

        Args:
            target: Store for the sync log and for unmarked messages

        Returns:
            SyncSummary with per-message outcomes

        Raises:
            TransportError: If connecting or listing unseen messages fails.
                The sync log row is marked failed first.
        """
        missing = self.config.missing_sync_settings()
        if missing:
            logger.info("Sync skipped, not configured: %s", ", ".join(missing))
            return SyncSummary(status=SyncStatus.COMPLETED, skipped=True)

        run_store = self.stores.get(target)
        sync_log_id = run_store.start_sync_log()
        logger.info("Sync run %d started (%s store)", sync_log_id, target.value)

        try:
            fetched = self.fetcher.fetch_unseen()
        except TransportError as e:
            logger.error("Sync run %d failed: %s", sync_log_id, e)
            run_store.finish_sync_log(sync_log_id, SyncStatus.FAILED, error_message=str(e))
            raise
        except Exception as e:
            logger.exception("Sync run %d failed while listing unseen mail", sync_log_id)
            run_store.finish_sync_log(sync_log_id, SyncStatus.FAILED, error_message=str(e))
            raise

        outcomes: list[MessageOutcome] = []
        try:
            for item in fetched:
                outcomes.append(self._process(item, target))
        except Exception as e:
            # Unexpected error: never leave the run row in `running`
            imported = sum(1 for o in outcomes if o.imported)
            run_store.finish_sync_log(
                sync_log_id,
                SyncStatus.FAILED,
                processed=len(outcomes),
                imported=imported,
                error_message=str(e),
            )
            raise

        processed = len(outcomes)
        imported = sum(1 for o in outcomes if o.imported)
        run_store.finish_sync_log(
            sync_log_id, SyncStatus.COMPLETED, processed=processed, imported=imported
        )
        logger.info(
            "Sync run %d completed: %d processed, %d imported", sync_log_id, processed, imported
        )

        return SyncSummary(
            status=SyncStatus.COMPLETED,
            processed=processed,
            imported=imported,
            sync_log_id=sync_log_id,
            outcomes=outcomes,
        )

    def _process(self, item: FetchedMessage, run_target: StoreTarget) -> MessageOutcome:
        message = item.message
        if message is None:
            logger.error("Skipping message uid=%s: %s", item.uid, item.error)
            return MessageOutcome(uid=item.uid, failed_stage=FailureStage.FETCH, error=item.error)

        outcome = MessageOutcome(
            uid=item.uid,
            subject=message.subject,
            target=resolve_message_target(run_target, message.subject),
        )

        stage = FailureStage.CONVERSION
        try:
            selected = self.selector.select(message)
            stage = FailureStage.EXTRACTION
            extraction = self.extractor.extract_receipt_data(selected.markdown)
            stage = FailureStage.PERSISTENCE
            outcome.receipt_id, outcome.pending_id = self._persist(
                message, selected.mime_type, selected.data, extraction, outcome.target
            )
        except (SubscriptError, sqlite3.Error) as e:
            logger.error("Failed to process '%s' at %s: %s", message.subject, stage.value, e)
            outcome.failed_stage = stage
            outcome.error = str(e)
            return outcome
        except Exception as e:
            logger.exception(
                "Unexpected error processing '%s' at %s", message.subject, stage.value
            )
            outcome.failed_stage = stage
            outcome.error = f"{type(e).__name__}: {e}"
            return outcome

        logger.info(
            "Queued '%s' as %s (%.2f) in %s store",
            message.subject,
            extraction.classification.value,
            extraction.confidence,
            outcome.target.value,
        )
        return outcome

    def _persist(
        self,
        message: DecomposedMessage,
        mime_type: str | None,
        data: bytes | None,
        extraction: ExtractionResult,
        target: StoreTarget,
    ) -> tuple[int, int]:
        """Write the receipt and its review item in one transaction."""
        store = self.stores.get(target)
        email_date = message.date or datetime.now(timezone.utc).isoformat().replace(
            "+00:00", "Z"
        )
        encoded = base64.b64encode(data).decode("ascii") if data is not None else None

        with store.session() as session:
            receipt_id = session.insert_receipt(
                email_subject=message.subject,
                email_from=message.sender,
                email_date=email_date,
                attachment_mime_type=mime_type,
                attachment_data=encoded,
                raw_email_body=message.body,
            )
            pending_id = session.insert_pending_import(
                email_subject=message.subject,
                email_from=message.sender,
                email_date=message.date or None,
                classification=extraction.classification.value,
                confidence=extraction.confidence,
                extracted_data=extraction.data_json(),
                receipt_id=receipt_id,
            )
        return receipt_id, pending_id


def build_orchestrator(config: Config, fallback_on_error: bool = False) -> SyncOrchestrator:
    """Wire the orchestrator from configuration."""
    converter = MarkItDownConverter(
        python_executable=config.converter.python_executable,
        timeout_seconds=config.converter.timeout_seconds,
    )
    return SyncOrchestrator(
        config=config,
        fetcher=ImapFetcher(config.imap),
        selector=ContentSelector(converter, fallback_on_error=fallback_on_error),
        extractor=OllamaExtractionClient(config.llm),
        stores=StoreRouter(config.storage),
    )


def run_sync(config: Config, test_mode: bool = False) -> SyncSummary:
    """
    Run one sync pass with collaborators built from configuration.

    Args:
        config: Application configuration
        test_mode: Route the whole run to the isolated test store

    Raises:
        TransportError: If the mail server cannot be reached or listed.
    """
    orchestrator = build_orchestrator(config)
    try:
        return orchestrator.run(StoreTarget.from_test_mode(test_mode))
    finally:
        orchestrator.extractor.close()
