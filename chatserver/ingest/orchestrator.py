"""
Ingestion run: messages, then statuses, then a replay of deferred statuses,
then a summary.

    idle -> reading-messages -> reading-statuses -> replaying-pending
         -> summarizing -> done

A file that fails is logged and skipped. A store outage aborts the run
(state ``failed``) and the error reaches the caller.
"""
import enum
import threading
from typing import Any, Callable, Optional

from chatserver.core.errors import IngestionInProgressError, MalformedPayloadError, StoreUnavailableError
from chatserver.core.logging import get_logger
from chatserver.ingest.ingestor import EventCallback, MessageIngestor
from chatserver.ingest.reader import PayloadFile, PayloadReader
from chatserver.ingest.reconciler import StatusReconciler
from chatserver.ingest.summary import SummaryAggregator
from chatserver.schemas.ingest import IngestionReport, SkippedFile
from chatserver.services.message_store import MessageStore

logger = get_logger(__name__)


class RunState(str, enum.Enum):
    IDLE = "idle"
    READING_MESSAGES = "reading-messages"
    READING_STATUSES = "reading-statuses"
    REPLAYING_PENDING = "replaying-pending"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


FINISHED_STATES = (RunState.IDLE, RunState.DONE, RunState.FAILED)


class IngestionOrchestrator:
    """Drives one ingestion run at a time over a payload directory."""

    def __init__(
        self,
        store: MessageStore,
        reader: PayloadReader,
        on_event: Optional[EventCallback] = None,
        lock: Optional[threading.Lock] = None,
    ):
        self.store = store
        self.reader = reader
        self.on_event = on_event
        # Shared between orchestrators that must not run at the same time
        self.lock = lock or threading.Lock()
        self.state = RunState.IDLE
        self.report: Optional[IngestionReport] = None

    def _transition(self, state: RunState) -> None:
        logger.debug("Ingestion state change", extra={"extra_data": {"from": self.state.value, "to": state.value}})
        self.state = state

    def _process_file(self, report: IngestionReport, item: PayloadFile, step: Callable[[Any, str], Any]) -> Any:
        try:
            return step(item.payload, item.filename)
        except StoreUnavailableError:
            raise
        except MalformedPayloadError as e:
            logger.warning("Skipping payload file", extra={"extra_data": {"file": e.filename, "reason": e.reason}})
            report.skipped.append(SkippedFile(filename=e.filename, reason=e.reason))
        except Exception as e:
            logger.exception("Error processing payload file", extra={"extra_data": {"file": item.filename}})
            self.store.rollback()
            report.skipped.append(SkippedFile(filename=item.filename, reason=str(e)))
        return None

    def run(self) -> IngestionReport:
        if self.state not in FINISHED_STATES:
            raise IngestionInProgressError(f"Ingestion run already in progress ({self.state.value})")
        if not self.lock.acquire(blocking=False):
            raise IngestionInProgressError("Ingestion run already in progress")
        try:
            return self._run()
        finally:
            self.lock.release()

    def _run(self) -> IngestionReport:
        ingestor = MessageIngestor(self.store, self.on_event)
        reconciler = StatusReconciler(self.store, self.on_event)
        report = self.report = IngestionReport(state=self.state.value)

        try:
            self._transition(RunState.READING_MESSAGES)
            batch = self.reader.read()
            report.message_files = len(batch.messages)
            report.status_files = len(batch.statuses)
            report.skipped.extend(SkippedFile(filename=w.filename, reason=w.reason) for w in batch.warnings)

            for item in batch.messages:
                ingested = self._process_file(report, item, ingestor.ingest)
                if ingested is None:
                    continue
                if ingested.created:
                    report.messages_created += 1
                else:
                    report.messages_duplicate += 1

            self._transition(RunState.READING_STATUSES)
            for item in batch.statuses:
                before = len(reconciler.pending)
                applied = self._process_file(report, item, reconciler.reconcile)
                if applied is not None:
                    report.statuses_applied += 1
                elif len(reconciler.pending) > before:
                    report.statuses_deferred += 1

            self._transition(RunState.REPLAYING_PENDING)
            replayed = reconciler.replay()
            report.statuses_replayed = len(replayed.applied)
            report.unresolved = [event.message_id for event in replayed.unresolved]

            self._transition(RunState.SUMMARIZING)
            report.summary = SummaryAggregator(self.store).summarize()
        except Exception:
            self._transition(RunState.FAILED)
            report.state = self.state.value
            logger.error("Ingestion run failed", extra={"extra_data": {"processed": len(ingestor.processed)}})
            raise

        self._transition(RunState.DONE)
        report.state = self.state.value
        logger.info(
            "Ingestion run complete",
            extra={"extra_data": {
                "messages_created": report.messages_created,
                "messages_duplicate": report.messages_duplicate,
                "statuses_applied": report.statuses_applied,
                "statuses_replayed": report.statuses_replayed,
                "unresolved": len(report.unresolved),
                "skipped": len(report.skipped),
            }}
        )
        return report
