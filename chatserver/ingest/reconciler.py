"""
Apply status events to stored messages.

A status whose message is not stored yet is parked in :attr:`StatusReconciler.pending`
and retried once by :meth:`StatusReconciler.replay`.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from chatserver.core.errors import MalformedPayloadError
from chatserver.core.logging import get_logger
from chatserver.ingest.ingestor import epoch_to_datetime
from chatserver.models.message import Message, MessageStatus
from chatserver.schemas.webhook import ChangeValue, WebhookStatus, extract_change_value
from chatserver.services.message_store import MessageStore
from chatserver.services.realtime import STATUS_UPDATE

logger = get_logger(__name__)

EventCallback = Callable[[str, Dict[str, Any]], None]


def first_status(value: ChangeValue, filename: str) -> WebhookStatus:
    """The status event a change value carries.

    Raises:
        MalformedPayloadError: if there is none or its status is unknown
    """
    if not value.statuses:
        raise MalformedPayloadError(filename, "No status updates found")

    status = value.statuses[0]
    if not MessageStatus.is_valid(status.status):
        raise MalformedPayloadError(filename, f"Unknown status '{status.status}'")
    return status


@dataclass
class PendingStatus:
    message_id: str
    status: str
    timestamp: int
    filename: str


@dataclass
class ReplayResult:
    applied: List[PendingStatus] = field(default_factory=list)
    unresolved: List[PendingStatus] = field(default_factory=list)


class StatusReconciler:
    """Matches status events against stored messages."""

    def __init__(self, store: MessageStore, on_event: Optional[EventCallback] = None):
        self.store = store
        self.on_event = on_event
        self.pending: List[PendingStatus] = []

    def _apply(self, event: PendingStatus) -> Optional[Message]:
        message = self.store.find_for_status(event.message_id)
        if message is None:
            return None
        self.store.apply_status(message, event.status, epoch_to_datetime(event.timestamp))
        if self.on_event is not None:
            self.on_event(STATUS_UPDATE, {"message_id": message.message_id, "status": event.status})
        return message

    def reconcile_value(self, value: ChangeValue, filename: str) -> Optional[Message]:
        """Apply the first status of `value`; None when it was deferred."""
        status = first_status(value, filename)
        event = PendingStatus(
            message_id=status.id,
            status=status.status,
            timestamp=status.timestamp,
            filename=filename,
        )
        message = self._apply(event)
        if message is not None:
            logger.info(
                "Status updated",
                extra={"extra_data": {"message_id": event.message_id, "status": event.status, "file": filename}}
            )
            return message

        logger.warning(
            "Message not found for status update, deferring",
            extra={"extra_data": {"message_id": event.message_id, "status": event.status, "file": filename}}
        )
        self.pending.append(event)
        return None

    def reconcile(self, payload: Any, filename: str) -> Optional[Message]:
        """Reconcile one parsed status payload file.

        Raises:
            MalformedPayloadError: if the payload has no usable status
        """
        return self.reconcile_value(extract_change_value(payload, filename), filename)

    def replay(self) -> ReplayResult:
        """Retry every pending status once, in arrival order."""
        result = ReplayResult()
        if not self.pending:
            return result

        logger.info("Replaying pending status updates", extra={"extra_data": {"pending": len(self.pending)}})
        for event in self.pending:
            if self._apply(event) is not None:
                result.applied.append(event)
                logger.info(
                    "Delayed status update applied",
                    extra={"extra_data": {"message_id": event.message_id, "status": event.status}}
                )
            else:
                result.unresolved.append(event)
                logger.warning(
                    "Status update unresolved",
                    extra={"extra_data": {"message_id": event.message_id, "file": event.filename}}
                )

        self.pending = []
        return result
