"""
Map message payloads to message records and store them once.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from chatserver.core.errors import MalformedPayloadError
from chatserver.core.logging import get_logger
from chatserver.ingest.content import render_body, resolve_content
from chatserver.models.message import Message, MessageStatus
from chatserver.schemas.webhook import ChangeValue, extract_change_value, payload_id
from chatserver.services.message_store import MessageStore
from chatserver.services.realtime import NEW_MESSAGE

logger = get_logger(__name__)

CONVERSATION_PATTERN = re.compile(r"conversation_(\d+)")

EventCallback = Callable[[str, Dict[str, Any]], None]


def conversation_id_for(filename: str, wa_id: str) -> str:
    """``conv_<n>_<wa_id>`` for numbered fixture files, else ``conv_<wa_id>``."""
    match = CONVERSATION_PATTERN.search(filename or "")
    if match:
        return f"conv_{match.group(1)}_{wa_id}"
    return f"conv_{wa_id}"


def epoch_to_datetime(seconds: int) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


@dataclass
class IngestedMessage:
    record: Message
    created: bool


class MessageIngestor:
    """Stores the first message of each payload, at most once per id."""

    def __init__(self, store: MessageStore, on_event: Optional[EventCallback] = None):
        self.store = store
        self.on_event = on_event
        # message_id -> record, for the lifetime of one run
        self.processed: Dict[str, Message] = {}

    def build_record(self, value: ChangeValue, filename: str, source_payload_id: Optional[str] = None) -> Message:
        if not value.messages:
            raise MalformedPayloadError(filename, "No messages found")
        if not value.contacts:
            raise MalformedPayloadError(filename, "No contacts found")

        message = value.messages[0]
        contact = value.contacts[0]
        metadata = value.metadata

        return Message(
            message_id=message.id,
            meta_msg_id=message.meta_msg_id or message.id,
            wa_id=contact.wa_id,
            user_name=contact.profile.name,
            message_body=render_body(resolve_content(message)),
            timestamp=epoch_to_datetime(message.timestamp),
            status=MessageStatus.SENT.value,
            type=message.type,
            sender=message.from_,
            conversation_id=conversation_id_for(filename, contact.wa_id),
            payload_id=source_payload_id,
            phone_number_id=metadata.phone_number_id if metadata else None,
            display_phone_number=metadata.display_phone_number if metadata else None,
            status_history=[],
        )

    def ingest_value(self, value: ChangeValue, filename: str, source_payload_id: Optional[str] = None) -> IngestedMessage:
        return self.save(self.build_record(value, filename, source_payload_id), filename)

    def save(self, record: Message, filename: str) -> IngestedMessage:
        """Insert a built record and announce it when it is new."""
        stored, created = self.store.insert(record)
        self.processed[stored.message_id] = stored

        if created:
            logger.info(
                "Message saved",
                extra={"extra_data": {
                    "message_id": stored.message_id,
                    "conversation_id": stored.conversation_id,
                    "file": filename,
                }}
            )
            if self.on_event is not None:
                self.on_event(NEW_MESSAGE, stored.to_dict())
        else:
            logger.info(
                "Message already exists",
                extra={"extra_data": {"message_id": stored.message_id, "file": filename}}
            )

        return IngestedMessage(record=stored, created=created)

    def ingest(self, payload: Any, filename: str) -> IngestedMessage:
        """Ingest one parsed message payload file.

        Raises:
            MalformedPayloadError: if the payload has no usable message
        """
        value = extract_change_value(payload, filename)
        return self.ingest_value(value, filename, payload_id(payload))
