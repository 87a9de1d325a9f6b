"""
Message store: the one handle through which every component reads and
writes message records.

Each public method is a single committed request against the database.
Connectivity failures surface as :class:`StoreUnavailableError`.
"""
from datetime import datetime
from functools import wraps
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from chatserver.core.errors import StoreUnavailableError
from chatserver.core.logging import get_logger
from chatserver.models.message import Message, MessageStatus, utcnow

logger = get_logger(__name__)


def _store_call(method):
    """Translate connectivity errors raised by `method`."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error(
                "Message store unavailable",
                extra={"extra_data": {"operation": method.__name__, "error": str(e)}}
            )
            raise StoreUnavailableError(f"Message store unavailable: {e}") from e

    return wrapper


class MessageStore:
    """Store handle wrapping a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    # Lookups

    @_store_call
    def get(self, message_id: str) -> Optional[Message]:
        return self.session.query(Message).filter(Message.message_id == message_id).first()

    @_store_call
    def find_for_status(self, identifier: str) -> Optional[Message]:
        """Locate a message by primary id, falling back to ``meta_msg_id``."""
        message = self.session.query(Message).filter(Message.message_id == identifier).first()
        if message is None:
            message = self.session.query(Message).filter(Message.meta_msg_id == identifier).first()
        return message

    # Writes

    @_store_call
    def insert(self, message: Message) -> Tuple[Message, bool]:
        """Persist `message` unless its id is already stored.

        Returns:
            (record, created) where record is the stored row
        """
        existing = self.get(message.message_id)
        if existing is not None:
            return existing, False

        try:
            self.session.add(message)
            self.session.commit()
        except IntegrityError:
            # Another writer stored the same message_id first
            self.session.rollback()
            logger.info(
                "Duplicate message detected via constraint",
                extra={"extra_data": {"message_id": message.message_id}}
            )
            return self.get(message.message_id), False

        return message, True

    @_store_call
    def apply_status(self, message: Message, status: str, at: datetime) -> Message:
        """Set the current status and append the transition to its history.

        No ordering check against earlier transitions is made: the last
        applied status wins.
        """
        entry = {
            "status": status,
            "timestamp": at.isoformat(),
            "updated_at": utcnow().isoformat(),
        }
        message.status = status
        message.status_history = [*(message.status_history or []), entry]
        self.session.commit()
        return message

    def rollback(self) -> None:
        """Discard a failed transaction so the session stays usable."""
        self.session.rollback()

    def update_status(self, identifier: str, status: str, at: Optional[datetime] = None) -> Optional[Message]:
        """Two-step lookup then apply; None when no message matches."""
        message = self.find_for_status(identifier)
        if message is None:
            return None
        return self.apply_status(message, status, at or utcnow())

    # Listings

    @_store_call
    def list_messages(self, page: int = 1, limit: int = 50) -> Tuple[List[Message], int]:
        """Newest first, one page at a time."""
        total = self.session.query(func.count(Message.id)).scalar() or 0
        messages = (
            self.session.query(Message)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return messages, total

    @_store_call
    def list_all(self) -> List[Message]:
        return self.session.query(Message).order_by(Message.timestamp.asc(), Message.id.asc()).all()

    @_store_call
    def list_conversation(self, conversation_id: str) -> List[Message]:
        return (
            self.session.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .all()
        )

    @_store_call
    def list_for_contact(self, wa_id: str) -> List[Message]:
        return (
            self.session.query(Message)
            .filter(Message.wa_id == wa_id)
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .all()
        )

    @_store_call
    def get_contact(self, wa_id: str) -> Optional[Message]:
        return self.session.query(Message).filter(Message.wa_id == wa_id).first()

    @_store_call
    def contact_threads(self) -> List[dict]:
        """One entry per contact with its latest message, newest first."""
        latest = (
            self.session.query(
                Message.wa_id.label("wa_id"),
                func.max(Message.timestamp).label("last_ts"),
                func.count(Message.id).label("message_count"),
            )
            .group_by(Message.wa_id)
            .subquery()
        )
        rows = (
            self.session.query(Message, latest.c.message_count)
            .join(latest, and_(Message.wa_id == latest.c.wa_id, Message.timestamp == latest.c.last_ts))
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .all()
        )

        threads = []
        seen = set()
        for message, message_count in rows:
            # Two messages can share the latest timestamp
            if message.wa_id in seen:
                continue
            seen.add(message.wa_id)
            threads.append({
                "wa_id": message.wa_id,
                "user_name": message.user_name,
                "last_message": message.message_body,
                "last_message_time": message.timestamp,
                "message_count": message_count,
            })
        return threads

    # Aggregates

    @_store_call
    def count(self) -> int:
        return self.session.query(func.count(Message.id)).scalar() or 0

    @_store_call
    def count_by_status(self) -> Dict[str, int]:
        counts = {status: 0 for status in MessageStatus.values()}
        rows = (
            self.session.query(Message.status, func.count(Message.id))
            .group_by(Message.status)
            .all()
        )
        for status, count in rows:
            counts[status] = count
        return counts

    @_store_call
    def conversation_rollups(self) -> List[dict]:
        """Per conversation: message count, participant names, latest timestamp."""
        rows = (
            self.session.query(
                Message.conversation_id,
                func.count(Message.id).label("message_count"),
                func.max(Message.timestamp).label("last_message"),
            )
            .group_by(Message.conversation_id)
            .all()
        )
        participants: Dict[str, List[str]] = {}
        for conversation_id, user_name in (
            self.session.query(Message.conversation_id, Message.user_name)
            .distinct()
            .order_by(Message.conversation_id, Message.user_name)
            .all()
        ):
            participants.setdefault(conversation_id, []).append(user_name)

        rollups = [
            {
                "id": conversation_id,
                "message_count": message_count,
                "participants": participants.get(conversation_id, []),
                "last_message": last_message,
            }
            for conversation_id, message_count, last_message in rows
        ]
        rollups.sort(key=lambda rollup: rollup["id"])
        rollups.sort(key=lambda rollup: rollup["last_message"], reverse=True)
        return rollups
