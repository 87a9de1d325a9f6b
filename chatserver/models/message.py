"""
Processed message database model.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index

from chatserver.core.database import Base


class MessageStatus(str, enum.Enum):
    """Delivery status, declared in progression order."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @classmethod
    def values(cls) -> list:
        return [status.value for status in cls]

    @classmethod
    def is_valid(cls, value) -> bool:
        return value in cls.values()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """A message ingested from a webhook payload or sent through the API."""

    __tablename__ = "processed_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # message_id must be unique for idempotent ingestion
    message_id = Column(String(255), unique=True, nullable=False, index=True)
    # Some status sources reference a message by this id instead
    meta_msg_id = Column(String(255), nullable=True, index=True)

    wa_id = Column(String(32), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    message_body = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=MessageStatus.SENT.value)
    type = Column(String(32), nullable=False, default="text")
    sender = Column(String(32), nullable=False)  # 'from' is reserved
    conversation_id = Column(String(255), nullable=False, index=True)

    # Payload provenance
    payload_id = Column(String(255), nullable=True)
    phone_number_id = Column(String(64), nullable=True)
    display_phone_number = Column(String(32), nullable=True)

    # [{"status": ..., "timestamp": ..., "updated_at": ...}] in applied order
    status_history = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_processed_messages_conversation_ts", "conversation_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Message(message_id={self.message_id}, status={self.status})>"

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            "message_id": self.message_id,
            "meta_msg_id": self.meta_msg_id,
            "wa_id": self.wa_id,
            "user_name": self.user_name,
            "message_body": self.message_body,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "type": self.type,
            "from": self.sender,
            "conversation_id": self.conversation_id,
            "payload_id": self.payload_id,
            "phone_number_id": self.phone_number_id,
            "display_phone_number": self.display_phone_number,
            "status_history": list(self.status_history or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
