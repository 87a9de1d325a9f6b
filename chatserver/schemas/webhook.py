"""
Pydantic models for WhatsApp Business webhook envelopes.

Payload files wrap the webhook body in a ``metaData`` key::

    {"payload_type": "whatsapp_webhook", "_id": "...",
     "metaData": {"entry": [{"changes": [{"value": {...}}]}]}}

while live webhooks post the body itself (top-level ``entry``). Both shapes
resolve to the same :class:`ChangeValue`.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from chatserver.core.errors import MalformedPayloadError


class TextBody(BaseModel):
    body: str


class WebhookMessage(BaseModel):
    """One entry of ``value.messages``."""
    id: str
    from_: str = Field(alias="from")
    timestamp: int
    type: str = "text"
    text: Optional[TextBody] = None
    body: Optional[str] = None
    meta_msg_id: Optional[str] = None

    model_config = {"populate_by_name": True}


class ContactProfile(BaseModel):
    name: str


class Contact(BaseModel):
    wa_id: str
    profile: ContactProfile


class PhoneMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WebhookStatus(BaseModel):
    """One entry of ``value.statuses``."""
    id: str
    status: str
    timestamp: int
    recipient_id: Optional[str] = None
    meta_msg_id: Optional[str] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[PhoneMetadata] = None
    contacts: List[Contact] = Field(default_factory=list)
    messages: List[WebhookMessage] = Field(default_factory=list)
    statuses: List[WebhookStatus] = Field(default_factory=list)


class Change(BaseModel):
    field: Optional[str] = None
    value: ChangeValue


class Entry(BaseModel):
    id: Optional[str] = None
    changes: List[Change]


class WebhookEnvelope(BaseModel):
    object: Optional[str] = None
    entry: List[Entry]


def extract_change_value(payload: Any, filename: str) -> ChangeValue:
    """Return the value of the first change in a payload.

    Raises:
        MalformedPayloadError: if the envelope path is missing or invalid
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError(filename, "Payload is not a JSON object")

    envelope = payload.get("metaData", payload)
    if not isinstance(envelope, dict) or "entry" not in envelope:
        raise MalformedPayloadError(filename, "Invalid payload structure")

    try:
        parsed = WebhookEnvelope.model_validate(envelope)
    except ValidationError as e:
        raise MalformedPayloadError(
            filename, f"Invalid payload structure ({e.error_count()} validation errors)"
        ) from e

    if not parsed.entry or not parsed.entry[0].changes:
        raise MalformedPayloadError(filename, "Invalid payload structure")

    return parsed.entry[0].changes[0].value


def payload_id(payload: Any) -> Optional[str]:
    """The ``_id`` a payload file was exported with, if any."""
    if isinstance(payload, dict) and payload.get("_id") is not None:
        return str(payload["_id"])
    return None
