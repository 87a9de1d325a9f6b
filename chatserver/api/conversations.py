"""
Chat endpoints consumed by the web client: chat list, message thread,
sending a message and contact info.
"""
import secrets
import time
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException

from chatserver.api.deps import StoreDep
from chatserver.api.realtime import relay
from chatserver.core.config import Settings, get_settings
from chatserver.core.logging import get_logger
from chatserver.ingest.ingestor import conversation_id_for
from chatserver.models.message import Message, MessageStatus, utcnow
from chatserver.schemas.message import (
    ContactResponse,
    ContactThread,
    ErrorResponse,
    MessageResponse,
    SendMessageRequest,
)
from chatserver.services.realtime import NEW_MESSAGE, ConnectionManager, EventBuffer, get_connection_manager

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Conversations"])


def new_message_id() -> str:
    """``msg_<epoch millis>_<random suffix>``."""
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


@router.get(
    "/conversations",
    response_model=List[ContactThread],
    summary="List conversations",
    description="One entry per contact with its latest message, most recent first."
)
async def list_conversations(store: StoreDep) -> List[ContactThread]:
    return [ContactThread(**thread) for thread in store.contact_threads()]


@router.get(
    "/conversations/{wa_id}/messages",
    response_model=List[MessageResponse],
    summary="List messages with a contact",
    description="Messages exchanged with a contact, oldest first."
)
async def list_contact_messages(wa_id: str, store: StoreDep) -> List[MessageResponse]:
    return [MessageResponse.from_record(message) for message in store.list_for_contact(wa_id)]


@router.post(
    "/conversations/{wa_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    summary="Send a message",
    description="Store an outgoing business message and push it to connected clients."
)
async def send_message(
    wa_id: str,
    request: SendMessageRequest,
    store: StoreDep,
    settings: Annotated[Settings, Depends(get_settings)],
    connections: Annotated[ConnectionManager, Depends(get_connection_manager)],
) -> MessageResponse:
    message = Message(
        message_id=new_message_id(),
        meta_msg_id=None,
        wa_id=wa_id,
        user_name=request.user_name or settings.business_display_name,
        message_body=request.message_body,
        timestamp=utcnow(),
        status=MessageStatus.SENT.value,
        type="text",
        sender=settings.business_phone_number,
        conversation_id=conversation_id_for("", wa_id),
        status_history=[],
    )
    stored, _ = store.insert(message)

    logger.info(
        "Message sent",
        extra={"extra_data": {"message_id": stored.message_id, "wa_id": wa_id}}
    )

    buffer = EventBuffer()
    buffer(NEW_MESSAGE, stored.to_dict())
    await relay(connections, buffer)

    return MessageResponse.from_record(stored)


@router.get(
    "/users/{wa_id}",
    response_model=ContactResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Contact info",
)
async def get_user(wa_id: str, store: StoreDep) -> ContactResponse:
    contact = store.get_contact(wa_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="User not found")
    return ContactResponse(name=contact.user_name, phone_number=contact.wa_id, is_online=False)
