"""
Live WhatsApp Business webhook: subscription handshake and signed deliveries.

Deliveries go through the same ingestor and reconciler as payload files.
"""
import json
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from chatserver.api.deps import StoreDep
from chatserver.api.realtime import relay
from chatserver.core.config import Settings, get_settings
from chatserver.core.errors import MalformedPayloadError
from chatserver.core.logging import get_logger
from chatserver.core.security import get_validated_body
from chatserver.ingest.ingestor import MessageIngestor
from chatserver.ingest.reconciler import StatusReconciler, first_status
from chatserver.schemas.message import ErrorResponse
from chatserver.schemas.webhook import extract_change_value, payload_id
from chatserver.services.realtime import ConnectionManager, EventBuffer, get_connection_manager

logger = get_logger(__name__)

router = APIRouter(tags=["Webhook"])

WEBHOOK_SOURCE = "webhook"


class WebhookResponse(BaseModel):
    """Response schema for POST /webhook."""
    status: str = "ok"
    messages_created: int = 0
    messages_duplicate: int = 0
    statuses_applied: int = 0
    statuses_unmatched: int = 0


@router.get(
    "/webhook",
    response_class=PlainTextResponse,
    summary="Webhook subscription handshake",
)
async def verify_subscription(
    settings: Annotated[Settings, Depends(get_settings)],
    mode: Annotated[Optional[str], Query(alias="hub.mode")] = None,
    token: Annotated[Optional[str], Query(alias="hub.verify_token")] = None,
    challenge: Annotated[Optional[str], Query(alias="hub.challenge")] = None,
) -> str:
    """Echo ``hub.challenge`` when the verify token matches."""
    if mode == "subscribe" and settings.webhook_verify_token and token == settings.webhook_verify_token:
        logger.info("Webhook subscription verified")
        return challenge or ""
    logger.warning("Webhook subscription rejected", extra={"extra_data": {"mode": mode}})
    raise HTTPException(status_code=403, detail="verification failed")


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"model": ErrorResponse, "description": "Invalid payload"},
    },
    summary="Receive a webhook delivery",
    description="Store an inbound message and/or apply a status update. Requires a valid X-Hub-Signature-256."
)
async def receive_webhook(
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    store: StoreDep,
    connections: Annotated[ConnectionManager, Depends(get_connection_manager)],
) -> WebhookResponse:
    try:
        data = json.loads(validated_body)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in webhook request: {e}")
        raise HTTPException(status_code=422, detail="Invalid JSON")

    buffer = EventBuffer()
    response = WebhookResponse()
    ingestor = MessageIngestor(store, on_event=buffer)
    record = None

    # Nothing is written unless the whole delivery is valid
    try:
        value = extract_change_value(data, WEBHOOK_SOURCE)
        if value.messages:
            record = ingestor.build_record(value, WEBHOOK_SOURCE, payload_id(data))
        if value.statuses:
            first_status(value, WEBHOOK_SOURCE)
    except MalformedPayloadError as e:
        logger.warning("Invalid webhook payload", extra={"extra_data": {"reason": e.reason}})
        raise HTTPException(status_code=422, detail=e.reason)

    if record is not None:
        ingested = ingestor.save(record, WEBHOOK_SOURCE)
        if ingested.created:
            response.messages_created += 1
        else:
            response.messages_duplicate += 1

    if value.statuses:
        reconciler = StatusReconciler(store, on_event=buffer)
        if reconciler.reconcile_value(value, WEBHOOK_SOURCE) is not None:
            response.statuses_applied += 1
        else:
            # Live deliveries are not queued for replay
            response.statuses_unmatched += len(reconciler.pending)

    await relay(connections, buffer)
    return response
