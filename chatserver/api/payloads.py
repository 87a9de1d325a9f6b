"""
Processed payload endpoints: run an ingestion, browse the processed log,
update statuses and read the processing summary.
"""
import math
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

from chatserver.api.deps import IngestionLockDep, StoreDep
from chatserver.api.metrics import record_ingestion
from chatserver.api.realtime import relay
from chatserver.core.config import Settings, get_settings
from chatserver.core.logging import get_logger
from chatserver.ingest.orchestrator import IngestionOrchestrator
from chatserver.ingest.reader import PayloadReader
from chatserver.ingest.summary import SummaryAggregator
from chatserver.models.message import MessageStatus
from chatserver.schemas.ingest import ProcessResponse, SummaryResponse
from chatserver.schemas.message import (
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
    BulkStatusUpdateResult,
    ConversationMessagesResponse,
    ErrorResponse,
    MessageResponse,
    Pagination,
    ProcessedMessagesResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from chatserver.services.realtime import STATUS_UPDATE, ConnectionManager, EventBuffer, get_connection_manager

logger = get_logger(__name__)

router = APIRouter(prefix="/api/payloads", tags=["Payloads"])

INVALID_STATUS = "Invalid status. Must be: " + ", ".join(MessageStatus.values())

ConnectionsDep = Annotated[ConnectionManager, Depends(get_connection_manager)]


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={
        409: {"model": ErrorResponse, "description": "An ingestion run is already in progress"},
        503: {"model": ErrorResponse, "description": "Message store unavailable"},
    },
    summary="Process payload files",
    description="Ingest every payload file in the configured payload directory."
)
async def process_payloads(
    store: StoreDep,
    settings: Annotated[Settings, Depends(get_settings)],
    connections: ConnectionsDep,
    lock: IngestionLockDep,
) -> ProcessResponse:
    buffer = EventBuffer()
    orchestrator = IngestionOrchestrator(store, PayloadReader(settings.payload_dir), on_event=buffer, lock=lock)
    try:
        report = await run_in_threadpool(orchestrator.run)
    finally:
        # Failed runs are counted too; a rejected one never started
        if orchestrator.report is not None:
            record_ingestion(orchestrator.report)
    await relay(connections, buffer)
    return ProcessResponse(report=report)


@router.get(
    "/messages",
    response_model=ProcessedMessagesResponse,
    summary="Processed message log",
    description="All processed messages, newest first, paginated."
)
async def list_processed_messages(
    store: StoreDep,
    page: Annotated[int, Query(ge=1, description="Page number, starting at 1")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Messages per page")] = 50,
) -> ProcessedMessagesResponse:
    messages, total = store.list_messages(page=page, limit=limit)

    logger.debug(
        "Listed processed messages",
        extra={"extra_data": {"total": total, "returned": len(messages), "page": page, "limit": limit}}
    )

    return ProcessedMessagesResponse(
        data=[MessageResponse.from_record(message) for message in messages],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
    summary="Processed messages of a conversation",
)
async def list_conversation_messages(conversation_id: str, store: StoreDep) -> ConversationMessagesResponse:
    messages = store.list_conversation(conversation_id)
    return ConversationMessagesResponse(
        conversation_id=conversation_id,
        data=[MessageResponse.from_record(message) for message in messages],
    )


@router.put(
    "/messages/{message_id}/status",
    response_model=StatusUpdateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid status"},
        404: {"model": ErrorResponse, "description": "Message not found"},
    },
    summary="Update a message status",
)
async def update_message_status(
    message_id: str,
    request: StatusUpdateRequest,
    store: StoreDep,
    connections: ConnectionsDep,
) -> StatusUpdateResponse:
    if not MessageStatus.is_valid(request.status):
        raise HTTPException(status_code=400, detail=INVALID_STATUS)

    message = store.update_status(message_id, request.status)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")

    logger.info(
        "Status updated via API",
        extra={"extra_data": {"message_id": message.message_id, "status": request.status}}
    )

    buffer = EventBuffer()
    buffer(STATUS_UPDATE, {"message_id": message.message_id, "status": message.status})
    await relay(connections, buffer)

    return StatusUpdateResponse(
        message="Status updated successfully",
        data=MessageResponse.from_record(message),
    )


@router.get(
    "/summary",
    response_model=SummaryResponse,
    summary="Processing summary",
    description="Totals, status histogram and conversations ordered by latest message."
)
async def get_summary(store: StoreDep) -> SummaryResponse:
    return SummaryResponse(summary=SummaryAggregator(store).summarize())


@router.post(
    "/messages/bulk-update-status",
    response_model=BulkStatusUpdateResponse,
    summary="Bulk update statuses",
    description="Apply a list of status updates; each item succeeds or fails on its own."
)
async def bulk_update_statuses(
    request: BulkStatusUpdateRequest,
    store: StoreDep,
    connections: ConnectionsDep,
) -> BulkStatusUpdateResponse:
    buffer = EventBuffer()
    results = []

    for update in request.updates:
        if not MessageStatus.is_valid(update.status):
            results.append(BulkStatusUpdateResult(
                message_id=update.message_id, status=update.status, success=False, error=INVALID_STATUS,
            ))
            continue
        try:
            message = store.update_status(update.message_id, update.status)
        except Exception as e:
            logger.warning(
                "Bulk status update item failed",
                extra={"extra_data": {"message_id": update.message_id, "error": str(e)}}
            )
            store.rollback()
            results.append(BulkStatusUpdateResult(
                message_id=update.message_id, status=update.status, success=False, error=str(e),
            ))
            continue

        if message is None:
            results.append(BulkStatusUpdateResult(
                message_id=update.message_id, status=update.status, success=False, error="Message not found",
            ))
            continue

        buffer(STATUS_UPDATE, {"message_id": message.message_id, "status": message.status})
        results.append(BulkStatusUpdateResult(message_id=update.message_id, status=update.status, success=True))

    await relay(connections, buffer)
    return BulkStatusUpdateResponse(results=results)
