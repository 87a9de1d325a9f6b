"""
Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


class StatusHistoryEntry(BaseModel):
    """One applied status transition."""
    status: str
    timestamp: datetime
    updated_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    """Schema for a single message in responses."""
    message_id: str
    meta_msg_id: Optional[str] = None
    wa_id: str
    user_name: str
    message_body: str
    timestamp: datetime
    status: str
    type: str
    from_: str = Field(alias="from")
    conversation_id: str
    payload_id: Optional[str] = None
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    model_config = {
        "populate_by_name": True,
    }

    @classmethod
    def from_record(cls, record) -> "MessageResponse":
        return cls.model_validate(record.to_dict())


class SendMessageRequest(BaseModel):
    """Request schema for POST /api/conversations/{wa_id}/messages."""
    message_body: str = Field(..., min_length=1, max_length=4096)
    user_name: Optional[str] = Field(default=None, max_length=255)

    model_config = {
        "json_schema_extra": {
            "example": {"message_body": "Hi, your order has shipped", "user_name": "Business"}
        }
    }


class ContactThread(BaseModel):
    """A chat list entry: one contact and its latest message."""
    wa_id: str
    user_name: str
    last_message: str
    last_message_time: datetime
    message_count: int


class ContactResponse(BaseModel):
    """Schema for GET /api/users/{wa_id}."""
    name: str
    phone_number: str
    is_online: bool = False


class StatusUpdateRequest(BaseModel):
    """Request schema for PUT /api/payloads/messages/{message_id}/status."""
    status: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    success: bool = True
    message: str
    data: MessageResponse


class BulkStatusUpdateItem(BaseModel):
    message_id: str
    status: str


class BulkStatusUpdateRequest(BaseModel):
    """Request schema for POST /api/payloads/messages/bulk-update-status."""
    updates: List[BulkStatusUpdateItem]


class BulkStatusUpdateResult(BaseModel):
    message_id: str
    status: str
    success: bool
    error: Optional[str] = None


class BulkStatusUpdateResponse(BaseModel):
    success: bool = True
    message: str = "Bulk update completed"
    results: List[BulkStatusUpdateResult]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ProcessedMessagesResponse(BaseModel):
    """Response schema for GET /api/payloads/messages."""
    success: bool = True
    data: List[MessageResponse]
    pagination: Pagination


class ConversationMessagesResponse(BaseModel):
    success: bool = True
    conversation_id: str
    data: List[MessageResponse]


class HealthResponse(BaseModel):
    """Response schema for health endpoints."""
    status: str
    checks: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response schema."""
    detail: str
