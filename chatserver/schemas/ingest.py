"""
Schemas describing ingestion runs and processing summaries.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ConversationSummary(BaseModel):
    """Rollup of one conversation."""
    id: str
    message_count: int
    participants: List[str]
    last_message: datetime


class ProcessingSummary(BaseModel):
    total_messages: int
    messages_by_status: Dict[str, int]
    conversations: List[ConversationSummary]


class SkippedFile(BaseModel):
    filename: str
    reason: str


class IngestionReport(BaseModel):
    """Outcome of one ingestion run."""
    state: str
    message_files: int = 0
    status_files: int = 0
    messages_created: int = 0
    messages_duplicate: int = 0
    statuses_applied: int = 0
    statuses_deferred: int = 0
    statuses_replayed: int = 0
    unresolved: List[str] = Field(default_factory=list)
    skipped: List[SkippedFile] = Field(default_factory=list)
    summary: Optional[ProcessingSummary] = None


class ProcessResponse(BaseModel):
    """Response schema for POST /api/payloads/process."""
    success: bool = True
    message: str = "Payloads processed successfully"
    report: IngestionReport


class SummaryResponse(BaseModel):
    success: bool = True
    summary: ProcessingSummary
