"""
Shared FastAPI dependencies.
"""
import threading
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from chatserver.core.database import get_db
from chatserver.services.message_store import MessageStore

# One ingestion run per process
ingestion_lock = threading.Lock()


def get_store(db: Annotated[Session, Depends(get_db)]) -> MessageStore:
    """Store handle bound to the request's session."""
    return MessageStore(db)


def get_ingestion_lock() -> threading.Lock:
    return ingestion_lock


StoreDep = Annotated[MessageStore, Depends(get_store)]
IngestionLockDep = Annotated[threading.Lock, Depends(get_ingestion_lock)]
