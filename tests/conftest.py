"""
Shared fixtures: a file-backed SQLite store per test, sample payload files
and a test client wired to both.
"""
import json
import shutil
from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from chatserver.main import app
from chatserver.core.config import Settings, get_settings
from chatserver.core.database import Base, get_db, init_db
from chatserver.services.message_store import MessageStore
from chatserver.services.realtime import ConnectionManager, get_connection_manager


FIXTURES = Path(__file__).parent / "fixtures"
TEST_SECRET = "test-secret-key-12345"
TEST_VERIFY_TOKEN = "verify-token-12345"

# Message ids used by the sample payload files
CONV1_MSG1 = "wamid.HBgMOTE5OTY3NTc4NzIwFQIAEhggMTIzQURFRjEyMzQ1Njc4OTA="
CONV1_MSG2 = "wamid.HBgMOTE5OTY3NTc4NzIwFQIAEhggNDc4NzZBQ0YxMjdCQ0VFOTk2NzA3MTI4RkZCNjYyMjc="
CONV2_MSG1 = "wamid.HBgMOTI5OTY3NjczODIwFQIAEhggQ0FBQkNERUYwMDFGRjEyMzQ1NkZGQTk5RTJCM0MxQTM="


def message_payload(
    message_id: str,
    wa_id: str = "919937320320",
    name: str = "Ravi Kumar",
    timestamp: int = 1754400000,
    body: Optional[str] = "Hello",
    message_type: str = "text",
    meta_msg_id: Optional[str] = None,
    generic_body: Optional[str] = None,
) -> dict:
    """Build a message payload file in the exported webhook shape."""
    message = {
        "from": wa_id,
        "id": message_id,
        "timestamp": str(timestamp),
        "type": message_type,
    }
    if body is not None:
        message["text"] = {"body": body}
    if generic_body is not None:
        message["body"] = generic_body
    if meta_msg_id is not None:
        message["meta_msg_id"] = meta_msg_id

    return {
        "payload_type": "whatsapp_webhook",
        "_id": f"payload-{message_id}",
        "metaData": {
            "entry": [{
                "changes": [{
                    "field": "messages",
                    "value": {
                        "contacts": [{"profile": {"name": name}, "wa_id": wa_id}],
                        "messages": [message],
                        "messaging_product": "whatsapp",
                        "metadata": {
                            "display_phone_number": "918329446654",
                            "phone_number_id": "629305560276479",
                        },
                    },
                }],
                "id": "30164062719905277",
            }],
            "object": "whatsapp_business_account",
        },
    }


def status_payload(message_id: str, status: str, timestamp: int = 1754400100) -> dict:
    """Build a status payload file in the exported webhook shape."""
    return {
        "payload_type": "whatsapp_webhook",
        "_id": f"status-{message_id}-{status}",
        "metaData": {
            "entry": [{
                "changes": [{
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "statuses": [{
                            "id": message_id,
                            "recipient_id": "919937320320",
                            "status": status,
                            "timestamp": str(timestamp),
                        }],
                    },
                }],
            }],
            "object": "whatsapp_business_account",
        },
    }


def write_payload(directory: Path, filename: str, payload) -> Path:
    path = directory / filename
    if isinstance(payload, str):
        path.write_text(payload, encoding="utf-8")
    else:
        path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class RecordingManager(ConnectionManager):
    """Connection manager that records broadcasts instead of sending them."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def broadcast(self, event, data):
        self.events.append((event, data))
        return 1


@pytest.fixture
def payload_dir(tmp_path):
    """A copy of the sample payload files."""
    target = tmp_path / "payloads"
    shutil.copytree(FIXTURES, target)
    return target


@pytest.fixture
def empty_dir(tmp_path):
    target = tmp_path / "empty"
    target.mkdir()
    return target


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test_messages.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_engine(database_url, connect_args={"check_same_thread": False})
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def store(session_factory):
    session = session_factory()
    yield MessageStore(session)
    session.close()


@pytest.fixture
def settings(database_url, payload_dir):
    return Settings(
        database_url=database_url,
        payload_dir=str(payload_dir),
        webhook_secret=TEST_SECRET,
        webhook_verify_token=TEST_VERIFY_TOKEN,
        log_level="DEBUG",
        log_format="text",
    )


@pytest.fixture
def connections():
    return RecordingManager()


@pytest.fixture
def client(session_factory, settings, connections):
    """Test client bound to the per-test database and settings."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_connection_manager] = lambda: connections

    yield TestClient(app)

    app.dependency_overrides.clear()
