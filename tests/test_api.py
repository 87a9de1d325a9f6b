"""
Integration tests for the chat and processed-payload endpoints.
"""
import threading

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from chatserver.api.deps import get_ingestion_lock
from chatserver.core.database import get_db
from chatserver.ingest.ingestor import MessageIngestor
from chatserver.main import app, run_startup_ingestion

from conftest import CONV1_MSG1, CONV2_MSG1, message_payload


def seed(store, *payloads):
    ingestor = MessageIngestor(store)
    for filename, payload in payloads:
        ingestor.ingest(payload, filename)


class TestHealthEndpoints:

    def test_liveness_always_returns_ok(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness_returns_ok_when_database_reachable(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["checks"]["database"] == "ok"
        assert data["checks"]["webhook_secret"] == "ok"


class TestConversationsEndpoint:

    def test_empty_list(self, client):
        response = client.get("/api/conversations")
        assert response.status_code == 200
        assert response.json() == []

    def test_threads_sorted_by_latest_message(self, client, store):
        seed(
            store,
            ("a_message.json", message_payload("m1", wa_id="111", name="Ann", timestamp=1000, body="first")),
            ("b_message.json", message_payload("m2", wa_id="222", name="Bob", timestamp=2000, body="second")),
            ("c_message.json", message_payload("m3", wa_id="111", name="Ann", timestamp=3000, body="third")),
        )

        response = client.get("/api/conversations")

        assert response.status_code == 200
        data = response.json()
        assert [thread["wa_id"] for thread in data] == ["111", "222"]
        assert data[0]["last_message"] == "third"
        assert data[0]["message_count"] == 2
        assert data[1]["user_name"] == "Bob"

    def test_contact_messages_are_chronological(self, client, store):
        seed(
            store,
            ("a_message.json", message_payload("late", wa_id="111", timestamp=3000)),
            ("b_message.json", message_payload("early", wa_id="111", timestamp=1000)),
            ("c_message.json", message_payload("other", wa_id="222", timestamp=2000)),
        )

        response = client.get("/api/conversations/111/messages")

        assert response.status_code == 200
        assert [msg["message_id"] for msg in response.json()] == ["early", "late"]

    def test_send_message(self, client, connections):
        response = client.post(
            "/api/conversations/919937320320/messages",
            json={"message_body": "Your order has shipped"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message_id"].startswith("msg_")
        assert data["message_body"] == "Your order has shipped"
        assert data["status"] == "sent"
        assert data["user_name"] == "Business"
        assert data["from"] == "918329446654"
        assert data["conversation_id"] == "conv_919937320320"

        assert [event for event, _ in connections.events] == ["newMessage"]
        assert connections.events[0][1]["message_id"] == data["message_id"]

        thread = client.get("/api/conversations/919937320320/messages").json()
        assert [msg["message_id"] for msg in thread] == [data["message_id"]]

    def test_send_message_requires_body(self, client):
        response = client.post("/api/conversations/919937320320/messages", json={"message_body": ""})
        assert response.status_code == 422

    def test_user_info(self, client, store):
        seed(store, ("a_message.json", message_payload("m1", wa_id="111", name="Ann")))

        response = client.get("/api/users/111")

        assert response.status_code == 200
        assert response.json() == {"name": "Ann", "phone_number": "111", "is_online": False}

    def test_unknown_user(self, client):
        response = client.get("/api/users/404404")
        assert response.status_code == 404
        assert response.json()["detail"] == "User not found"


class TestProcessEndpoint:

    def test_process_sample_payloads(self, client, connections):
        response = client.post("/api/payloads/process")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        report = data["report"]
        assert report["state"] == "done"
        assert report["messages_created"] == 3
        assert report["statuses_applied"] == 3
        assert report["summary"]["total_messages"] == 3

        events = [event for event, _ in connections.events]
        assert events.count("newMessage") == 3
        assert events.count("statusUpdate") == 3

    def test_process_twice_is_idempotent(self, client):
        client.post("/api/payloads/process")
        report = client.post("/api/payloads/process").json()["report"]

        assert report["messages_created"] == 0
        assert report["messages_duplicate"] == 3
        assert client.get("/api/payloads/summary").json()["summary"]["total_messages"] == 3

    def test_run_while_another_is_in_progress(self, client, store):
        running = threading.Lock()
        running.acquire()
        app.dependency_overrides[get_ingestion_lock] = lambda: running

        response = client.post("/api/payloads/process")

        assert response.status_code == 409
        assert "already in progress" in response.json()["detail"]
        assert store.count() == 0

    def test_store_outage_is_reported_and_counted(self, client, tmp_path):
        unreachable = tmp_path / "missing" / "dir" / "x.db"
        engine = create_engine(f"sqlite:///{unreachable}", connect_args={"check_same_thread": False})

        def unreachable_db():
            db = sessionmaker(bind=engine)()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = unreachable_db

        response = client.post("/api/payloads/process")

        assert response.status_code == 503
        assert response.json()["detail"] == "Message store unavailable"
        assert 'ingest_runs_total{state="failed"}' in client.get("/metrics").text
        engine.dispose()


class TestStartupIngestion:

    def test_disabled_by_default(self, settings, session_factory, store):
        assert run_startup_ingestion(settings, session_factory) is None
        assert store.count() == 0

    def test_processes_payload_directory(self, settings, session_factory, store):
        enabled = settings.model_copy(update={"ingest_on_startup": True})

        report = run_startup_ingestion(enabled, session_factory)

        assert report.state == "done"
        assert report.messages_created == 3
        assert store.count() == 3


class TestProcessedMessagesEndpoint:

    def test_pagination_newest_first(self, client, store):
        seed(store, *[
            (f"m{i}_message.json", message_payload(f"m{i}", timestamp=1000 + i))
            for i in range(5)
        ])

        response = client.get("/api/payloads/messages?page=1&limit=2")

        assert response.status_code == 200
        data = response.json()
        assert [msg["message_id"] for msg in data["data"]] == ["m4", "m3"]
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}

        last_page = client.get("/api/payloads/messages?page=3&limit=2").json()
        assert [msg["message_id"] for msg in last_page["data"]] == ["m0"]

    def test_limit_is_bounded(self, client):
        assert client.get("/api/payloads/messages?limit=0").status_code == 422
        assert client.get("/api/payloads/messages?limit=101").status_code == 422

    def test_conversation_log(self, client):
        client.post("/api/payloads/process")

        response = client.get("/api/payloads/conversations/conv_1_919937320320/messages")

        assert response.status_code == 200
        data = response.json()
        assert data["conversation_id"] == "conv_1_919937320320"
        assert len(data["data"]) == 2
        assert data["data"][0]["message_id"] == CONV1_MSG1
        assert [entry["status"] for entry in data["data"][0]["status_history"]] == ["delivered", "read"]


class TestStatusUpdateEndpoint:

    def test_update_status(self, client, store, connections):
        seed(store, ("a_message.json", message_payload("m1")))

        response = client.put("/api/payloads/messages/m1/status", json={"status": "delivered"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["status"] == "delivered"
        assert len(data["data"]["status_history"]) == 1
        assert connections.events == [("statusUpdate", {"message_id": "m1", "status": "delivered"})]

    def test_update_by_secondary_identifier(self, client, store):
        seed(store, ("a_message.json", message_payload("m1", meta_msg_id="meta-1")))

        response = client.put("/api/payloads/messages/meta-1/status", json={"status": "read"})

        assert response.status_code == 200
        assert response.json()["data"]["message_id"] == "m1"

    def test_invalid_status_rejected(self, client, store):
        seed(store, ("a_message.json", message_payload("m1")))

        response = client.put("/api/payloads/messages/m1/status", json={"status": "seen"})

        assert response.status_code == 400
        assert "Invalid status" in response.json()["detail"]
        assert store.get("m1").status == "sent"

    def test_unknown_message(self, client):
        response = client.put("/api/payloads/messages/nope/status", json={"status": "read"})
        assert response.status_code == 404


class TestBulkStatusUpdateEndpoint:

    def test_partial_failure(self, client, store, connections):
        seed(store, ("a_message.json", message_payload("m1")))

        response = client.post(
            "/api/payloads/messages/bulk-update-status",
            json={"updates": [
                {"message_id": "m1", "status": "read"},
                {"message_id": "missing", "status": "read"},
            ]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        results = {result["message_id"]: result for result in data["results"]}
        assert results["m1"]["success"] is True
        assert results["missing"]["success"] is False
        assert results["missing"]["error"] == "Message not found"
        assert [event for event, _ in connections.events] == ["statusUpdate"]

    def test_invalid_item_status_fails_only_that_item(self, client, store):
        seed(store, ("a_message.json", message_payload("m1")), ("b_message.json", message_payload("m2")))

        response = client.post(
            "/api/payloads/messages/bulk-update-status",
            json={"updates": [
                {"message_id": "m1", "status": "bogus"},
                {"message_id": "m2", "status": "delivered"},
            ]},
        )

        results = response.json()["results"]
        assert [result["success"] for result in results] == [False, True]
        assert store.get("m1").status == "sent"

    def test_updates_must_be_a_list(self, client):
        response = client.post(
            "/api/payloads/messages/bulk-update-status",
            json={"updates": {"message_id": "m1", "status": "read"}},
        )
        assert response.status_code == 422


class TestSummaryEndpoint:

    def test_summary_after_processing(self, client):
        client.post("/api/payloads/process")

        response = client.get("/api/payloads/summary")

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["total_messages"] == 3
        assert summary["messages_by_status"] == {"sent": 1, "delivered": 1, "read": 1}
        assert [conv["id"] for conv in summary["conversations"]] == [
            "conv_2_929967673820",
            "conv_1_919937320320",
        ]
        assert summary["conversations"][1]["participants"] == ["Ravi Kumar"]

    def test_conversation_status_reflects_latest(self, client):
        client.post("/api/payloads/process")
        thread = client.get("/api/conversations/929967673820/messages").json()

        assert thread[0]["message_id"] == CONV2_MSG1
        assert thread[0]["status"] == "delivered"


class TestMetricsEndpoint:

    def test_metrics_returns_prometheus_format(self, client):
        client.post("/api/payloads/process")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        content = response.text
        assert "http_requests_total" in content
        assert 'ingest_messages_total{outcome="created"}' in content
