"""
Command line interface for the payload processor and the API server.

Usage:
  chatserver process [--dir PAYLOAD_DIR]
  chatserver summary
  chatserver messages
  chatserver conversation conv_1_919937320320
  chatserver update-status wamid.HBg... delivered
  chatserver serve [--host HOST] [--port PORT]

Logs go to stderr; command output is JSON on stdout.
"""
import argparse
import json
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from chatserver.core.config import get_settings
from chatserver.core.database import build_engine, init_db
from chatserver.core.errors import StoreUnavailableError
from chatserver.core.logging import get_logger, setup_logging
from chatserver.ingest.orchestrator import IngestionOrchestrator
from chatserver.ingest.reader import PayloadReader
from chatserver.ingest.summary import SummaryAggregator
from chatserver.models.message import MessageStatus
from chatserver.services.message_store import MessageStore

logger = get_logger(__name__)


@contextmanager
def open_store(database_url: str) -> Iterator[MessageStore]:
    engine = build_engine(database_url)
    try:
        init_db(engine)
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailableError(f"Message store unavailable: {e}") from e

    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield MessageStore(session)
    finally:
        session.close()
        engine.dispose()


def emit(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatserver",
        description="WhatsApp payload processor and chat API server.",
    )
    parser.add_argument(
        "--database-url", default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Process all payload files.")
    process.add_argument("--dir", dest="payload_dir", default=None, help="Payload directory (default: PAYLOAD_DIR setting).")

    commands.add_parser("summary", help="Show processing summary.")
    commands.add_parser("messages", help="Print all messages.")

    conversation = commands.add_parser("conversation", help="Print the messages of one conversation.")
    conversation.add_argument("conversation_id")

    update = commands.add_parser("update-status", help="Update the status of one message.")
    update.add_argument("message_id")
    update.add_argument("status", choices=MessageStatus.values())

    serve = commands.add_parser("serve", help="Run the API server.")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def run_command(args: argparse.Namespace, store: MessageStore, payload_dir: str) -> int:
    if args.command == "process":
        report = IngestionOrchestrator(store, PayloadReader(args.payload_dir or payload_dir)).run()
        emit(report.model_dump(mode="json"))
        return 0

    if args.command == "summary":
        emit(SummaryAggregator(store).summarize().model_dump(mode="json"))
        return 0

    if args.command == "messages":
        emit([message.to_dict() for message in store.list_all()])
        return 0

    if args.command == "conversation":
        emit([message.to_dict() for message in store.list_conversation(args.conversation_id)])
        return 0

    if args.command == "update-status":
        message = store.update_status(args.message_id, args.status)
        if message is None:
            print(f"Error: message not found: {args.message_id}", file=sys.stderr)
            return 1
        emit(message.to_dict())
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings, stream=sys.stderr)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "chatserver.main:app",
            host=args.host or settings.host,
            port=args.port or settings.port,
        )
        return 0

    try:
        with open_store(args.database_url or settings.database_url) as store:
            return run_command(args, store, settings.payload_dir)
    except StoreUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
