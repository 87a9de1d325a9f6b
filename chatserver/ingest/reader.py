"""
Locate and parse webhook payload files.
"""
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from chatserver.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PayloadFile:
    filename: str
    payload: Any


@dataclass
class ReadWarning:
    filename: str
    reason: str


@dataclass
class PayloadBatch:
    """Parsed payloads, split by kind, in listing order."""
    messages: List[PayloadFile] = field(default_factory=list)
    statuses: List[PayloadFile] = field(default_factory=list)
    warnings: List[ReadWarning] = field(default_factory=list)


def classify(filename: str) -> Optional[str]:
    """Return "status", "message" or None for a candidate filename."""
    if not filename.endswith(".json"):
        return None
    if "status" in filename:
        return "status"
    if "message" in filename:
        return "message"
    return None


class PayloadReader:
    """Reads every payload file found directly inside `directory`."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def list_files(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.name for path in self.directory.iterdir() if path.is_file())

    def read_file(self, filename: str, warnings: Optional[List[ReadWarning]] = None) -> Optional[PayloadFile]:
        """Parse one file; None (and a warning) when it cannot be read.

        Any JSON value is returned, `null` included; the envelope check rejects
        what is not an object.
        """
        path = self.directory / filename
        try:
            with path.open("r", encoding="utf-8") as fh:
                return PayloadFile(filename=filename, payload=json.load(fh))
        except FileNotFoundError:
            reason = "File not found"
        except json.JSONDecodeError as e:
            reason = f"Invalid JSON ({e.msg} at line {e.lineno})"
        except (OSError, UnicodeDecodeError) as e:
            reason = f"Unreadable file ({e})"

        logger.warning("Skipping payload file", extra={"extra_data": {"file": filename, "reason": reason}})
        if warnings is not None:
            warnings.append(ReadWarning(filename=filename, reason=reason))
        return None

    def read(self) -> PayloadBatch:
        batch = PayloadBatch()
        if not self.directory.is_dir():
            logger.warning("Payload directory not found", extra={"extra_data": {"directory": str(self.directory)}})
            batch.warnings.append(ReadWarning(filename=str(self.directory), reason="Payload directory not found"))
            return batch

        for filename in self.list_files():
            kind = classify(filename)
            if kind is None:
                continue
            item = self.read_file(filename, batch.warnings)
            if item is None:
                continue
            target = batch.statuses if kind == "status" else batch.messages
            target.append(item)

        logger.info(
            "Payload files found",
            extra={"extra_data": {
                "directory": str(self.directory),
                "message_files": len(batch.messages),
                "status_files": len(batch.statuses),
                "warnings": len(batch.warnings),
            }}
        )
        return batch
