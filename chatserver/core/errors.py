"""
Exception types shared by the store, the ingestion pipeline and the API.
"""


class ChatServerError(Exception):
    """Base class for errors raised by this package."""


class MalformedPayloadError(ChatServerError):
    """A payload file is unreadable or structurally incompatible."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class StoreUnavailableError(ChatServerError):
    """The message store could not be reached."""


class IngestionInProgressError(ChatServerError):
    """An ingestion run was started while another one is still active."""
