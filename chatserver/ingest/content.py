"""
Message content kinds.

A webhook message carries its text in ``text.body``, in a generic ``body``
field, or not at all (images, audio, documents...). Each case is a variant
of :data:`MessageContent`, chosen by :func:`resolve_content`.
"""
from dataclasses import dataclass
from typing import Union

from chatserver.schemas.webhook import WebhookMessage

MEDIA_PLACEHOLDER = "Media message"


@dataclass(frozen=True)
class TextContent:
    body: str


@dataclass(frozen=True)
class BodyContent:
    body: str


@dataclass(frozen=True)
class MediaContent:
    kind: str


MessageContent = Union[TextContent, BodyContent, MediaContent]


def resolve_content(message: WebhookMessage) -> MessageContent:
    if message.text is not None and message.text.body:
        return TextContent(message.text.body)
    if message.body:
        return BodyContent(message.body)
    return MediaContent(message.type)


def render_body(content: MessageContent) -> str:
    """Text stored as the message body."""
    if isinstance(content, MediaContent):
        return MEDIA_PLACEHOLDER
    return content.body
