"""Inbound payload models and the canonical chat message.

Inbound models only describe what the client is allowed to choose. Sender
identity and time are never read from the client: unknown keys such as
``sender``/``senderEmail``/``timestamp`` are ignored by pydantic and the
router fills them in from the authenticated session.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from .ws_constants import KIND_TEXT


def utc_timestamp() -> str:
    """Server clock as ISO-8601 UTC with millisecond precision, e.g. ``2024-05-01T12:00:00.000Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --- Client -> Server ---

class IdentityInfo(BaseModel):
    name: str | None = None
    email: str | None = None


class TextMessage(BaseModel):
    content: str
    recipient: str = Field(min_length=1)
    messageType: Literal["text", "voice", "file"] = KIND_TEXT


class VoiceMessage(BaseModel):
    content: str = Field(min_length=1)  # attachment reference from /api/upload/voice
    recipient: str = Field(min_length=1)
    fileName: str | None = None
    fileType: str | None = None


class FileMessage(BaseModel):
    content: str = Field(min_length=1)  # attachment reference from /api/upload/file
    recipient: str = Field(min_length=1)
    fileName: str | None = None
    fileType: str | None = None
    isImage: bool = False
    isVideo: bool = False


class HistoryRequest(BaseModel):
    userEmail: str | None = None


# --- Canonical message ---

@dataclass(frozen=True)
class ChatMessage:
    sender_email: str
    sender_name: str
    recipient_email: str
    content: str
    kind: str
    timestamp: str
    file_name: str | None = None
    file_type: str | None = None
