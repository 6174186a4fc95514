"""Message routing for authenticated connections.

Chat payloads are rebuilt on the server from the sender's session: the
client chooses only the recipient and the content (or attachment
reference). The same payload object is delivered to the recipient, if one
is online, and echoed to the sender. Persistence runs in the background
and never holds up delivery.
"""

import logging

from pydantic import BaseModel, ValidationError

from .errors import ProtocolError
from .history import HistoryService
from .models import (
    ChatMessage,
    FileMessage,
    HistoryRequest,
    TextMessage,
    VoiceMessage,
    utc_timestamp,
)
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .session import Session
from .ws_constants import (
    KIND_FILE,
    KIND_VOICE,
    MSG_ADMIN_FILE,
    MSG_ADMIN_MESSAGE,
    MSG_ADMIN_VOICE,
    MSG_CHAT_HISTORY,
    MSG_REQUEST_CHAT_HISTORY,
    MSG_REQUEST_USER_LIST,
    MSG_SYSTEM,
    MSG_USER_FILE,
    MSG_USER_MESSAGE,
    MSG_USER_VOICE,
)

logger = logging.getLogger(__name__)


def system_message(content: str) -> dict:
    return {"type": MSG_SYSTEM, "content": content}


def _validate(model: type[BaseModel], msg: dict, msg_type: str) -> BaseModel:
    try:
        return model.model_validate(msg)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise ProtocolError(f"Invalid {msg_type} message: check {fields or 'payload'}.") from e


class MessageRouter:
    """Dispatches typed messages from authenticated sessions.

    Each message type is handled by a ``handle_<kind>`` method. Both the
    ``admin-`` and ``user-`` spellings of a chat type route to the same
    handler; the outbound type is always derived from the sender's role.
    """

    _HANDLERS = {
        MSG_ADMIN_MESSAGE: "handle_text",
        MSG_USER_MESSAGE: "handle_text",
        MSG_ADMIN_VOICE: "handle_voice",
        MSG_USER_VOICE: "handle_voice",
        MSG_ADMIN_FILE: "handle_file",
        MSG_USER_FILE: "handle_file",
        MSG_REQUEST_CHAT_HISTORY: "handle_history_request",
        MSG_REQUEST_USER_LIST: "handle_roster_request",
    }

    def __init__(
        self,
        registry: ConnectionRegistry,
        history: HistoryService,
        presence: PresenceBroadcaster,
    ):
        self.registry = registry
        self.history = history
        self.presence = presence

    @classmethod
    def handles(cls, msg_type: str) -> bool:
        return msg_type in cls._HANDLERS

    async def dispatch(self, session: Session, msg: dict) -> None:
        msg_type = msg.get("type")
        if not session.authenticated:
            logger.debug("Ignoring %s from unauthenticated session %s", msg_type, session.id)
            return

        handler_name = self._HANDLERS.get(msg_type)
        if not handler_name:
            logger.warning("Unknown message type from %s: %s", session.email, msg_type)
            return

        try:
            await getattr(self, handler_name)(session, msg)
        except ProtocolError as e:
            logger.info("Protocol error from %s: %s", session.email, e.message)
            await session.send(system_message(e.message))

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _relay(self, session: Session, suffix: str, message: ChatMessage, extra: dict) -> dict:
        """Deliver, echo and persist one canonical message. Returns the payload sent."""
        payload = {
            "type": f"{session.role}-{suffix}",
            "content": message.content,
            "sender": message.sender_name,
            "senderEmail": message.sender_email,
            "recipient": message.recipient_email,
            **extra,
            "timestamp": message.timestamp,
        }

        target = self.registry.find_by_email(message.recipient_email)
        if target is not None and target is not session:
            if not await target.send(payload):
                logger.info("Recipient %s went away during delivery", message.recipient_email)
        else:
            logger.debug("Recipient %s not online, storing only", message.recipient_email)

        await session.send(payload)
        self.history.append_in_background(message)
        return payload

    def _canonical(self, session: Session, recipient: str, content: str, kind: str,
                   file_name: str | None = None, file_type: str | None = None) -> ChatMessage:
        return ChatMessage(
            sender_email=session.email,
            sender_name=session.name,
            recipient_email=recipient,
            content=content,
            kind=kind,
            timestamp=utc_timestamp(),
            file_name=file_name,
            file_type=file_type,
        )

    async def handle_text(self, session: Session, msg: dict) -> dict:
        body = _validate(TextMessage, msg, msg.get("type"))
        message = self._canonical(session, body.recipient, body.content, body.messageType)
        return await self._relay(session, "message", message, {"messageType": body.messageType})

    async def handle_voice(self, session: Session, msg: dict) -> dict:
        body = _validate(VoiceMessage, msg, msg.get("type"))
        message = self._canonical(
            session, body.recipient, body.content, KIND_VOICE, body.fileName, body.fileType
        )
        return await self._relay(
            session, "voice", message, {"fileName": body.fileName, "fileType": body.fileType}
        )

    async def handle_file(self, session: Session, msg: dict) -> dict:
        body = _validate(FileMessage, msg, msg.get("type"))
        message = self._canonical(
            session, body.recipient, body.content, KIND_FILE, body.fileName, body.fileType
        )
        return await self._relay(session, "file", message, {
            "fileName": body.fileName,
            "fileType": body.fileType,
            "isImage": body.isImage,
            "isVideo": body.isVideo,
        })

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def handle_history_request(self, session: Session, msg: dict) -> None:
        body = _validate(HistoryRequest, msg, MSG_REQUEST_CHAT_HISTORY)
        if not body.userEmail:
            raise ProtocolError("Partner email required for history.")

        messages = await self.history.query(session.email, body.userEmail)

        # The client may have left while the query ran
        if not session.connected:
            logger.debug("Discarding history reply for closed session %s", session.id)
            return
        await session.send({"type": MSG_CHAT_HISTORY, "messages": messages})

    async def handle_roster_request(self, session: Session, msg: dict) -> None:
        await self.presence.send_to(session)
