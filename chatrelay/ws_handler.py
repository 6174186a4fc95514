"""WebSocket chat handler: one ChatConnection per socket.

The main entry point is ``websocket_chat()``, which is mounted as ``/ws``
by server.py. Each connection reads frames strictly in order; shared state
lives in the ConnectionRegistry.
"""

import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from .auth import AuthenticationGate
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .router import MessageRouter, system_message
from .session import Session
from .ws_constants import IDENTITY_TYPES

logger = logging.getLogger(__name__)


class ChatConnection:
    """Holds the per-socket loop around a registry Session.

    Before authentication only identity messages are acted on; everything
    else is dropped. After authentication frames go to the MessageRouter.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        registry: ConnectionRegistry,
        gate: AuthenticationGate,
        router: MessageRouter,
        presence: PresenceBroadcaster,
    ):
        self.ws = websocket
        self.registry = registry
        self.gate = gate
        self.router = router
        self.presence = presence
        self.session: Session | None = None

    async def open(self) -> Session:
        self.session = await self.registry.register(self.ws)
        return self.session

    async def receive_frame(self) -> str | bytes:
        """Next text or binary frame. Raises WebSocketDisconnect when the client leaves."""
        message = await self.ws.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def handle_frame(self, data: str | bytes) -> None:
        session = self.session
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            msg = json.loads(data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Malformed frame from session %s: %s", session.id, e)
            await session.send(system_message("Malformed message received."))
            return
        if not isinstance(msg, dict):
            await session.send(system_message("Malformed message received."))
            return

        msg_type = msg.get("type")
        try:
            await self._route(session, msg, msg_type)
        except Exception:
            logger.exception("Unexpected error handling message type=%s", msg_type)
            await session.send(system_message("An internal error occurred."))

    async def _route(self, session: Session, msg: dict, msg_type) -> None:
        if not session.authenticated:
            if msg_type in IDENTITY_TYPES:
                await self.gate.handle(session, msg)
            else:
                logger.debug("Ignoring %s before authentication (session %s)", msg_type, session.id)
            return

        if msg_type in IDENTITY_TYPES:
            await session.send(system_message("Already authenticated."))
            return

        await self.router.dispatch(session, msg)

    async def run(self) -> None:
        """Main receive loop. Returns when the client leaves or is closed."""
        try:
            while self.session.alive:
                data = await self.receive_frame()
                await self.handle_frame(data)
        except (WebSocketDisconnect, RuntimeError):
            pass

    async def cleanup(self) -> None:
        """Unregister the session and tell everyone if the roster changed."""
        session = self.session
        if session is None:
            return
        removed = await self.registry.unregister(session)
        if not removed:
            return
        logger.info("Client disconnected: %s", session.email or "unknown")
        if session.authenticated:
            try:
                await self.presence.broadcast()
            except Exception:
                logger.exception("Presence broadcast failed after disconnect")


# ------------------------------------------------------------------
# FastAPI endpoint, mounted at /ws by server.py
# ------------------------------------------------------------------

async def websocket_chat(
    websocket: WebSocket,
    *,
    registry: ConnectionRegistry,
    gate: AuthenticationGate,
    router: MessageRouter,
    presence: PresenceBroadcaster,
) -> None:
    """WebSocket endpoint handler for /ws."""
    await websocket.accept()

    connection = ChatConnection(
        websocket,
        registry=registry,
        gate=gate,
        router=router,
        presence=presence,
    )
    await connection.open()
    try:
        await connection.run()
    finally:
        await connection.cleanup()
