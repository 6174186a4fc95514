import logging
from dataclasses import dataclass, field
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from .ws_constants import ROLE_ADMIN

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who an authenticated connection speaks for."""
    role: str
    name: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def roster_entry(self) -> dict:
        return {"name": self.name, "email": self.email, "type": self.role}


@dataclass(eq=False)
class Session:
    """One live connection plus its identity.

    ``identity`` is None until the connection authenticates; after that it
    is set exactly once and never cleared.
    """
    transport: WebSocket
    id: str = field(default_factory=lambda: uuid4().hex)
    identity: Identity | None = None
    alive: bool = True

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    @property
    def role(self) -> str | None:
        return self.identity.role if self.identity else None

    @property
    def name(self) -> str | None:
        return self.identity.name if self.identity else None

    @property
    def email(self) -> str | None:
        return self.identity.email if self.identity else None

    @property
    def connected(self) -> bool:
        """Alive here and still open at the transport on both sides."""
        return (
            self.alive
            and self.transport.client_state == WebSocketState.CONNECTED
            and self.transport.application_state == WebSocketState.CONNECTED
        )

    async def send(self, data: dict) -> bool:
        """Send JSON to the client, return False if it is gone."""
        if not self.alive:
            return False
        try:
            await self.transport.send_json(data)
            return True
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Send to closed session %s dropped", self.id)
            self.alive = False
            return False

    async def close(self, code: int, reason: str = "") -> None:
        if not self.alive:
            return
        self.alive = False
        try:
            await self.transport.close(code=code, reason=reason)
        except RuntimeError:
            logger.debug("Session %s already closed", self.id)
