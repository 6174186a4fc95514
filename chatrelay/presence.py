import logging

from .registry import ConnectionRegistry
from .session import Session
from .ws_constants import MSG_USER_LIST

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Pushes the full online roster, never a diff.

    Every authenticated session receives the same undifferentiated list;
    clients drop their own entry when rendering.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def snapshot(self) -> dict:
        return {"type": MSG_USER_LIST, "users": self.registry.roster()}

    async def broadcast(self) -> int:
        """Send the roster to every open authenticated session. Returns the delivery count."""
        payload = self.snapshot()
        recipients = [s for s in self.registry.authenticated() if s.alive]
        delivered = 0
        for session in recipients:
            if await session.send(payload):
                delivered += 1
        logger.debug(
            "Roster of %d pushed to %d/%d sessions",
            len(payload["users"]), delivered, len(recipients),
        )
        return delivered

    async def send_to(self, session: Session) -> bool:
        return await session.send(self.snapshot())
