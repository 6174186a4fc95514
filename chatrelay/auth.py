"""Authentication gate: turns a connection's identity message into a role.

Authentication is a known-email check only. Admins must already exist in
the identity directory; users are created (or renamed) on first contact.
"""

import logging

from pydantic import ValidationError

from .errors import (
    AdminEmailInUse,
    AdminSlotTaken,
    AuthError,
    InvalidAdminCredentials,
    MissingIdentity,
    PersistenceError,
)
from .history import HistoryService
from .models import IdentityInfo
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .session import Identity, Session
from .ws_constants import (
    MSG_ADMIN_INFO,
    MSG_AUTH_SUCCESS,
    MSG_USER_INFO,
    ROLE_ADMIN,
    ROLE_USER,
)

logger = logging.getLogger(__name__)


def _parse_identity(msg: dict) -> tuple[str, str]:
    try:
        info = IdentityInfo.model_validate(msg)
    except ValidationError:
        return "", ""
    return (info.name or "").strip(), (info.email or "").strip()


class AuthenticationGate:
    def __init__(
        self,
        registry: ConnectionRegistry,
        history: HistoryService,
        presence: PresenceBroadcaster,
    ):
        self.registry = registry
        self.history = history
        self.presence = presence

    async def authenticate(self, session: Session, msg: dict) -> Identity:
        """Promote *session* from an ``admin-info`` / ``user-info`` message.

        Raises AuthError or PersistenceError; the caller decides how to
        close the connection.
        """
        msg_type = msg.get("type")
        if msg_type == MSG_ADMIN_INFO:
            return await self._authenticate_admin(session, msg)
        if msg_type == MSG_USER_INFO:
            return await self._authenticate_user(session, msg)
        raise ValueError(f"Not an identity message: {msg_type}")

    async def _authenticate_admin(self, session: Session, msg: dict) -> Identity:
        # Cheap early rejection; the authoritative check is inside promote()
        if not self.registry.is_admin_slot_free_for(session):
            raise AdminSlotTaken()

        _, email = _parse_identity(msg)
        record = await self.history.find_identity(email)
        if record is None:
            raise InvalidAdminCredentials()

        return await self.registry.promote(session, ROLE_ADMIN, record.name, record.email)

    async def _authenticate_user(self, session: Session, msg: dict) -> Identity:
        name, email = _parse_identity(msg)
        if not name or not email:
            raise MissingIdentity()

        # The admin row is shared with users; never rename it from a user handshake
        holder = self.registry.admin_holder
        if holder is not None and holder.email == email:
            raise AdminEmailInUse()

        if not await self.history.upsert_identity(name, email):
            raise PersistenceError()

        return await self.registry.promote(session, ROLE_USER, name, email)

    async def handle(self, session: Session, msg: dict) -> bool:
        """Run the handshake for one identity message.

        On success replies ``auth-success`` and pushes presence; on failure
        closes the connection with the matching code. Returns True if the
        session is now authenticated.
        """
        try:
            identity = await self.authenticate(session, msg)
        except (AuthError, PersistenceError) as e:
            logger.warning(
                "Rejecting %s from session %s: %s (close %d)",
                msg.get("type"), session.id, e.message, e.close_code,
            )
            await session.close(code=e.close_code, reason=e.message)
            return False

        await session.send({"type": MSG_AUTH_SUCCESS, "email": identity.email})
        await self.presence.broadcast()
        return True
