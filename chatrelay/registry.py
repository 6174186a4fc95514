import asyncio
import logging

from fastapi import WebSocket

from .errors import AdminSlotTaken, ProtocolError
from .session import Identity, Session
from .ws_constants import ROLE_ADMIN, ROLE_USER

logger = logging.getLogger(__name__)


class AdminSlot:
    """Single exclusive holder of the admin role.

    Not thread-safe on its own: callers mutate it under the registry lock.
    """

    def __init__(self):
        self._holder: Session | None = None

    @property
    def holder(self) -> Session | None:
        return self._holder

    def is_free_for(self, session: Session) -> bool:
        return self._holder is None or self._holder is session

    def claim(self, session: Session) -> None:
        if not self.is_free_for(session):
            raise AdminSlotTaken()
        self._holder = session

    def release(self, session: Session) -> bool:
        if self._holder is session:
            self._holder = None
            return True
        return False


class ConnectionRegistry:
    """Live sessions in registration order, plus the admin slot."""

    def __init__(self):
        # dicts keep insertion order, which is the documented lookup order
        self._sessions: dict[str, Session] = {}
        self._admin = AdminSlot()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: Session) -> bool:
        return self._sessions.get(session.id) is session

    @property
    def admin_holder(self) -> Session | None:
        return self._admin.holder

    async def register(self, transport: WebSocket) -> Session:
        """Create an unauthenticated session bound to *transport*."""
        session = Session(transport=transport)
        async with self._lock:
            self._sessions[session.id] = session
        logger.debug("Registered session %s (%d live)", session.id, len(self._sessions))
        return session

    async def promote(self, session: Session, role: str, name: str, email: str) -> Identity:
        """Authenticate *session* as *role*.

        The admin check and claim happen under one lock acquisition, so of
        two concurrent admin promotions exactly one succeeds and the other
        raises AdminSlotTaken.
        """
        if role not in (ROLE_ADMIN, ROLE_USER):
            raise ValueError(f"Unknown role: {role}")
        async with self._lock:
            if self._sessions.get(session.id) is not session:
                raise ProtocolError("Session is no longer connected.", code="not_registered")
            if session.identity is not None:
                raise ProtocolError("Already authenticated.", code="already_authenticated")
            if role == ROLE_ADMIN:
                self._admin.claim(session)
            session.identity = Identity(role=role, name=name, email=email)
        logger.info("Session %s authenticated as %s <%s>", session.id, role, email)
        return session.identity

    async def unregister(self, session: Session) -> bool:
        """Drop *session* and release the admin slot if it held it.

        Safe to call more than once; only the first call returns True.
        """
        async with self._lock:
            removed = self._sessions.pop(session.id, None)
            if removed is None:
                return False
            released = self._admin.release(session)
        session.alive = False
        if released:
            logger.info("Admin slot released by %s", session.email)
        logger.debug("Unregistered session %s (%d live)", session.id, len(self._sessions))
        return True

    def is_admin_slot_free_for(self, session: Session) -> bool:
        return self._admin.is_free_for(session)

    def find_by_email(self, email: str) -> Session | None:
        """First live authenticated session for *email*, in registration order."""
        if not email:
            return None
        for session in self._sessions.values():
            if session.alive and session.email == email:
                return session
        return None

    def authenticated(self) -> list[Session]:
        """Snapshot of authenticated sessions in registration order."""
        return [s for s in self._sessions.values() if s.authenticated]

    def roster(self) -> list[dict]:
        return [s.identity.roster_entry() for s in self.authenticated()]
