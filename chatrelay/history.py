"""Message log and identity directory.

SQLite via aiosqlite. Messages are append-only: there is no update or
delete path. Read helpers log store errors and return an empty result so a
broken database degrades history, not relaying.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

from .errors import StartupError
from .models import ChatMessage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS identities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE NOT NULL,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_email TEXT NOT NULL,
    sender_name TEXT NOT NULL,
    recipient_email TEXT NOT NULL,
    content TEXT,
    message_type TEXT NOT NULL DEFAULT 'text',
    file_name TEXT,
    file_type TEXT,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_email, recipient_email);
"""

_HISTORY_COLUMNS = (
    "id, sender_email, sender_name, recipient_email, content, "
    "message_type, file_name, file_type, timestamp"
)


@dataclass(frozen=True)
class IdentityRecord:
    name: str
    email: str


def _append_task_done_callback(task: asyncio.Task):
    """Log exceptions from background appends instead of silently swallowing."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background message append failed: %s", exc, exc_info=exc)


class HistoryService:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).resolve()
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self) -> None:
        """Connect and create the schema. Raises StartupError if the store is unusable."""
        db = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(str(self.db_path))
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.executescript(_SCHEMA)
            await db.commit()
        except (aiosqlite.Error, OSError) as e:
            if db is not None:
                await db.close()
            raise StartupError(f"Cannot open message store at {self.db_path}: {e}") from e
        self._db = db
        logger.info("Message store ready at %s", self.db_path)

    async def flush(self) -> None:
        """Wait for background appends scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise aiosqlite.ProgrammingError("Message store is not open")
        return self._db

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append(self, message: ChatMessage) -> None:
        """Durably record *message*. Failures are logged, never raised."""
        try:
            async with self._lock:
                db = self._conn()
                await db.execute(
                    "INSERT INTO messages (sender_email, sender_name, recipient_email, content, "
                    "message_type, file_name, file_type, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        message.sender_email,
                        message.sender_name,
                        message.recipient_email,
                        message.content,
                        message.kind,
                        message.file_name,
                        message.file_type,
                        message.timestamp,
                    ),
                )
                await db.commit()
        except aiosqlite.Error:
            logger.exception(
                "Failed to save message %s -> %s", message.sender_email, message.recipient_email
            )

    def append_in_background(self, message: ChatMessage) -> asyncio.Task:
        """Schedule append() without waiting for it."""
        task = asyncio.ensure_future(self.append(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(_append_task_done_callback)
        return task

    async def query(self, email_a: str, email_b: str) -> list[dict]:
        """Every message between *email_a* and *email_b*, oldest first."""
        try:
            async with self._conn().execute(
                f"SELECT {_HISTORY_COLUMNS} FROM messages "
                "WHERE (sender_email = ? AND recipient_email = ?) "
                "   OR (sender_email = ? AND recipient_email = ?) "
                "ORDER BY timestamp ASC, id ASC",
                (email_a, email_b, email_b, email_a),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error:
            logger.exception("History fetch failed for %s <-> %s", email_a, email_b)
            return []
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    async def find_identity(self, email: str) -> IdentityRecord | None:
        if not email:
            return None
        try:
            async with self._conn().execute(
                "SELECT name, email FROM identities WHERE email = ?", (email,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error:
            logger.exception("Identity fetch failed for %s", email)
            return None
        if row is None:
            return None
        return IdentityRecord(name=row["name"], email=row["email"])

    async def upsert_identity(self, name: str, email: str) -> bool:
        """Create the identity or update its name. Returns False on store failure."""
        try:
            async with self._lock:
                db = self._conn()
                await db.execute(
                    "INSERT INTO identities (name, email) VALUES (?, ?) "
                    "ON CONFLICT(email) DO UPDATE SET name = excluded.name "
                    "WHERE identities.name != excluded.name",
                    (name, email),
                )
                await db.commit()
        except aiosqlite.Error:
            logger.exception("Identity upsert failed for %s", email)
            return False
        return True

    async def list_identities(self) -> list[IdentityRecord]:
        async with self._conn().execute(
            "SELECT name, email FROM identities ORDER BY id ASC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [IdentityRecord(name=row["name"], email=row["email"]) for row in rows]
