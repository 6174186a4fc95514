"""WebSocket protocol constants: message types, close codes and roles.

Pure data module -- no imports, no logic. Safe to import from any chatrelay
module without risk of circular dependencies.
"""

# ── Client -> Server message types ────────────────────────────────────

MSG_ADMIN_INFO = "admin-info"
MSG_USER_INFO = "user-info"
MSG_ADMIN_MESSAGE = "admin-message"
MSG_USER_MESSAGE = "user-message"
MSG_ADMIN_VOICE = "admin-voice"
MSG_USER_VOICE = "user-voice"
MSG_ADMIN_FILE = "admin-file"
MSG_USER_FILE = "user-file"
MSG_REQUEST_CHAT_HISTORY = "request-chat-history"
MSG_REQUEST_USER_LIST = "request-user-list"

IDENTITY_TYPES = (MSG_ADMIN_INFO, MSG_USER_INFO)

# ── Server -> Client message types ────────────────────────────────────

MSG_AUTH_SUCCESS = "auth-success"
MSG_CHAT_HISTORY = "chat-history"
MSG_USER_LIST = "user-list"
MSG_SYSTEM = "system-message"

# ── Roles (also the ``type`` field of user-list entries) ──────────────

ROLE_ADMIN = "admin"
ROLE_USER = "user"

# ── Message kinds (persisted as messages.message_type) ────────────────

KIND_TEXT = "text"
KIND_VOICE = "voice"
KIND_FILE = "file"

# ── Close codes (WebSocket application range) ─────────────────────────

CLOSE_ADMIN_SLOT_TAKEN = 4000
CLOSE_INVALID_ADMIN_CREDENTIALS = 4001
CLOSE_MISSING_IDENTITY = 4002
CLOSE_PERSISTENCE_ERROR = 4003
