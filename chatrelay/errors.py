"""
chatrelay error types -- protocol, authentication and persistence failures.
"""

from typing import Optional

from .ws_constants import (
    CLOSE_ADMIN_SLOT_TAKEN,
    CLOSE_INVALID_ADMIN_CREDENTIALS,
    CLOSE_MISSING_IDENTITY,
    CLOSE_PERSISTENCE_ERROR,
)


class ChatRelayError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ProtocolError(ChatRelayError):
    """Malformed or out-of-place inbound payload. The connection stays open."""

    def __init__(self, message: str, code: str = "protocol_error"):
        super().__init__(code, message)


class AuthError(ChatRelayError):
    """Failed identity handshake. The connection is closed with ``close_code``."""

    close_code: int = 4001

    def __init__(self, message: str, code: str = "auth_error", close_code: Optional[int] = None):
        super().__init__(code, message)
        if close_code is not None:
            self.close_code = close_code


class AdminSlotTaken(AuthError):
    close_code = CLOSE_ADMIN_SLOT_TAKEN

    def __init__(self, message: str = "Admin already connected"):
        super().__init__(message, "admin_slot_taken")


class InvalidAdminCredentials(AuthError):
    close_code = CLOSE_INVALID_ADMIN_CREDENTIALS

    def __init__(self, message: str = "Invalid admin credentials"):
        super().__init__(message, "invalid_admin_credentials")


class AdminEmailInUse(AuthError):
    """A user-info claimed the email of the connected admin."""

    close_code = CLOSE_INVALID_ADMIN_CREDENTIALS

    def __init__(self, message: str = "Email belongs to the connected admin"):
        super().__init__(message, "admin_email_in_use")


class MissingIdentity(AuthError):
    close_code = CLOSE_MISSING_IDENTITY

    def __init__(self, message: str = "Name and email required"):
        super().__init__(message, "missing_identity")


class PersistenceError(ChatRelayError):
    close_code = CLOSE_PERSISTENCE_ERROR

    def __init__(self, message: str = "Server error"):
        super().__init__("persistence_error", message)


class StartupError(ChatRelayError):
    def __init__(self, message: str):
        super().__init__("startup_error", message)
