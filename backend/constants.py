"""
Behavioral constants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-tunable defaults are mirrored by AppConfig (config.py).
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Reconnect policy defaults
# =============================================================================

DEFAULT_MAX_RECONNECT_ATTEMPTS: Final[int] = 5
DEFAULT_RECONNECT_BASE_DELAY_MS: Final[int] = 3_000
DEFAULT_RECONNECT_MAX_DELAY_MS: Final[int] = 60_000

# Delay before rebuilding a session from empty credentials (logged out,
# bad session, exhausted retry budget).
DEFAULT_FRESH_RESTART_DELAY_MS: Final[int] = 3_000

# =============================================================================
# Disconnect status codes reported by the protocol engine
# =============================================================================

STATUS_LOGGED_OUT: Final[int] = 401
STATUS_FORBIDDEN: Final[int] = 403
STATUS_TIMED_OUT: Final[int] = 408  # also "connection lost"
STATUS_MULTIDEVICE_MISMATCH: Final[int] = 411
STATUS_CONNECTION_CLOSED: Final[int] = 428
STATUS_CONNECTION_REPLACED: Final[int] = 440
STATUS_BAD_SESSION: Final[int] = 500
STATUS_UNAVAILABLE_SERVICE: Final[int] = 503
STATUS_RESTART_REQUIRED: Final[int] = 515

TRANSIENT_STATUS_CODES: Final[frozenset[int]] = frozenset({
    STATUS_TIMED_OUT,
    STATUS_CONNECTION_CLOSED,
    STATUS_UNAVAILABLE_SERVICE,
    STATUS_RESTART_REQUIRED,
})

# =============================================================================
# Session I/O timeouts
# =============================================================================

ENGINE_CONNECT_TIMEOUT_S: Final[float] = 20.0
ENGINE_CALL_TIMEOUT_S: Final[float] = 30.0
LOGOUT_TIMEOUT_S: Final[float] = 10.0
SESSION_TERMINATE_TIMEOUT_S: Final[float] = 5.0
SHUTDOWN_TERMINATE_TIMEOUT_S: Final[float] = 5.0

# =============================================================================
# Pairing code rendering
# =============================================================================

QR_BOX_SIZE: Final[int] = 10
QR_BORDER: Final[int] = 2

# =============================================================================
# Facade
# =============================================================================

DEFAULT_CHAT_LIST_LIMIT: Final[int] = 50
DEFAULT_MESSAGE_LIMIT: Final[int] = 50
CREDENTIALS_FILENAME: Final[str] = "creds.bin"
