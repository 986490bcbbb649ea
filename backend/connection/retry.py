"""
Reconnect policy helpers.

Purpose:
- Centralize disconnect classification and retry rules
- Keep the reducer pure
- Allow the runtime to make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from connection.enums.cause import DisconnectCause

from constants import (
    DEFAULT_FRESH_RESTART_DELAY_MS,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY_MS,
    DEFAULT_RECONNECT_MAX_DELAY_MS,
    STATUS_BAD_SESSION,
    STATUS_LOGGED_OUT,
    TRANSIENT_STATUS_CODES,
)


# =============================================================================
# Classification
# =============================================================================

def classify_cause(status_code: int | None) -> DisconnectCause:
    """
    Map an engine disconnect code to a DisconnectCause.

    Only LOGGED_OUT and BAD_SESSION are fatal-recoverable. Everything the
    engine cannot explain (including a missing code) is UNKNOWN, which is
    retried exactly like TRANSIENT.
    """
    if status_code == STATUS_LOGGED_OUT:
        return DisconnectCause.LOGGED_OUT
    if status_code == STATUS_BAD_SESSION:
        return DisconnectCause.BAD_SESSION
    if status_code in TRANSIENT_STATUS_CODES:
        return DisconnectCause.TRANSIENT
    return DisconnectCause.UNKNOWN


def is_retryable(cause: DisconnectCause) -> bool:
    """TRANSIENT and UNKNOWN consume the retry budget; the rest purge."""
    return cause in (DisconnectCause.TRANSIENT, DisconnectCause.UNKNOWN)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Immutable reconnect policy.

    Semantics:
    - attempt 0 means no retry has been consumed.
    - attempt N >= 1 is the Nth consecutive retryable closure.
    - attempts beyond max_attempts escalate to a purge + fresh restart.
    """

    max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    base_delay_ms: int = DEFAULT_RECONNECT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_RECONNECT_MAX_DELAY_MS
    fresh_restart_delay_ms: int = DEFAULT_FRESH_RESTART_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("reconnect delays must be >= 0")
        if self.fresh_restart_delay_ms < 0:
            raise ValueError("fresh_restart_delay_ms must be >= 0")

    def allows(self, attempt: int) -> bool:
        """True if attempt N may still be retried."""
        return attempt <= self.max_attempts

    def backoff_ms(self, attempt: int) -> int:
        """
        Delay before retry attempt N.

        Exponential (base * 2**(N-1)), clamped to max_delay_ms, so the
        sequence is non-decreasing in N.
        """
        if attempt <= 0:
            return 0
        # Clamp the exponent; the cap is reached long before this matters
        exponent = min(attempt - 1, 30)
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)


def next_attempt(attempt: int) -> int:
    """Advance the consecutive retryable-closure counter."""
    return attempt + 1


def reset_attempt() -> int:
    """Returns a fresh attempt counter."""
    return 0
