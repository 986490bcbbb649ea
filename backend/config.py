"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No connection lifecycle logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    DEFAULT_CHAT_LIST_LIMIT,
    DEFAULT_FRESH_RESTART_DELAY_MS,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY_MS,
    DEFAULT_RECONNECT_MAX_DELAY_MS,
)


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) == "1"


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory and the connection manager.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 3000

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True
    print_qr_in_terminal: bool = False

    # ------------------------------------------------------------------
    # Session storage / protocol engine
    # ------------------------------------------------------------------

    session_dir: str = "./auth_state"
    engine_url: str = "ws://127.0.0.1:8765"
    engine_token: str | None = None

    # ------------------------------------------------------------------
    # Reconnect policy
    # ------------------------------------------------------------------

    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    reconnect_base_delay_ms: int = DEFAULT_RECONNECT_BASE_DELAY_MS
    reconnect_max_delay_ms: int = DEFAULT_RECONNECT_MAX_DELAY_MS
    fresh_restart_delay_ms: int = DEFAULT_FRESH_RESTART_DELAY_MS

    # ------------------------------------------------------------------
    # Facade
    # ------------------------------------------------------------------

    chat_list_limit: int = DEFAULT_CHAT_LIST_LIMIT

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is malformed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "info").lower(),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "3000")),

            enable_json_logs=_env_flag("ENABLE_JSON_LOGS", "1"),
            print_qr_in_terminal=_env_flag("PRINT_QR_IN_TERMINAL", "0"),

            session_dir=os.environ.get("SESSION_DIR", "./auth_state"),
            engine_url=os.environ.get("ENGINE_URL", "ws://127.0.0.1:8765"),
            engine_token=os.environ.get("ENGINE_TOKEN"),

            max_reconnect_attempts=int(os.environ.get(
                "MAX_RECONNECT_ATTEMPTS", str(DEFAULT_MAX_RECONNECT_ATTEMPTS)
            )),
            reconnect_base_delay_ms=int(os.environ.get(
                "RECONNECT_BASE_DELAY_MS", str(DEFAULT_RECONNECT_BASE_DELAY_MS)
            )),
            reconnect_max_delay_ms=int(os.environ.get(
                "RECONNECT_MAX_DELAY_MS", str(DEFAULT_RECONNECT_MAX_DELAY_MS)
            )),
            fresh_restart_delay_ms=int(os.environ.get(
                "FRESH_RESTART_DELAY_MS", str(DEFAULT_FRESH_RESTART_DELAY_MS)
            )),

            chat_list_limit=int(os.environ.get(
                "CHAT_LIST_LIMIT", str(DEFAULT_CHAT_LIST_LIMIT)
            )),
        )
