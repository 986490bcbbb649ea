"""
Process entry point for the bridge.

Runs the ASGI app under uvicorn with host/port/log level taken from
the environment (a local .env file is honored).
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()

    uvicorn.run(
        "server.asgi:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level,
        workers=1,  # one process owns the session
    )


if __name__ == "__main__":
    main()
