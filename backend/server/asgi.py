"""
ASGI entry point for the bridge.

    uvicorn server.asgi:app --app-dir backend --port 3000

Run exactly one worker: the process owns the single network session.
"""

from dotenv import load_dotenv

load_dotenv()

# pylint: disable=wrong-import-position
from config import AppConfig
from server.app import create_app

app = create_app(AppConfig.load_from_env())
