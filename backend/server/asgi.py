"""
ASGI entry point.

Used by uvicorn (`uvicorn server.asgi:app`, run from backend/).
Environment is loaded from .env before AppConfig reads it.
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
