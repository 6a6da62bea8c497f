"""
ASGI entry point for the local voice client API.

Loads .env before AppConfig reads the environment.

    uvicorn server.asgi:app --app-dir backend
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
