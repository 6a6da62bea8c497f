"""
Local entry point: serve the ASGI app with uvicorn.

    python backend/server/main.py
"""

from __future__ import annotations

import os
from pathlib import Path

import uvicorn


BACKEND_DIR = Path(__file__).resolve().parent.parent


def main() -> None:
    uvicorn.run(
        "server.asgi:app",
        app_dir=str(BACKEND_DIR),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
