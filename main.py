"""
main.py: Server launcher and entry point.

Run this file to start the booking engine API:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import uvicorn

from room_booking.utils.config import get_settings


def main() -> None:
    """Start the booking engine API server."""
    settings = get_settings()
    host, port = settings.server_host, settings.server_port
    print("=" * 60)
    print(f"  {settings.app_name}")
    print("=" * 60)
    print(f"  Server   : http://{host}:{port}")
    print(f"  API docs : http://{host}:{port}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Blocks until CTRL+C
    uvicorn.run(
        "app:app",
        host=host,
        port=port,
        reload=settings.server_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
