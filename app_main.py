"""Application entry point for the CBT service."""

from __future__ import annotations

import socket

from cbt_app.core.cbt_manager import CbtManager
from cbt_app.core.settings import get_settings
from cbt_app.server.api_server import run_api_server
from cbt_app.utils.logging_config import configure_logging


def _determine_public_url(port: int) -> str:
    """Best-effort determination of the local IP for the API URL."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            ip_address = sock.getsockname()[0]
    except OSError:
        ip_address = "127.0.0.1"
    return f"http://{ip_address}:{port}/"


def main() -> None:
    """Initialize logging and serve the API until interrupted."""
    settings = get_settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting CBT service...")

    cbt_manager = CbtManager(settings=settings)
    logger.info("API available at %s", _determine_public_url(settings.port))
    run_api_server(cbt_manager, host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
