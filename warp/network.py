"""
Network helpers.
"""

import logging
import socket

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Get the local LAN IP address (best guess)."""
    try:
        # Connecting a UDP socket sends nothing, it only picks the route
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError as e:
        logger.debug(f"Could not determine LAN IP: {e}")
        return "127.0.0.1"


def advertised_host(bind_host: str) -> str:
    """Address peers should use to reach a server bound to ``bind_host``."""
    if bind_host in ('', '0.0.0.0', '::'):
        return get_local_ip()
    return bind_host
