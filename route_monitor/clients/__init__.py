import logging

from .base import DaemonClient
from .http_client import HttpDaemonClient

__all__ = ["DaemonClient", "HttpDaemonClient", "get_client"]


def get_client(settings) -> DaemonClient:
    """
    Factory function to build the daemon client from `MonitorSettings`.
    """
    logging.getLogger(__name__).info(f"Creating daemon client for {settings.base_url}")
    return HttpDaemonClient(settings.base_url, timeout=settings.timeout, verify_cert=settings.verify_cert)
