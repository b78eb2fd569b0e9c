"""HTTP client utilities."""

from .client import (
    HTTPClientConfig,
    close_sync_client,
    create_httpx_client,
    create_sync_client,
    get_sync_client,
)

__all__ = [
    "HTTPClientConfig",
    "close_sync_client",
    "create_httpx_client",
    "create_sync_client",
    "get_sync_client",
]
