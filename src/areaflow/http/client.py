"""HTTP clients with connection pooling.

``requests`` sessions back the bot-token REST adapters; ``httpx`` clients back
the per-owner OAuth adapters, each carrying its own bearer token.
"""

import logging
import threading
from dataclasses import dataclass, field

import httpx
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

# Shared session instance
_sync_client: requests.Session | None = None
_sync_lock = threading.Lock()


@dataclass
class HTTPClientConfig:
    """Configuration for HTTP clients.

    Attributes:
        pool_connections: Number of connection pools to cache
        pool_maxsize: Maximum connections per pool
        max_retries: Maximum transport-level retries
        timeout: Default timeout in seconds
        retry_backoff_factor: Backoff factor for retries
        retry_statuses: HTTP status codes to retry on
    """

    pool_connections: int = 10
    pool_maxsize: int = 20
    max_retries: int = 2
    timeout: float = 15.0
    retry_backoff_factor: float = 0.5
    retry_statuses: tuple = field(default_factory=lambda: (429, 500, 502, 503, 504))
    headers: dict[str, str] = field(default_factory=dict)


_default_config = HTTPClientConfig()


def get_sync_client(config: HTTPClientConfig | None = None) -> requests.Session:
    """Get or create the shared requests session.

    Call close_sync_client() to release it.
    """
    global _sync_client

    with _sync_lock:
        if _sync_client is None:
            cfg = config or _default_config
            _sync_client = create_sync_client(cfg)
            logger.info(
                f"Created sync HTTP client (pool_connections={cfg.pool_connections}, "
                f"pool_maxsize={cfg.pool_maxsize})"
            )
        return _sync_client


def create_sync_client(config: HTTPClientConfig | None = None) -> requests.Session:
    """Create a new requests Session with pooling and retries."""
    config = config or _default_config
    session = requests.Session()

    retry_strategy = Retry(
        total=config.max_retries,
        backoff_factor=config.retry_backoff_factor,
        status_forcelist=list(config.retry_statuses),
        allowed_methods=["HEAD", "GET", "PUT", "DELETE", "OPTIONS"],
        respect_retry_after_header=True,
    )

    adapter = HTTPAdapter(
        pool_connections=config.pool_connections,
        pool_maxsize=config.pool_maxsize,
        max_retries=retry_strategy,
    )

    session.mount("http://", adapter)
    session.mount("https://", adapter)

    if config.headers:
        session.headers.update(config.headers)

    return session


def close_sync_client() -> None:
    """Close the shared session."""
    global _sync_client

    with _sync_lock:
        if _sync_client is not None:
            _sync_client.close()
            _sync_client = None
            logger.info("Closed sync HTTP client")


def create_httpx_client(
    base_url: str,
    headers: dict[str, str] | None = None,
    config: HTTPClientConfig | None = None,
) -> httpx.Client:
    """Create an httpx Client bound to one API and one set of credentials."""
    cfg = config or _default_config
    return httpx.Client(
        base_url=base_url,
        headers={**cfg.headers, **(headers or {})},
        timeout=httpx.Timeout(cfg.timeout, connect=10.0),
        limits=httpx.Limits(
            max_keepalive_connections=cfg.pool_connections,
            max_connections=cfg.pool_maxsize,
            keepalive_expiry=30.0,
        ),
        transport=httpx.HTTPTransport(retries=cfg.max_retries),
    )
