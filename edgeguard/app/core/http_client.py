"""HTTP client construction for outbound notification calls.

The client is created once per pipeline and closed with it, so every
outbound call shares one connection pool.
"""

import httpx


def create_http_client(
    timeout: float = 5.0,
    connect_timeout: float | None = None,
    max_connections: int = 20,
    max_keepalive_connections: int = 5,
    keepalive_expiry: float = 30.0,
) -> httpx.AsyncClient:
    """Create a new HTTP client with bounded timeouts.

    Note: The returned client should be closed when done:
        async with create_http_client() as client:
            # use client
            pass

    Args:
        timeout: Read, write and pool timeout in seconds
        connect_timeout: Connection timeout (defaults to ``timeout``)
        max_connections: Maximum connections
        max_keepalive_connections: Maximum keepalive connections
        keepalive_expiry: Keepalive expiration time

    Returns:
        A new httpx.AsyncClient instance
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout,
            connect=connect_timeout if connect_timeout is not None else timeout,
        ),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
            keepalive_expiry=keepalive_expiry,
        ),
    )
