"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from starlette.requests import Request


def _get_real_client_ip(request: Request) -> str:
    """Extract the real client IP behind a CDN or reverse proxy."""
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or (request.client.host if request.client else "127.0.0.1")
    )


def install_rate_key(request: Request) -> str:
    """Key install attempts on client IP and the requested shop.

    A merchant retrying their own install does not exhaust the budget of
    other shops behind the same egress IP.
    """
    shop = request.query_params.get("shop", "").strip().lower()
    return f"{_get_real_client_ip(request)}:{shop}"


limiter = Limiter(key_func=_get_real_client_ip)
