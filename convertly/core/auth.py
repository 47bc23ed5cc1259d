"""Authentication dependencies: Shopify session tokens and the operator token."""

import hmac
import logging
from typing import Annotated, Any
from urllib.parse import urlparse

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from convertly.core.config import settings
from convertly.core.logging_config import bind_shop_domain
from convertly.integrations.shopify.oauth import sanitize_shop_domain

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)

# Clock skew tolerated between Shopify and this host
SESSION_TOKEN_LEEWAY_SECONDS = 10


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_session_token(token: str) -> str:
    """Verify an App Bridge session token and return the shop it was issued for.

    Session tokens are HS256 JWTs signed with the app's API secret. The
    audience is the API key and ``dest`` carries the shop's admin origin.

    Raises:
        HTTPException: 401 if the token is expired, mis-signed or malformed.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.shopify_api_secret,
            algorithms=["HS256"],
            audience=settings.shopify_api_key,
            leeway=SESSION_TOKEN_LEEWAY_SECONDS,
            options={
                "require": ["exp", "dest", "iss"],
                "verify_exp": True,
                "verify_nbf": True,
                "verify_aud": True,
            },
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected session token: %s", e)
        raise _unauthorized("Invalid session token")

    dest_host = urlparse(str(payload["dest"])).hostname
    iss_host = urlparse(str(payload["iss"])).hostname
    shop = sanitize_shop_domain(dest_host)
    if not shop or iss_host != dest_host:
        logger.warning("Session token dest/iss mismatch: dest=%s iss=%s", dest_host, iss_host)
        raise _unauthorized("Invalid session token")

    return shop


async def get_current_shop(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_shopify_session_token: str | None = Header(default=None),
) -> str:
    """Resolve the shop domain from the embedded app's session token.

    The token is read from ``X-Shopify-Session-Token`` first, then from a
    ``Authorization: Bearer`` header.
    """
    token = (x_shopify_session_token or "").strip()
    if not token and credentials is not None:
        token = credentials.credentials.strip()
    if not token:
        raise _unauthorized("Not authenticated")

    shop = verify_session_token(token)
    bind_shop_domain(shop)
    return shop


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Guard operator endpoints with the configured admin bearer token."""
    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if credentials is None:
        raise _unauthorized("Missing Bearer authorization header")
    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"),
        settings.admin_api_token.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )


# Type aliases for dependency injection
CurrentShop = Annotated[str, Depends(get_current_shop)]
