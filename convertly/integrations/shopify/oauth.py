"""Shopify OAuth helpers: shop domains, callback HMAC, token exchange."""

import hashlib
import hmac
import logging
import re
from collections.abc import Iterable, Mapping
from urllib.parse import urlencode

import httpx

from convertly.core.config import settings
from convertly.core.logging_config import mask_token
from convertly.integrations.shopify.errors import InvalidAccessTokenError, TokenExchangeError

logger = logging.getLogger(__name__)

SHOP_DOMAIN_SUFFIX = ".myshopify.com"
_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")

# shpat_ (admin), shpca_ (custom app), shppa_ (private app), shpua_ (online/user)
ACCESS_TOKEN_PREFIXES = ("shpat_", "shpca_", "shppa_", "shpua_")
MIN_ACCESS_TOKEN_LENGTH = 38  # prefix (6) + 32 characters
_ACCESS_TOKEN_RE = re.compile(r"^shp(at|ca|pa|ua)_[A-Za-z0-9]+$")

# Fields excluded from the signed message
_SIGNATURE_FIELDS = frozenset({"hmac", "signature"})


def sanitize_shop_domain(shop: str | None) -> str | None:
    """Normalize a shop parameter to ``<name>.myshopify.com``.

    Lowercases, trims, and appends the myshopify suffix when it is missing.
    Returns None for anything that does not match the strict shop pattern.
    Applying it to its own output returns the same value.
    """
    if not shop:
        return None

    normalized = shop.strip().lower()
    if not normalized.endswith(SHOP_DOMAIN_SUFFIX):
        normalized += SHOP_DOMAIN_SUFFIX

    if not _SHOP_DOMAIN_RE.fullmatch(normalized):
        return None
    return normalized


def _query_items(query_params: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    if isinstance(query_params, Mapping):
        return list(query_params.items())
    return list(query_params)


def build_hmac_message(query_params: Mapping[str, str] | Iterable[tuple[str, str]]) -> str:
    """Build the message Shopify signs: sorted ``key=value`` pairs joined by ``&``."""
    pairs = [(k, v) for k, v in _query_items(query_params) if k not in _SIGNATURE_FIELDS]
    pairs.sort(key=lambda item: item[0])
    return "&".join(f"{k}={v}" for k, v in pairs)


def verify_hmac(
    query_params: Mapping[str, str] | Iterable[tuple[str, str]],
    secret: str,
) -> bool:
    """Verify a Shopify OAuth callback HMAC signature.

    Args:
        query_params: All query parameters from the callback URL, as a mapping
            or as (key, value) pairs.
        secret: The Shopify API secret.

    Returns:
        True if the hex digest in ``hmac`` matches. Malformed input yields
        False rather than an exception.
    """
    items = _query_items(query_params)
    received = next((v for k, v in items if k == "hmac"), "")
    if not received or not secret:
        return False

    computed = hmac.new(
        secret.encode("utf-8"),
        build_hmac_message(items).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    try:
        return hmac.compare_digest(computed.encode("ascii"), received.encode("utf-8"))
    except (TypeError, UnicodeEncodeError):
        return False


def build_auth_url(shop: str, state: str) -> str:
    """Build the Shopify OAuth authorization URL.

    Args:
        shop: The sanitized shop domain (e.g. mystore.myshopify.com).
        state: Single-use state token for CSRF protection.

    Returns:
        The full authorization URL to redirect the merchant to.
    """
    params = urlencode({
        "client_id": settings.shopify_api_key,
        "scope": settings.shopify_scopes,
        "redirect_uri": settings.oauth_redirect_uri,
        "state": state,
    })
    return f"https://{shop}/admin/oauth/authorize?{params}"


def validate_access_token(raw: object) -> str:
    """Trim and sanity-check an access token returned by Shopify.

    Raises:
        InvalidAccessTokenError: If the token is not a string, is too short,
            or does not carry a known Shopify token prefix.
    """
    if not isinstance(raw, str):
        raise InvalidAccessTokenError("Access token is missing or not a string")

    token = raw.strip()
    if len(token) < MIN_ACCESS_TOKEN_LENGTH:
        raise InvalidAccessTokenError(
            f"Access token is {len(token)} characters, expected at least {MIN_ACCESS_TOKEN_LENGTH}"
        )
    if not token.startswith(ACCESS_TOKEN_PREFIXES) or not _ACCESS_TOKEN_RE.fullmatch(token):
        raise InvalidAccessTokenError("Access token has an unexpected format")
    return token


async def exchange_code_for_token(shop: str, code: str) -> tuple[str, str]:
    """Exchange the OAuth authorization code for a permanent access token.

    Args:
        shop: The shop domain.
        code: The authorization code from Shopify.

    Returns:
        Tuple of (access_token, granted_scopes).

    Raises:
        TokenExchangeError: On network failure, timeout, a non-200 response
            or a response without an access token.
        InvalidAccessTokenError: If the returned token fails the sanity check.
    """
    url = f"https://{shop}/admin/oauth/access_token"
    try:
        async with httpx.AsyncClient(timeout=settings.shopify_http_timeout_seconds) as client:
            response = await client.post(url, json={
                "client_id": settings.shopify_api_key,
                "client_secret": settings.shopify_api_secret,
                "code": code,
            })
    except httpx.HTTPError as e:
        raise TokenExchangeError(0, f"Token exchange request failed: {e}") from e

    if response.status_code != 200:
        raise TokenExchangeError(
            response.status_code,
            f"Token exchange returned HTTP {response.status_code}",
        )

    try:
        data = response.json()
    except ValueError as e:
        raise TokenExchangeError(response.status_code, "Token exchange returned invalid JSON") from e

    if not isinstance(data, dict) or not data.get("access_token"):
        raise TokenExchangeError(response.status_code, "Token exchange response has no access_token")

    token = validate_access_token(data["access_token"])
    logger.info("Obtained access token for %s: %s", shop, mask_token(token))
    return token, str(data.get("scope", ""))
