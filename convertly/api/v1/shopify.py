"""Shopify OAuth install and callback endpoints.

Mounted at the application root: Shopify calls ``/install`` when a
merchant adds the app and redirects back to ``/auth/callback``.
"""

import logging
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from convertly.core.config import settings
from convertly.core.deps import DBSession, RedisClient
from convertly.core.logging_config import bind_shop_domain
from convertly.core.rate_limit import install_rate_key, limiter
from convertly.integrations.shopify.client import ShopifyClient
from convertly.integrations.shopify.errors import (
    InvalidAccessTokenError,
    ShopifyApiError,
    TokenExchangeError,
)
from convertly.integrations.shopify.oauth import (
    build_auth_url,
    exchange_code_for_token,
    sanitize_shop_domain,
    verify_hmac,
)
from convertly.integrations.shopify.retry import RetryPolicy
from convertly.services.shop_service import ShopService
from convertly.services.state_token_service import StateTokenStore
from convertly.services.webhook_service import REQUIRED_TOPICS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["shopify"])

REQUIRED_CALLBACK_PARAMS = ("shop", "code", "state", "hmac")
INVALID_SHOP_DETAIL = "Missing or invalid 'shop' parameter"
INVALID_REQUEST_DETAIL = "Invalid OAuth request. Please try installing the app again."


@router.get("/install")
@limiter.limit(settings.install_rate_limit, key_func=install_rate_key)
async def install(
    request: Request,
    db: DBSession,
    r: RedisClient,
    shop: str | None = None,
) -> RedirectResponse:
    """Start the OAuth flow: issue a state token and redirect to Shopify."""
    shop_domain = sanitize_shop_domain(shop)
    if shop_domain is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, INVALID_SHOP_DETAIL)
    bind_shop_domain(shop_domain)

    store = StateTokenStore(db, r)
    try:
        await store.sweep_expired()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Opportunistic OAuth state sweep failed", exc_info=True)

    state = await store.issue(shop_domain)
    logger.info("Starting OAuth install for %s", shop_domain)
    return RedirectResponse(build_auth_url(shop_domain, state), status_code=status.HTTP_302_FOUND)


@router.get("/auth/callback")
async def callback(
    request: Request,
    db: DBSession,
    r: RedisClient,
) -> RedirectResponse:
    """Complete the OAuth flow: verify, exchange the code, persist the shop."""
    params = request.query_params
    missing = [name for name in REQUIRED_CALLBACK_PARAMS if not params.get(name)]
    if missing:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Missing required parameter(s): {', '.join(missing)}",
        )

    shop_domain = sanitize_shop_domain(params["shop"])
    if shop_domain is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, INVALID_SHOP_DETAIL)
    bind_shop_domain(shop_domain)

    # HMAC first: a forged callback must not burn a legitimate state token
    if not verify_hmac(params.multi_items(), settings.shopify_api_secret):
        logger.warning("OAuth callback HMAC verification failed for %s", shop_domain)
        raise HTTPException(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST_DETAIL)

    if not await StateTokenStore(db, r).verify_and_consume(params["state"], shop_domain):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST_DETAIL)

    try:
        access_token, scopes = await exchange_code_for_token(shop_domain, params["code"])
    except TokenExchangeError as e:
        logger.error("Token exchange failed for %s: %s", shop_domain, e.message)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Could not complete installation with Shopify. Please try installing again.",
        )
    except InvalidAccessTokenError as e:
        logger.error("Rejected access token for %s: %s", shop_domain, e)
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Shopify returned an invalid access token. Please reinstall the app.",
        )

    is_reinstall = await ShopService(db).upsert_on_install(shop_domain, access_token, scopes)
    await _register_required_webhooks(shop_domain, access_token)

    home = f"{settings.app_home_url}?{urlencode({'shop': shop_domain})}"
    logger.info("OAuth complete for %s (reinstall=%s)", shop_domain, is_reinstall)
    return RedirectResponse(home, status_code=status.HTTP_302_FOUND)


async def _register_required_webhooks(shop_domain: str, access_token: str) -> None:
    """Subscribe to uninstall, billing and compliance topics. Never fails the install."""
    client = ShopifyClient(shop_domain, access_token, retry_policy=RetryPolicy.fresh_token())
    try:
        registered = await client.register_webhooks(REQUIRED_TOPICS, settings.webhook_address)
    except (ShopifyApiError, httpx.HTTPError) as e:
        logger.error("Webhook registration failed for %s: %s", shop_domain, e)
        return
    if registered:
        logger.info("Registered webhooks for %s: %s", shop_domain, ", ".join(registered))
