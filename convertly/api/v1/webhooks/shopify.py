"""Shopify webhook endpoint (no auth - verified via HMAC)."""

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from convertly.core.deps import DBSession
from convertly.core.logging_config import bind_shop_domain
from convertly.schemas.common import WebhookAck
from convertly.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_TEXT = {200: "ok", 400: "invalid"}


@router.post("")
async def receive_webhook(
    request: Request,
    db: DBSession,
    x_shopify_topic: str = Header(default=""),
    x_shopify_shop_domain: str = Header(default=""),
    x_shopify_hmac_sha256: str = Header(default=""),
    x_shopify_webhook_id: str = Header(default=""),
) -> JSONResponse:
    """Receive every subscribed topic at one address and dispatch on X-Shopify-Topic."""
    body = await request.body()
    if x_shopify_shop_domain:
        bind_shop_domain(x_shopify_shop_domain.strip().lower())
    logger.debug("Webhook %s delivery %s", x_shopify_topic, x_shopify_webhook_id or "-")

    status_code = await WebhookService(db).handle(
        x_shopify_topic,
        x_shopify_shop_domain,
        body,
        x_shopify_hmac_sha256,
    )
    return JSONResponse(
        status_code=status_code,
        content=WebhookAck(
            status=_STATUS_TEXT.get(status_code, "error"),
            topic=x_shopify_topic or None,
        ).model_dump(),
    )
