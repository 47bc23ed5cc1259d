"""Webhook reconciler: verifies Shopify deliveries and applies them to shop state.

Every handler tolerates redelivery and treats the event as applying to
whatever is currently stored. Shopify does not order deliveries across
topics, so a charge update for a shop that is already gone is a no-op.
"""

import json
import logging
from typing import Any

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from convertly.core.config import settings
from convertly.core.logging_config import mask_token
from convertly.integrations.shopify.client import ShopifyClient
from convertly.integrations.shopify.errors import ShopifyApiError
from convertly.integrations.shopify.oauth import sanitize_shop_domain
from convertly.integrations.shopify.webhooks import verify_webhook_any
from convertly.models.shop import PlanStatus
from convertly.schemas.billing import ChargeUpdate
from convertly.services.billing_service import canonical_charge_id, normalize_charge_payload
from convertly.services.shop_service import PlanSnapshot, ShopService

logger = logging.getLogger(__name__)

# Topics
APP_UNINSTALLED = "app/uninstalled"
CHARGES_CREATE = "recurring_application_charges/create"
CHARGES_UPDATE = "recurring_application_charges/update"
APP_SUBSCRIPTIONS_UPDATE = "app_subscriptions/update"
CUSTOMERS_DATA_REQUEST = "customers/data_request"
CUSTOMERS_REDACT = "customers/redact"
SHOP_REDACT = "shop/redact"

CHARGE_TOPICS = frozenset({CHARGES_CREATE, CHARGES_UPDATE, APP_SUBSCRIPTIONS_UPDATE})
CUSTOMER_TOPICS = frozenset({CUSTOMERS_DATA_REQUEST, CUSTOMERS_REDACT})

# Subscribed after every install
REQUIRED_TOPICS = [
    APP_UNINSTALLED,
    CHARGES_CREATE,
    CHARGES_UPDATE,
    APP_SUBSCRIPTIONS_UPDATE,
    CUSTOMERS_DATA_REQUEST,
    CUSTOMERS_REDACT,
    SHOP_REDACT,
]


class WebhookService:
    """Applies verified webhook deliveries to the shop repository."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.shops = ShopService(db)

    async def handle(
        self,
        topic: str,
        shop_domain: str | None,
        raw_body: bytes,
        signature: str | None,
    ) -> int:
        """Verify and dispatch one delivery.

        The signature is checked against the raw body before anything is
        parsed; a failed check changes nothing.

        Returns:
            The HTTP status code to answer Shopify with.
        """
        if not verify_webhook_any(raw_body, signature, settings.webhook_secrets):
            logger.warning(
                "Webhook HMAC verification failed: topic=%s shop=%s signature_present=%s body_bytes=%d",
                topic,
                shop_domain,
                bool(signature),
                len(raw_body),
            )
            return status.HTTP_400_BAD_REQUEST

        topic = (topic or "").strip().lower()
        if topic not in CHARGE_TOPICS | CUSTOMER_TOPICS | {APP_UNINSTALLED, SHOP_REDACT}:
            logger.info("Acknowledging unhandled webhook topic %r for %s", topic, shop_domain)
            return status.HTTP_200_OK

        try:
            payload = json.loads(raw_body) if raw_body else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Unparseable %s payload for %s", topic, shop_domain)
            return status.HTTP_400_BAD_REQUEST
        if not isinstance(payload, dict):
            logger.warning("Non-object %s payload for %s", topic, shop_domain)
            return status.HTTP_400_BAD_REQUEST

        shop = sanitize_shop_domain(shop_domain)
        if shop is None and topic in CUSTOMER_TOPICS | {SHOP_REDACT}:
            shop = sanitize_shop_domain(payload.get("shop_domain"))
        if shop is None:
            logger.warning("Webhook %s without a valid shop domain: %r", topic, shop_domain)
            return status.HTTP_400_BAD_REQUEST

        if topic == APP_UNINSTALLED:
            return await self._handle_uninstalled(shop)
        if topic in CHARGE_TOPICS:
            return await self._handle_charge(topic, shop, payload)
        if topic == SHOP_REDACT:
            return await self._handle_shop_redact(shop)
        return self._acknowledge_customer_request(topic, shop, payload)

    async def _handle_uninstalled(self, shop: str) -> int:
        changed = await self.shops.mark_uninstalled(shop)
        if changed:
            logger.info("Shop %s uninstalled (%s)", shop, settings.uninstall_mode)
        else:
            logger.info("Uninstall for %s already applied", shop)
        return status.HTTP_200_OK

    async def _handle_charge(self, topic: str, shop: str, payload: dict[str, Any]) -> int:
        update = normalize_charge_payload(payload)
        if update is None:
            logger.warning("Rejected %s for %s: no charge id in payload", topic, shop)
            return status.HTTP_400_BAD_REQUEST

        previous = await self.shops.update_plan(
            shop,
            update.plan_type,
            update.status,
            update.charge_id,
            skip_superseded=update.status is not PlanStatus.ACTIVE,
        )
        if previous is None:
            logger.info("Charge %s for %s not applied", update.charge_id, shop)
            return status.HTTP_200_OK

        logger.info(
            "Plan for %s: %s/%s -> %s/%s (charge %s)",
            shop,
            previous.plan_type.value,
            previous.plan_status.value,
            update.plan_type.value,
            update.status.value,
            update.charge_id,
        )
        await self._cancel_stale_charge(shop, previous, update)
        return status.HTTP_200_OK

    async def _cancel_stale_charge(self, shop: str, previous: PlanSnapshot, update: ChargeUpdate) -> None:
        """Cancel the charge a newly active one replaces, so the merchant is not billed twice."""
        stale_id = previous.billing_charge_id
        if (
            update.status is not PlanStatus.ACTIVE
            or not stale_id
            or canonical_charge_id(stale_id) == update.charge_id
            or not previous.plan_type.is_paid
            or not previous.access_token
        ):
            return

        client = ShopifyClient(shop, previous.access_token)
        try:
            cancelled = await client.cancel_charge(stale_id)
        except (ShopifyApiError, httpx.HTTPError) as e:
            logger.error(
                "Failed to cancel stale charge %s for %s (token %s): %s",
                stale_id,
                shop,
                mask_token(previous.access_token),
                e,
            )
            return

        if cancelled:
            logger.info("Cancelled stale charge %s for %s", stale_id, shop)
        else:
            logger.warning("Shopify did not cancel stale charge %s for %s", stale_id, shop)

    async def _handle_shop_redact(self, shop: str) -> int:
        removed = await self.shops.delete_all(shop)
        logger.info("shop/redact for %s removed %d row(s)", shop, removed)
        return status.HTTP_200_OK

    @staticmethod
    def _acknowledge_customer_request(topic: str, shop: str, payload: dict[str, Any]) -> int:
        # No customer data is stored locally; receipt is logged for audit.
        customer = payload.get("customer") or {}
        orders = payload.get("orders_requested") or payload.get("orders_to_redact") or []
        logger.info(
            "Acknowledged %s for %s: customer_id=%s orders=%d",
            topic,
            shop,
            customer.get("id") if isinstance(customer, dict) else None,
            len(orders) if isinstance(orders, list) else 0,
        )
        return status.HTTP_200_OK
