"""Shopify Admin API client using httpx."""

import logging
from typing import Any

import httpx

from convertly.core.config import settings
from convertly.integrations.shopify.errors import ShopifyApiError, ShopifyUnauthorizedError
from convertly.integrations.shopify.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

APP_SUBSCRIPTION_GID_PREFIX = "gid://shopify/AppSubscription/"

_CANCEL_SUBSCRIPTION_MUTATION = """
mutation appSubscriptionCancel($id: ID!) {
  appSubscriptionCancel(id: $id) {
    appSubscription { id status }
    userErrors { field message }
  }
}
"""


class ShopifyClient:
    """Async client for the Shopify Admin API.

    A 401 raises ShopifyUnauthorizedError, which the client's RetryPolicy
    may retry; every other status is returned to the caller.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        retry_policy: RetryPolicy = NO_RETRY,
    ) -> None:
        self.shop_domain = shop_domain
        self.base_url = f"https://{shop_domain}/admin/api/{settings.shopify_api_version}"
        self.headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.retry_policy = retry_policy

    async def _send(self, method: str, path: str, payload: dict[str, Any] | None) -> httpx.Response:
        async with httpx.AsyncClient(
            headers=self.headers,
            timeout=settings.shopify_http_timeout_seconds,
        ) as client:
            response = await client.request(method, f"{self.base_url}{path}", json=payload)
        if response.status_code == 401:
            logger.warning("401 from Shopify on %s %s for %s", method, path, self.shop_domain)
            raise ShopifyUnauthorizedError()
        return response

    async def request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request under this client's retry policy."""
        return await self.retry_policy.run(lambda: self._send(method, path, payload))

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute a GraphQL Admin API query and return its ``data`` object."""
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        response = await self.request("POST", "/graphql.json", body)
        if not response.is_success:
            raise ShopifyApiError(response.status_code, "GraphQL request failed")
        result = response.json()
        if result.get("errors"):
            raise ShopifyApiError(response.status_code, f"GraphQL errors: {result['errors']}")
        data: dict[str, Any] = result.get("data") or {}
        return data

    async def list_webhooks(self) -> list[dict[str, Any]]:
        """List webhook subscriptions this app already has on the shop."""
        response = await self.request("GET", "/webhooks.json")
        if not response.is_success:
            raise ShopifyApiError(response.status_code, "Failed to list webhooks")
        webhooks: list[dict[str, Any]] = response.json().get("webhooks", [])
        return webhooks

    async def register_webhooks(self, topics: list[str], address: str) -> list[str]:
        """Register webhook subscriptions for topics not already registered.

        Individual registration failures are logged and skipped.

        Returns:
            The topics newly registered by this call.
        """
        existing = {webhook.get("topic") for webhook in await self.list_webhooks()}
        registered: list[str] = []

        for topic in topics:
            if topic in existing:
                continue
            response = await self.request(
                "POST",
                "/webhooks.json",
                {
                    "webhook": {
                        "topic": topic,
                        "address": address,
                        "format": "json",
                    }
                },
            )
            if response.is_success:
                registered.append(topic)
            else:
                logger.warning(
                    "Failed to register webhook %s for %s: %s",
                    topic,
                    self.shop_domain,
                    response.status_code,
                )
        return registered

    async def cancel_charge(self, charge_id: str) -> bool:
        """Cancel a recurring charge or app subscription.

        GraphQL subscription ids (``gid://shopify/AppSubscription/...``) go
        through ``appSubscriptionCancel``; numeric ids use the REST endpoint.
        """
        if charge_id.startswith(APP_SUBSCRIPTION_GID_PREFIX):
            data = await self.graphql(_CANCEL_SUBSCRIPTION_MUTATION, {"id": charge_id})
            errors = (data.get("appSubscriptionCancel") or {}).get("userErrors") or []
            if errors:
                logger.warning("Cancel of %s on %s returned errors: %s", charge_id, self.shop_domain, errors)
            return not errors

        response = await self.request("DELETE", f"/recurring_application_charges/{charge_id}.json")
        return response.is_success
