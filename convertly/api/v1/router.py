"""API v1 router combining all route modules."""

from fastapi import APIRouter

from convertly.api.v1 import admin, health, shops
from convertly.api.v1.webhooks import shopify as shopify_webhooks

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Shopify webhooks (no auth - verified via HMAC)
api_router.include_router(
    shopify_webhooks.router,
    prefix="/webhooks/shopify",
    tags=["webhooks"],
)

# Embedded app (session-token auth)
api_router.include_router(
    shops.router,
    prefix="/shops",
    tags=["shops"],
)

# Operator plan overrides (admin token)
api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["admin"],
)
