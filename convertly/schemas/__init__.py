"""Pydantic schemas for request/response validation."""

from convertly.schemas.billing import ChargeUpdate
from convertly.schemas.common import HealthResponse, WebhookAck
from convertly.schemas.shop import AdminActionResponse, PlanUpdateRequest, ShopPlanResponse

__all__ = [
    "AdminActionResponse",
    "ChargeUpdate",
    "HealthResponse",
    "PlanUpdateRequest",
    "ShopPlanResponse",
    "WebhookAck",
]
