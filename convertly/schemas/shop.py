"""Pydantic schemas for shop plan status and operator overrides."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from convertly.schemas.common import BaseSchema


class ShopPlanResponse(BaseSchema):
    """A shop's plan as seen by the embedded app and by operators."""

    shop_domain: str
    installed: bool = True
    plan_type: str = "free"
    plan_status: str = "active"
    billing_charge_id: str | None = None
    admin_granted_free: bool = False
    can_use_app: bool = True
    first_installed_at: datetime | None = None
    last_reinstalled_at: datetime | None = None
    last_used_at: datetime | None = None


class PlanUpdateRequest(BaseSchema):
    """Operator request to set a shop's plan directly."""

    plan_type: Literal["free", "monthly", "annual"]
    plan_status: Literal["active", "cancelled", "expired"] = Field(
        default="active",
        description="Pending is reserved for Shopify billing and cannot be set by hand",
    )
    billing_charge_id: str | None = Field(default=None, max_length=255)


class AdminActionResponse(BaseSchema):
    """Result of an operator action."""

    status: str
    message: str
    plan: ShopPlanResponse
