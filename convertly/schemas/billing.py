"""Canonical form of a Shopify billing webhook payload."""

from pydantic import Field

from convertly.models.shop import PlanStatus, PlanType
from convertly.schemas.common import BaseSchema


class ChargeUpdate(BaseSchema):
    """A charge or subscription update, independent of the payload shape it arrived in."""

    charge_id: str = Field(..., min_length=1)
    status: PlanStatus
    plan_type: PlanType
    name: str | None = None
    price: float | None = None
    interval: str | None = None
