"""Embedded app endpoints authenticated by App Bridge session tokens."""

from fastapi import APIRouter

from convertly.core.deps import CurrentShop, DBSession
from convertly.schemas.shop import ShopPlanResponse
from convertly.services.shop_service import ShopService

router = APIRouter()


@router.get("/current/plan")
async def current_plan(shop: CurrentShop, db: DBSession) -> ShopPlanResponse:
    """Plan status for the shop the session token was issued to. Records daily usage."""
    service = ShopService(db)
    await service.touch_last_used(shop)
    return await service.plan_status(shop)
