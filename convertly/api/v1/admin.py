"""Operator endpoints for overriding a shop's plan (admin bearer token)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from convertly.core.deps import DBSession, require_admin_token
from convertly.integrations.shopify.oauth import sanitize_shop_domain
from convertly.models.shop import PlanStatus, PlanType, Shop
from convertly.schemas.shop import AdminActionResponse, PlanUpdateRequest, ShopPlanResponse
from convertly.services.shop_service import ShopService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_token)])


async def _require_shop(service: ShopService, shop: str) -> Shop:
    shop_domain = sanitize_shop_domain(shop)
    if shop_domain is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid shop domain")
    record = await service.find_by_domain(shop_domain)
    if record is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Shop not found")
    return record


@router.get("/shops/{shop}")
async def get_shop(shop: str, db: DBSession) -> ShopPlanResponse:
    """Current plan status for a shop."""
    service = ShopService(db)
    record = await _require_shop(service, shop)
    return await service.plan_status(record.shop_domain)


@router.post("/shops/{shop}/grant-free")
async def grant_free(shop: str, db: DBSession) -> AdminActionResponse:
    """Give a shop free access regardless of billing."""
    service = ShopService(db)
    record = await _require_shop(service, shop)
    await service.set_admin_granted_free(record.shop_domain, True)
    logger.info("Admin granted free access to %s", record.shop_domain)
    return AdminActionResponse(
        status="ok",
        message=f"Free access granted to {record.shop_domain}",
        plan=await service.plan_status(record.shop_domain),
    )


@router.post("/shops/{shop}/revoke-free")
async def revoke_free(shop: str, db: DBSession) -> AdminActionResponse:
    """Remove an operator free-access grant. Billing state is left as is."""
    service = ShopService(db)
    record = await _require_shop(service, shop)
    await service.set_admin_granted_free(record.shop_domain, False)
    logger.info("Admin revoked free access for %s", record.shop_domain)
    return AdminActionResponse(
        status="ok",
        message=f"Free access revoked for {record.shop_domain}",
        plan=await service.plan_status(record.shop_domain),
    )


@router.patch("/shops/{shop}/plan")
async def update_plan(shop: str, body: PlanUpdateRequest, db: DBSession) -> AdminActionResponse:
    """Set plan type and status by hand."""
    service = ShopService(db)
    record = await _require_shop(service, shop)
    previous = await service.update_plan(
        record.shop_domain,
        PlanType(body.plan_type),
        PlanStatus(body.plan_status),
        body.billing_charge_id,
    )
    if previous is None:
        raise HTTPException(status.HTTP_409_CONFLICT, "Shop is uninstalled")
    logger.info(
        "Admin set plan for %s: %s/%s -> %s/%s",
        record.shop_domain,
        previous.plan_type.value,
        previous.plan_status.value,
        body.plan_type,
        body.plan_status,
    )
    return AdminActionResponse(
        status="ok",
        message=f"Plan updated for {record.shop_domain}",
        plan=await service.plan_status(record.shop_domain),
    )
