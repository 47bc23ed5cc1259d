"""Shop repository: install upserts, plan updates, uninstall and erasure."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, time
from typing import Literal

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from convertly.core.config import settings
from convertly.core.database import upsert_insert
from convertly.core.encryption import decrypt_token_or_none, encrypt_token
from convertly.models.oauth_state import OAuthState
from convertly.models.shop import PlanStatus, PlanType, Shop
from convertly.schemas.shop import ShopPlanResponse
from convertly.services.billing_service import canonical_charge_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanSnapshot:
    """A shop's billing fields as they were before an update."""

    plan_type: PlanType
    plan_status: PlanStatus
    billing_charge_id: str | None
    access_token: str | None


def plan_allows_access(shop: Shop) -> bool:
    """Free and operator-granted plans always work; paid plans must be active."""
    if shop.admin_granted_free or shop.plan_type is PlanType.FREE:
        return True
    return shop.plan_status is PlanStatus.ACTIVE


class ShopService:
    """Durable storage of shop records, keyed by normalized shop domain."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_domain(self, shop_domain: str) -> Shop | None:
        result = await self.db.execute(select(Shop).where(Shop.shop_domain == shop_domain))
        return result.scalar_one_or_none()

    async def upsert_on_install(self, shop_domain: str, access_token: str, scopes: str = "") -> bool:
        """Create or refresh the shop row after a successful token exchange.

        A single INSERT ... ON CONFLICT DO UPDATE, so concurrent callbacks
        for the same shop cannot lose an update. On conflict the token is
        rotated, ``last_reinstalled_at`` bumped and ``first_installed_at``
        left untouched. A previously soft-expired shop comes back active on
        the free plan.

        Returns:
            True if the shop already existed (a reinstall).
        """
        now = datetime.now(UTC)
        table = Shop.__table__
        stmt = upsert_insert(self.db, Shop).values(
            shop_domain=shop_domain,
            access_token=encrypt_token(access_token),
            scopes=scopes,
            plan_type=PlanType.FREE,
            plan_status=PlanStatus.ACTIVE,
            admin_granted_free=False,
            install_count=1,
            first_installed_at=now,
            last_reinstalled_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Shop.shop_domain],
            set_={
                "access_token": stmt.excluded.access_token,
                "scopes": stmt.excluded.scopes,
                "last_reinstalled_at": now,
                "install_count": table.c.install_count + 1,
                "plan_status": case(
                    (table.c.uninstalled_at.is_(None), table.c.plan_status),
                    else_=PlanStatus.ACTIVE.value,
                ),
                "uninstalled_at": None,
                "updated_at": now,
            },
        ).returning(Shop.install_count)

        install_count = (await self.db.execute(stmt)).scalar_one()
        await self.db.commit()

        is_reinstall = install_count > 1
        logger.info(
            "%s %s (install #%d)",
            "Reinstalled" if is_reinstall else "Installed",
            shop_domain,
            install_count,
        )
        return is_reinstall

    async def update_plan(
        self,
        shop_domain: str,
        plan_type: PlanType,
        plan_status: PlanStatus,
        charge_id: str | None = None,
        *,
        skip_superseded: bool = False,
    ) -> PlanSnapshot | None:
        """Set a shop's plan fields inside one locked read-modify-write.

        ``charge_id`` of None leaves the stored charge id unchanged. Ids are
        stored and compared in canonical numeric form.
        Uninstalled or unknown shops are left alone. With
        ``skip_superseded`` an update naming a charge other than the one
        on record is ignored.

        Returns:
            The plan as it was before the update, or None if nothing changed.
        """
        result = await self.db.execute(
            select(Shop)
            .where(Shop.shop_domain == shop_domain, Shop.uninstalled_at.is_(None))
            .with_for_update()
        )
        shop = result.scalar_one_or_none()
        if shop is None:
            await self.db.rollback()
            return None

        charge_id = canonical_charge_id(charge_id)
        current_id = canonical_charge_id(shop.billing_charge_id)
        if (
            skip_superseded
            and charge_id is not None
            and current_id is not None
            and current_id != charge_id
        ):
            logger.info(
                "Ignoring update for superseded charge %s on %s (current %s)",
                charge_id,
                shop_domain,
                shop.billing_charge_id,
            )
            await self.db.rollback()
            return None

        previous = PlanSnapshot(
            plan_type=shop.plan_type,
            plan_status=shop.plan_status,
            billing_charge_id=shop.billing_charge_id,
            access_token=decrypt_token_or_none(shop.access_token),
        )

        shop.plan_type = plan_type
        shop.plan_status = plan_status
        if charge_id is not None:
            shop.billing_charge_id = charge_id
        await self.db.commit()
        return previous

    async def set_admin_granted_free(self, shop_domain: str, granted: bool) -> bool:
        """Grant or revoke operator free access. Granting also resets the plan to free/active."""
        values: dict[str, object] = {"admin_granted_free": granted}
        if granted:
            values.update(plan_type=PlanType.FREE, plan_status=PlanStatus.ACTIVE)
        result = await self.db.execute(
            update(Shop).where(Shop.shop_domain == shop_domain).values(**values)
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def touch_last_used(self, shop_domain: str) -> None:
        """Record usage, at most one write per shop per UTC day."""
        now = datetime.now(UTC)
        start_of_day = datetime.combine(now.date(), time.min, tzinfo=UTC)
        await self.db.execute(
            update(Shop)
            .where(
                Shop.shop_domain == shop_domain,
                or_(Shop.last_used_at.is_(None), Shop.last_used_at < start_of_day),
            )
            .values(last_used_at=now)
        )
        await self.db.commit()

    async def mark_uninstalled(
        self,
        shop_domain: str,
        mode: Literal["delete", "expire"] | None = None,
    ) -> bool:
        """Drop the shop's credentials after app/uninstalled.

        ``delete`` removes the row; ``expire`` clears token and plan fields
        and stamps ``uninstalled_at``. Either way a repeat call is a no-op.

        Returns:
            True if a row was changed.
        """
        mode = mode or settings.uninstall_mode
        if mode == "delete":
            result = await self.db.execute(delete(Shop).where(Shop.shop_domain == shop_domain))
        else:
            result = await self.db.execute(
                update(Shop)
                .where(Shop.shop_domain == shop_domain, Shop.uninstalled_at.is_(None))
                .values(
                    access_token=None,
                    plan_type=PlanType.FREE,
                    plan_status=PlanStatus.EXPIRED,
                    billing_charge_id=None,
                    uninstalled_at=datetime.now(UTC),
                )
            )
        await self.db.commit()
        return bool(result.rowcount)

    async def delete_all(self, shop_domain: str) -> int:
        """Erase everything stored for a shop (shop/redact). Returns rows removed."""
        removed = 0
        for model in (OAuthState, Shop):
            result = await self.db.execute(delete(model).where(model.shop_domain == shop_domain))
            removed += result.rowcount or 0
        await self.db.commit()
        return removed

    async def plan_status(self, shop_domain: str) -> ShopPlanResponse:
        """Plan summary for a shop; unknown shops get the free/active defaults."""
        shop = await self.find_by_domain(shop_domain)
        if shop is None:
            return ShopPlanResponse(shop_domain=shop_domain, installed=False)

        return ShopPlanResponse(
            shop_domain=shop.shop_domain,
            installed=shop.is_installed,
            plan_type=shop.plan_type.value,
            plan_status=shop.plan_status.value,
            billing_charge_id=shop.billing_charge_id,
            admin_granted_free=shop.admin_granted_free,
            can_use_app=plan_allows_access(shop),
            first_installed_at=shop.first_installed_at,
            last_reinstalled_at=shop.last_reinstalled_at,
            last_used_at=shop.last_used_at,
        )

    @staticmethod
    def access_token_for(shop: Shop) -> str | None:
        """Decrypted access token, or None if absent or unreadable."""
        return decrypt_token_or_none(shop.access_token)
