"""Shop model: one row per installed Shopify store."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from convertly.models.base import Base


class PlanType(str, enum.Enum):
    """Subscription tier."""

    FREE = "free"
    MONTHLY = "monthly"
    ANNUAL = "annual"

    @property
    def is_paid(self) -> bool:
        return self is not PlanType.FREE


class PlanStatus(str, enum.Enum):
    """Subscription state as last reported by Shopify billing."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PENDING = "pending"


class Shop(Base):
    """An installed shop and its billing state.

    Keyed by the normalized ``*.myshopify.com`` domain. The access token is
    stored Fernet-encrypted; see ``convertly.core.encryption``.
    """

    __tablename__ = "shops"

    shop_domain: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    # Credentials (encrypted); NULL once the app is uninstalled
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    scopes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Billing
    plan_type: Mapped[PlanType] = mapped_column(
        Enum(PlanType, name="plan_type", values_callable=lambda x: [e.value for e in x]),
        default=PlanType.FREE,
        nullable=False,
    )
    plan_status: Mapped[PlanStatus] = mapped_column(
        Enum(PlanStatus, name="plan_status", values_callable=lambda x: [e.value for e in x]),
        default=PlanStatus.ACTIVE,
        nullable=False,
    )
    billing_charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    admin_granted_free: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Install lifecycle
    install_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    first_installed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_reinstalled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    uninstalled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_installed(self) -> bool:
        return self.uninstalled_at is None and bool(self.access_token)

    def __repr__(self) -> str:
        return f"<Shop {self.shop_domain} ({self.plan_type.value}/{self.plan_status.value})>"
