"""SQLAlchemy models."""

from convertly.models.base import Base
from convertly.models.oauth_state import OAuthState
from convertly.models.shop import PlanStatus, PlanType, Shop

__all__ = [
    # Base
    "Base",
    # Shops & billing
    "Shop",
    "PlanType",
    "PlanStatus",
    # OAuth
    "OAuthState",
]
