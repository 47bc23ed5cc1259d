"""OAuth state tokens issued at install time."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from convertly.models.base import Base


class OAuthState(Base):
    """A pending install: single-use state token bound to a shop domain.

    Rows are deleted when the callback consumes them or when the expiry
    sweep runs.
    """

    __tablename__ = "oauth_states"

    state_token: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        index=True,
    )
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<OAuthState {self.shop_domain} expires={self.expires_at.isoformat()}>"
