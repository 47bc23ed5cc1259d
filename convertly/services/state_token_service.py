"""OAuth state token store.

Tokens live in the ``oauth_states`` table so the install and callback
requests may land on different instances. Redis is a secondary tier used
only when the durable write fails; it is consulted after the table reports
no matching row, never instead of it.
"""

import logging
import secrets
from datetime import UTC, datetime, timedelta

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from convertly.core.config import settings
from convertly.core.database import upsert_insert
from convertly.models.oauth_state import OAuthState

logger = logging.getLogger(__name__)

STATE_TOKEN_BYTES = 24  # 192 bits
REDIS_KEY_PREFIX = "shopify_oauth:"


def _redis_key(token: str) -> str:
    return f"{REDIS_KEY_PREFIX}{token}"


class StateTokenStore:
    """Issues and single-use-verifies OAuth state tokens."""

    def __init__(
        self,
        db: AsyncSession,
        redis: aioredis.Redis | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.oauth_state_ttl_seconds

    async def issue(self, shop_domain: str) -> str:
        """Create a state token bound to ``shop_domain``.

        Any token still pending for the shop is dropped in the same
        transaction, so only the latest install attempt can complete.

        Raises:
            SQLAlchemyError: If the durable write fails and no secondary
                tier is configured.
        """
        token = secrets.token_urlsafe(STATE_TOKEN_BYTES)
        expires_at = datetime.now(UTC) + timedelta(seconds=self.ttl_seconds)

        stmt = upsert_insert(self.db, OAuthState).values(
            state_token=token,
            shop_domain=shop_domain,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OAuthState.state_token],
            set_={"shop_domain": stmt.excluded.shop_domain, "expires_at": stmt.excluded.expires_at},
        )

        try:
            await self.db.execute(delete(OAuthState).where(OAuthState.shop_domain == shop_domain))
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            if self.redis is None:
                raise
            logger.warning(
                "Durable OAuth state write failed for %s; using Redis tier",
                shop_domain,
                exc_info=True,
            )
            await self.redis.set(_redis_key(token), shop_domain, ex=self.ttl_seconds)

        return token

    async def verify_and_consume(self, token: str, shop_domain: str) -> bool:
        """Consume ``token`` if it exists, is unexpired and belongs to ``shop_domain``.

        The durable DELETE ... RETURNING is atomic, so two concurrent
        callbacks carrying the same token cannot both succeed.
        """
        if not token or not shop_domain:
            return False

        now = datetime.now(UTC)
        try:
            result = await self.db.execute(
                delete(OAuthState)
                .where(
                    OAuthState.state_token == token,
                    OAuthState.shop_domain == shop_domain,
                    OAuthState.expires_at > now,
                )
                .returning(OAuthState.id)
            )
            consumed = result.first() is not None
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.warning("Durable OAuth state lookup failed; trying Redis tier", exc_info=True)
            consumed = False

        if consumed:
            return True

        if await self._consume_secondary(token, shop_domain):
            return True

        await self._log_rejection(token, shop_domain, now)
        return False

    async def sweep_expired(self) -> int:
        """Delete every token past its expiry. Returns the number removed."""
        result = await self.db.execute(
            delete(OAuthState).where(OAuthState.expires_at <= datetime.now(UTC))
        )
        await self.db.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("Swept %d expired OAuth state token(s)", removed)
        return removed

    async def _consume_secondary(self, token: str, shop_domain: str) -> bool:
        if self.redis is None:
            return False
        try:
            stored = await self.redis.getdel(_redis_key(token))
        except RedisError:
            logger.warning("Redis OAuth state lookup failed", exc_info=True)
            return False
        if stored is None:
            return False
        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")
        return bool(stored == shop_domain)

    async def _log_rejection(self, token: str, shop_domain: str, now: datetime) -> None:
        """Log why a token was rejected. The caller only ever sees a generic error."""
        reason = "unknown"
        try:
            row = (
                await self.db.execute(select(OAuthState).where(OAuthState.state_token == token))
            ).scalar_one_or_none()
        except SQLAlchemyError:
            await self.db.rollback()
            row = None
        if row is not None:
            expires_at = row.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            reason = "expired" if expires_at <= now else "shop_mismatch"
        logger.warning("Rejected OAuth state for %s: %s", shop_domain, reason)
