"""Bounded retry policy for Shopify calls made with freshly issued tokens."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from convertly.core.config import settings
from convertly.integrations.shopify.errors import ShopifyUnauthorizedError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry a 401 and how long to wait between attempts."""

    max_attempts: int = 1
    delay_seconds: float = 0.0

    @classmethod
    def fresh_token(cls) -> "RetryPolicy":
        """Policy for the first calls after a token exchange."""
        return cls(
            max_attempts=settings.fresh_token_retry_attempts,
            delay_seconds=settings.fresh_token_retry_delay_seconds,
        )

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn``, retrying only on ShopifyUnauthorizedError.

        The last error is re-raised once attempts are exhausted.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(ShopifyUnauthorizedError),
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy()
