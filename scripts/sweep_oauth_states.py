"""Delete expired OAuth state tokens.

Installs already sweep opportunistically; run this from cron when install
traffic is too sparse to keep the table small.

Usage:
    python -m scripts.sweep_oauth_states
"""

import asyncio
import logging

from convertly.core.config import settings
from convertly.core.database import async_session_maker, engine
from convertly.core.logging_config import setup_logging
from convertly.services.state_token_service import StateTokenStore

logger = logging.getLogger(__name__)


async def sweep() -> int:
    async with async_session_maker() as db:
        removed = await StateTokenStore(db).sweep_expired()
    await engine.dispose()
    return removed


def main() -> None:
    setup_logging(debug=settings.debug)
    removed = asyncio.run(sweep())
    logger.info("OAuth state sweep finished: %d removed", removed)


if __name__ == "__main__":
    main()
