"""Standalone sync worker: runs the registration sync dispatcher outside the API process.

Run from project root: python -m affiliation.worker
"""
import asyncio
import logging

import config
from affiliation.models import init_db
from affiliation.services.sync_dispatcher import SyncDispatcher
from affiliation.services.sync_publisher import HttpRegistrationPublisher

logger = logging.getLogger("affiliation.worker")


def build_dispatcher() -> SyncDispatcher:
    """Dispatcher wired to the configured HTTP target."""
    publisher = HttpRegistrationPublisher(
        config.SYNC_TARGET_URL,
        secret=config.SYNC_TARGET_SECRET,
        timeout=config.SYNC_TIMEOUT_SECONDS,
    )
    return SyncDispatcher(publisher)


async def _run() -> None:
    await init_db()
    dispatcher = build_dispatcher()
    logger.info("Sync worker pushing to %s", config.SYNC_TARGET_URL)
    await dispatcher.run_forever()


def main() -> None:
    """Run the worker."""
    logging.basicConfig(level=config.LOG_LEVEL)
    if not config.SYNC_TARGET_URL:
        raise ValueError("SYNC_TARGET_URL is required")
    asyncio.run(_run())


if __name__ == "__main__":
    main()
