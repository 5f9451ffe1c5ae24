"""Background propagation of registration state to the external consumer.

Retry state lives on the RegistrationSync row (status, attempts, next_attempt_at), so a tick is
idempotent and survives restarts. Each tracker is handled in its own short transactions and the
push itself runs outside any transaction.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

import config
from affiliation.errors import SyncAttemptFailed
from affiliation.models import Registration, RegistrationStatus, RegistrationSync, SyncStatus
from affiliation.models.base import async_session_factory, utcnow
from affiliation.services.sync_publisher import RegistrationEvent, RegistrationPublisher

logger = logging.getLogger("affiliation.sync")


class SyncDispatcher:
    """Polls due sync trackers and pushes their registrations, rescheduling failures with backoff."""

    def __init__(
        self,
        publisher: RegistrationPublisher,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = config.SYNC_BATCH_SIZE,
        poll_interval: float = config.SYNC_POLL_INTERVAL_SECONDS,
        timeout: float = config.SYNC_TIMEOUT_SECONDS,
    ):
        self._publisher = publisher
        self._session_factory = session_factory or async_session_factory
        self._clock = clock
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- One tick ---

    async def due_sync_ids(self, now: datetime) -> list[int]:
        """Trackers eligible for an attempt, oldest first. Duos awaiting approval are held back."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(RegistrationSync.id)
                .join(Registration, Registration.id == RegistrationSync.registration_id)
                .where(
                    RegistrationSync.status == SyncStatus.PENDING.value,
                    or_(RegistrationSync.next_attempt_at.is_(None), RegistrationSync.next_attempt_at <= now),
                    Registration.status != RegistrationStatus.PENDING_APPROVAL.value,
                )
                .order_by(RegistrationSync.created_at, RegistrationSync.id)
                .limit(self._batch_size)
            )
            return list(result.scalars().all())

    async def run_once(self) -> int:
        """Attempt every due tracker once. Returns the number of attempts made."""
        attempted = 0
        for sync_id in await self.due_sync_ids(self._clock()):
            if await self.attempt(sync_id):
                attempted += 1
        return attempted

    async def attempt(self, sync_id: int) -> bool:
        """Push one tracker's registration and record the outcome. False if it was not due."""
        async with self._session_factory() as session:
            sync = await self._load(session, sync_id)
            if not sync or not self._is_eligible(sync, self._clock()):
                return False
            event = RegistrationEvent.from_registration(sync.registration)
            attempts_seen = sync.attempts

        error: Optional[SyncAttemptFailed] = None
        try:
            await self._push(event)
        except SyncAttemptFailed as e:
            error = e

        async with self._session_factory() as session:
            sync = await self._load(session, sync_id)
            if sync.status != SyncStatus.PENDING or sync.attempts != attempts_seen:
                logger.info("Sync %s changed during push (now %s); leaving it", sync_id, sync.status)
                return False
            now = self._clock()
            if error is None:
                sync.mark_synced(now)
                logger.info("Registration %s synced", event.registration_id)
            else:
                sync.record_failed_attempt(now)
                if sync.status == SyncStatus.FAILED:
                    logger.error(
                        "Giving up on registration %s after %d attempts: %s",
                        event.registration_id, sync.attempts, error,
                    )
                else:
                    logger.warning(
                        "Sync attempt %d for registration %s failed, retry at %s: %s",
                        sync.attempts, event.registration_id, sync.next_attempt_at.isoformat(), error,
                    )
            await session.commit()
        return True

    async def _push(self, event: RegistrationEvent) -> None:
        """Time-bounded publish. Timeouts, HTTP errors and connectivity errors are one failure signal."""
        try:
            await asyncio.wait_for(self._publisher.publish(event), timeout=self._timeout)
        except Exception as e:
            raise SyncAttemptFailed(event.registration_id, e) from e

    async def _load(self, session: AsyncSession, sync_id: int) -> Optional[RegistrationSync]:
        result = await session.execute(
            select(RegistrationSync)
            .where(RegistrationSync.id == sync_id)
            .options(selectinload(RegistrationSync.registration))
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _is_eligible(sync: RegistrationSync, now: datetime) -> bool:
        return sync.is_due(now) and sync.registration.status != RegistrationStatus.PENDING_APPROVAL

    # --- Polling loop ---

    async def run_forever(self) -> None:
        """Tick every poll_interval seconds until stop() is called."""
        while not self._stop_event.is_set():
            try:
                attempted = await self.run_once()
                if attempted:
                    logger.info("Sync tick: %d attempt(s)", attempted)
            except Exception:
                logger.exception("Sync tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        """Run the polling loop as a background task."""
        if self.is_running:
            logger.warning("Sync dispatcher is already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever())
        logger.info("Sync dispatcher started (poll every %.0fs)", self._poll_interval)

    async def stop(self) -> None:
        """Stop the polling loop, letting an in-flight tick finish."""
        if not self._task:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self._timeout + 30.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            logger.warning("Sync dispatcher did not stop in time; cancelled")
        self._task = None
        logger.info("Sync dispatcher stopped")
