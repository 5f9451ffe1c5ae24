"""Tests for the Sync Dispatcher retry schedule and the HTTP publisher."""
import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import select

from affiliation.models import RegistrationSync, SyncStatus, TournamentType
from affiliation.models.base import async_session_factory
from affiliation.services.registration import RegistrationCoordinator
from affiliation.services.sync_dispatcher import SyncDispatcher
from affiliation.services.sync_publisher import HttpRegistrationPublisher, RegistrationEvent


class FakePublisher:
    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.events: list[RegistrationEvent] = []

    async def publish(self, event: RegistrationEvent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(event)
        if self.fail:
            raise ConnectionError("consumer unreachable")


async def _sync_for(registration_id: int) -> RegistrationSync:
    async with async_session_factory() as session:
        result = await session.execute(
            select(RegistrationSync).where(RegistrationSync.registration_id == registration_id)
        )
        return result.scalar_one()


@pytest.fixture
def registered(clock, make_holder, make_dependant, make_tournament):
    """Create a confirmed individual registration at clock.now."""

    async def _make():
        holder = await make_holder()
        kid = await make_dependant(holder)
        t = await make_tournament(around=clock.now)
        return await RegistrationCoordinator(clock=clock).request_individual(t.id, kid, holder.user_id)

    return _make


@pytest.mark.asyncio
async def test_successful_push_marks_synced(clock, registered):
    reg = await registered()
    publisher = FakePublisher()
    dispatcher = SyncDispatcher(publisher, clock=clock)

    assert await dispatcher.run_once() == 1

    sync = await _sync_for(reg.id)
    assert sync.status == SyncStatus.SYNCED
    assert sync.next_attempt_at is None
    assert [e.registration_id for e in publisher.events] == [reg.id]
    assert publisher.events[0].status == "CONFIRMED"
    assert await dispatcher.run_once() == 0


@pytest.mark.asyncio
async def test_failures_back_off_then_give_up(clock, registered):
    reg = await registered()
    publisher = FakePublisher(fail=True)
    dispatcher = SyncDispatcher(publisher, clock=clock)

    for attempt, delay in enumerate((10, 20, 40), start=1):
        assert await dispatcher.run_once() == 1
        sync = await _sync_for(reg.id)
        assert sync.attempts == attempt
        assert sync.last_attempt_at == clock.now
        assert sync.next_attempt_at == clock.now + timedelta(minutes=delay)
        # Not due again before the backoff elapses
        clock.advance(minutes=delay - 1)
        assert await dispatcher.run_once() == 0
        clock.advance(minutes=1)

    sync = await _sync_for(reg.id)
    assert sync.status == SyncStatus.FAILED
    assert await dispatcher.run_once() == 0
    assert len(publisher.events) == 3


@pytest.mark.asyncio
async def test_recovers_after_a_failure(clock, registered):
    reg = await registered()
    publisher = FakePublisher(fail=True)
    dispatcher = SyncDispatcher(publisher, clock=clock)

    await dispatcher.run_once()
    publisher.fail = False
    clock.advance(minutes=10)
    await dispatcher.run_once()

    sync = await _sync_for(reg.id)
    assert sync.status == SyncStatus.SYNCED
    assert sync.attempts == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(clock, registered):
    reg = await registered()
    dispatcher = SyncDispatcher(FakePublisher(delay=1.0), clock=clock, timeout=0.01)

    assert await dispatcher.run_once() == 1

    sync = await _sync_for(reg.id)
    assert sync.status == SyncStatus.PENDING
    assert sync.attempts == 1


@pytest.mark.asyncio
async def test_pending_approval_held_back(clock, make_holder, make_dependant, make_tournament):
    f1 = await make_holder()
    f2 = await make_holder()
    d1 = await make_dependant(f1)
    d2 = await make_dependant(f2)
    t = await make_tournament(type=TournamentType.DUO, around=clock.now)
    coordinator = RegistrationCoordinator(clock=clock)
    reg = await coordinator.request_duo(t.id, d1, d2, f1.user_id)
    publisher = FakePublisher()
    dispatcher = SyncDispatcher(publisher, clock=clock)

    assert await dispatcher.run_once() == 0
    assert (await _sync_for(reg.id)).attempts == 0

    await coordinator.accept_duo(reg.id, f2.user_id)
    assert await dispatcher.run_once() == 1
    assert (await _sync_for(reg.id)).status == SyncStatus.SYNCED
    assert publisher.events[0].partner_id == d2


@pytest.mark.asyncio
async def test_rejected_duo_never_pushed(clock, make_holder, make_dependant, make_tournament):
    f1 = await make_holder()
    f2 = await make_holder()
    d1 = await make_dependant(f1)
    d2 = await make_dependant(f2)
    t = await make_tournament(type=TournamentType.DUO, around=clock.now)
    coordinator = RegistrationCoordinator(clock=clock)
    reg = await coordinator.request_duo(t.id, d1, d2, f1.user_id)
    await coordinator.reject_duo(reg.id, f2.user_id)
    publisher = FakePublisher()

    assert await SyncDispatcher(publisher, clock=clock).run_once() == 0
    assert publisher.events == []


@pytest.mark.asyncio
async def test_start_and_stop(clock, registered):
    reg = await registered()
    publisher = FakePublisher()
    dispatcher = SyncDispatcher(publisher, clock=clock, poll_interval=0.01)

    await dispatcher.start()
    assert dispatcher.is_running
    for _ in range(100):
        if publisher.events:
            break
        await asyncio.sleep(0.01)
    await dispatcher.stop()

    assert not dispatcher.is_running
    assert (await _sync_for(reg.id)).status == SyncStatus.SYNCED


@pytest.mark.asyncio
async def test_http_publisher_posts_json_with_bearer():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    publisher = HttpRegistrationPublisher(
        "http://consumer.test/registrations", secret="s3cret", transport=httpx.MockTransport(handler)
    )
    await publisher.publish(
        RegistrationEvent(registration_id=7, tournament_id=3, competitor_id=11, partner_id=None, status="CONFIRMED")
    )

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].headers["Authorization"] == "Bearer s3cret"
    assert json.loads(seen[0].content) == {
        "registration_id": 7,
        "tournament_id": 3,
        "competitor_id": 11,
        "partner_id": None,
        "status": "CONFIRMED",
    }


@pytest.mark.asyncio
async def test_http_error_status_is_a_failed_attempt(clock, registered):
    reg = await registered()
    publisher = HttpRegistrationPublisher(
        "http://consumer.test/registrations",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    dispatcher = SyncDispatcher(publisher, clock=clock)

    assert await dispatcher.run_once() == 1

    sync = await _sync_for(reg.id)
    assert sync.status == SyncStatus.PENDING
    assert sync.attempts == 1
    assert sync.next_attempt_at == clock.now + timedelta(minutes=10)
