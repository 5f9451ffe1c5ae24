"""Pytest configuration and fixtures for API and service tests."""
import itertools
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INITIAL_ADMIN_PASSWORD"] = "testpass123"
os.environ["INITIAL_ADMIN_USERNAME"] = "admin"
os.environ["SYNC_TARGET_URL"] = ""

import pytest
from httpx import ASGITransport, AsyncClient

from affiliation.models import Dependant, Family, Tournament, TournamentType, User
from affiliation.models.base import async_session_factory, engine, init_db, utcnow
from web.api.main import app
from web.auth import create_access_token, hash_password

T0 = datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh in-memory database per test (ASGI lifespan doesn't run with httpx)."""
    await init_db()
    yield
    await engine.dispose()


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def auth_headers(client):
    """Login as admin and return Authorization headers for protected endpoints."""
    r = await client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "testpass123"},
    )
    assert r.status_code == 200, f"Login failed: {r.text}"
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


class FakeClock:
    """Injectable clock; tests move time explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(T0)


@dataclass
class Holder:
    user_id: int
    family_id: int
    username: str
    headers: dict


@pytest.fixture
def make_holder():
    """Create a user holding a family; returns ids and bearer headers."""
    counter = itertools.count(1)

    async def _make(username: str | None = None) -> Holder:
        username = username or f"holder{next(counter)}"
        async with async_session_factory() as session:
            user = User(username=username, password_hash=hash_password("password123"), role="user")
            session.add(user)
            await session.flush()
            family = Family(holder_id=user.id)
            session.add(family)
            await session.commit()
            token = create_access_token(user.id, username, "user")
            return Holder(user.id, family.id, username, {"Authorization": f"Bearer {token}"})

    return _make


@pytest.fixture
def make_dependant():
    async def _make(holder: Holder, first_name: str = "Ana", last_name: str = "Silva") -> int:
        async with async_session_factory() as session:
            dependant = Dependant(family_id=holder.family_id, first_name=first_name, last_name=last_name)
            session.add(dependant)
            await session.commit()
            return dependant.id

    return _make


@pytest.fixture
def make_tournament():
    """Tournament whose window is open around `around` (defaults to real now)."""

    async def _make(
        type: TournamentType = TournamentType.INDIVIDUAL,
        around: datetime | None = None,
        opens: datetime | None = None,
        closes: datetime | None = None,
        name: str = "Spring Open",
    ) -> Tournament:
        around = around or utcnow()
        opens = opens or around - timedelta(days=1)
        closes = closes or around + timedelta(days=1)
        async with async_session_factory() as session:
            t = Tournament(
                name=name,
                description="Club tournament for all ages",
                type=type.value,
                registration_start_date=opens,
                registration_end_date=closes,
                start_date=closes + timedelta(days=7),
                version=1,
            )
            session.add(t)
            await session.commit()
            return t

    return _make
