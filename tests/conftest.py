"""Pytest configuration and fixtures"""

import os

# Settings are read at import time
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-with-enough-length")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from datetime import timedelta
from typing import AsyncGenerator
from uuid import UUID, uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kanway.config import settings
from kanway.db.database import Base, get_db
from kanway.db.models import Profile, ProfileRole
from kanway.main import app
from kanway.schemas.profiles import HeroProfileCreate
from kanway.schemas.requests import BudgetRange, Location, RequestCreate
from kanway.services.notifications import NullNotificationEmitter, get_notifier
from kanway.services.profiles import ProfileService, directory_cache
from kanway.services.requests import RequestService
from kanway.utils.time import utcnow

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingNotifier:
    """Collects emitted events instead of sending them"""

    def __init__(self):
        self.status_changes = []
        self.acceptances = []

    async def request_status_changed(self, request, old_status, new_status, previous_provider_id=None):
        self.status_changes.append((request.id, old_status, new_status, previous_provider_id))

    async def acceptance_created(self, request, provider_id):
        self.acceptances.append((request.id, provider_id))


@pytest_asyncio.fixture
async def test_db() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    TestSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSessionLocal() as session:
        yield session

    await engine.dispose()


@pytest.fixture(autouse=True)
def clear_directory_cache():
    directory_cache.clear()
    yield
    directory_cache.clear()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with overridden database dependency"""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def make_token(profile_id: UUID, expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = {"sub": str(profile_id), "exp": utcnow() + expires_in}
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def auth_headers(profile_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(profile_id)}"}


def request_payload(**overrides) -> RequestCreate:
    data = {
        "title": "Fix leaking kitchen tap",
        "description": "The kitchen tap drips constantly and needs a new washer.",
        "category": "repairs",
        "location": Location(address="12 Independence Ave", city="Windhoek", latitude=-22.57, longitude=17.08),
        "scheduled_date": utcnow() + timedelta(days=2),
        "estimated_duration": 2,
        "budget": BudgetRange(min_cents=5000, max_cents=10000, currency="NAD"),
    }
    data.update(overrides)
    return RequestCreate(**data)


@pytest.fixture
def make_civilian(test_db: AsyncSession):
    async def factory(full_name: str = "Test Civilian") -> UUID:
        profile = Profile(id=uuid4(), role=ProfileRole.CIVILIAN, full_name=full_name)
        test_db.add(profile)
        await test_db.commit()
        return profile.id

    return factory


@pytest.fixture
def make_hero(test_db: AsyncSession):
    """Hero profile + provider record + wallet; returns (public id, internal id)"""

    async def factory(
        full_name: str = "Test Hero",
        skills: list[str] | None = None,
        hourly_rate_cents: int = 2500,
    ) -> tuple[UUID, UUID]:
        profile = Profile(id=uuid4(), role=ProfileRole.HERO, full_name=full_name)
        test_db.add(profile)
        await test_db.commit()
        profile_id = profile.id

        hero = await ProfileService(test_db).create_hero_profile(
            profile_id,
            HeroProfileCreate(skills=skills or ["plumbing"], hourly_rate_cents=hourly_rate_cents),
        )
        return profile_id, hero.id

    return factory


@pytest.fixture
def make_request(test_db: AsyncSession):
    async def factory(requester_id: UUID, **overrides) -> UUID:
        request = await RequestService(test_db, notifier=NullNotificationEmitter()).create_request(
            requester_id, request_payload(**overrides)
        )
        return request.id

    return factory
