# tests/conftest.py — Shared test fixtures
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["NOTIFY_GATEWAY_URL"] = ""

from models import Base, Issue, IssueCategory, IssueStatus, User, UserRole, utcnow
from auth import AuthService
from database import get_db_session
from deps import get_geocoder
from dispatch import DeliveryResult, IN_APP
from geocoding import compose_address
from lifecycle import LifecycleCoordinator
from recurring import DEFAULT_LEDGER
from store import SqlRecordStore
from main import app


# ============================================================
# FAKES
# ============================================================

class RecordingDispatcher:
    """In-memory dispatcher. Recipients in ``fail_for`` get a failed result,
    recipients in ``raise_for`` make send() raise."""

    def __init__(self, channels=(IN_APP,), fail_for=(), raise_for=()):
        self.channels = tuple(channels)
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.sent: List[Dict[str, Any]] = []

    async def send(self, channel, recipient, template, data) -> DeliveryResult:
        if recipient.id in self.raise_for:
            raise RuntimeError("dispatcher exploded")
        self.sent.append({
            "channel": channel,
            "recipient_id": recipient.id,
            "template": template,
            "data": dict(data),
        })
        if recipient.id in self.fail_for:
            return DeliveryResult(recipient.id, channel, template, False, "relay down")
        return DeliveryResult(recipient.id, channel, template, True)

    def templates_for(self, recipient_id: str) -> List[str]:
        return [s["template"] for s in self.sent if s["recipient_id"] == recipient_id]


class RecordingAuditor:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: List[Dict[str, Any]] = []

    async def record(self, actor_id, action, details) -> Optional[str]:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.records.append({"actor_id": actor_id, "action": action, "details": dict(details)})
        return str(uuid.uuid4())

    @property
    def actions(self) -> List[str]:
        return [r["action"] for r in self.records]


class StaticGeocoder:
    def __init__(self, address: str = "Green Park Residency, Pune"):
        self.address = address
        self.calls = 0

    async def reverse_geocode(self, lat, lng) -> str:
        self.calls += 1
        return self.address

    async def readable_address(self, location) -> str:
        if location is not None and location.has_coordinates:
            return await self.reverse_geocode(location.latitude, location.longitude)
        return compose_address(location)


# ============================================================
# DATABASE / CLIENT
# ============================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_geocoder] = lambda: StaticGeocoder()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_alert_ledger():
    DEFAULT_LEDGER.clear()
    yield
    DEFAULT_LEDGER.clear()


# ============================================================
# USERS
# ============================================================

async def _make_user(db_session, name: str, email: str, role: UserRole, **extra) -> User:
    user = User(
        id=str(uuid.uuid4()),
        name=name,
        email=email,
        role=role,
        is_active=True,
        **extra,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def resident(db_session):
    return await _make_user(
        db_session, "Asha Resident", "asha@residency.test", UserRole.RESIDENT,
        block_number="A", apartment_number="A-101",
    )


@pytest_asyncio.fixture
async def other_resident(db_session):
    return await _make_user(
        db_session, "Ravi Resident", "ravi@residency.test", UserRole.RESIDENT,
        block_number="B", apartment_number="B-204",
    )


@pytest_asyncio.fixture
async def committee(db_session):
    return await _make_user(
        db_session, "Meera Committee", "meera@residency.test", UserRole.COMMITTEE,
        phone_number="+919800000001", is_mobile_verified=True,
    )


@pytest_asyncio.fixture
async def technician(db_session):
    return await _make_user(
        db_session, "Tariq Technician", "tariq@residency.test", UserRole.TECHNICIAN,
        specializations=["plumbing", "water"],
    )


@pytest_asyncio.fixture
async def other_technician(db_session):
    return await _make_user(
        db_session, "Uma Technician", "uma@residency.test", UserRole.TECHNICIAN,
        specializations=["electricity"],
    )


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# ISSUES
# ============================================================

@pytest_asyncio.fixture
async def make_issue(db_session, resident):
    """Factory inserting Issue rows directly, bypassing the coordinator."""

    async def _make(
        title: str = "Leaking pipe in corridor",
        category: IssueCategory = IssueCategory.WATER,
        status: IssueStatus = IssueStatus.NEW,
        created_at: Optional[datetime] = None,
        reported_by: Optional[str] = None,
        **extra,
    ) -> Issue:
        issue = Issue(
            id=str(uuid.uuid4()),
            title=title,
            description=extra.pop("description", ""),
            category=category,
            status=status,
            reported_by=reported_by or resident.id,
            created_at=created_at or utcnow(),
            **extra,
        )
        db_session.add(issue)
        await db_session.commit()
        await db_session.refresh(issue)
        return issue

    return _make


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def auditor():
    return RecordingAuditor()


@pytest.fixture
def coordinator(db_session, dispatcher, auditor):
    store = SqlRecordStore(db_session)
    return LifecycleCoordinator(store, store, dispatcher, auditor)


def days_ago(n: float, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=n)
