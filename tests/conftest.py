"""
Pytest Configuration and Fixtures

Every test gets a fresh in-memory SQLite database, services wired against
it, a fixed clock and a recording email service.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio

# Add services/core to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'core'))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from sqlalchemy.pool import StaticPool  # noqa: E402

import models  # noqa: E402,F401
from database import Base, build_engine, build_session_factory  # noqa: E402
from infrastructure.uow import create_uow_provider  # noqa: E402
from milestone_service import MilestoneService  # noqa: E402
from note_service import NoteService  # noqa: E402
from notification_service import NotificationEmitter  # noqa: E402
from overdue_sweeper import OverdueSweeper  # noqa: E402
from promise_lifecycle_service import PromiseLifecycleService  # noqa: E402
from user_service import UserService  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock the tests move by hand"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEmailService:
    """Stands in for EmailService; keeps every invitation it was asked to send"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_invitation(self, to_email, from_name, title, description=None, promise_id=None, role="promisee"):
        self.sent.append({
            "to_email": to_email,
            "from_name": from_name,
            "title": title,
            "description": description,
            "promise_id": promise_id,
            "role": role,
        })
        if self.fail:
            raise RuntimeError("SendGrid unavailable")
        return True


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return create_uow_provider(build_session_factory(engine))


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def email_service():
    return RecordingEmailService()


@pytest.fixture
def services(uow_factory, email_service, clock):
    users = UserService(uow_factory)
    notifications = NotificationEmitter(uow_factory)
    lifecycle = PromiseLifecycleService(uow_factory, users, notifications, email_service, clock=clock)
    return SimpleNamespace(
        users=users,
        notifications=notifications,
        lifecycle=lifecycle,
        milestones=MilestoneService(uow_factory, users, notifications, clock=clock),
        notes=NoteService(uow_factory, users, notifications, clock=clock),
        sweeper=OverdueSweeper(uow_factory, lifecycle, notifications, clock=clock),
    )


@pytest_asyncio.fixture
async def people(services):
    """Owner, promisee, mentor and an unrelated user"""
    return SimpleNamespace(
        owner=await services.users.register("owner@example.com", "Olivia"),
        promisee=await services.users.register("promisee@example.com", "Pat"),
        mentor=await services.users.register("mentor@example.com", "Morgan"),
        outsider=await services.users.register("outsider@example.com", "Oscar"),
    )


@pytest_asyncio.fixture
async def full_promise(services, people):
    """Promise with owner, promisee and mentor all resolved"""
    return await services.lifecycle.create_promise(people.owner.id, {
        "title": "Run a marathon",
        "description": "Sub 4 hours",
        "promisee_id": str(people.promisee.id),
        "mentor_id": str(people.mentor.id),
        "deadline": (NOW + timedelta(days=30)).isoformat(),
    })


@pytest.fixture
def notifications_of(uow_factory):
    """Stored notifications of a user, optionally of one type"""
    async def fetch(user_id, type_=None):
        async with uow_factory() as uow:
            found = await uow.notifications.list_for_user(user_id)
        if type_ is not None:
            found = [n for n in found if n.type == type_]
        return found
    return fetch
