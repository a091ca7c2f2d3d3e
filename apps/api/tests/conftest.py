import sys
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from buzz_api.api.dependencies.services import get_notification_service  # noqa: E402
from buzz_api.app import create_app  # noqa: E402
from buzz_api.db.base import Base  # noqa: E402
from buzz_api.db.session import build_engine, build_session_factory, get_session  # noqa: E402
from buzz_api.models.business import Business, BusinessStatus  # noqa: E402
from buzz_api.models.user import User, UserRoleEnum  # noqa: E402
from buzz_api.observability.ledger import get_ledger_store  # noqa: E402
from buzz_api.services.notifications import InMemorySMSBackend, NotificationService  # noqa: E402


@dataclass
class LedgerWorld:
    member_id: UUID
    owner_id: UUID
    admin_id: UUID
    business_id: UUID


async def _create_factory(url: str):
    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, build_session_factory(engine)


@pytest.fixture(autouse=True)
def reset_ledger_store():
    get_ledger_store().reset()
    yield
    get_ledger_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _create_factory("sqlite+aiosqlite:///:memory:")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so several connections can contend for the write lock."""

    engine, factory = await _create_factory(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def sms_backend() -> InMemorySMSBackend:
    return InMemorySMSBackend()


@pytest.fixture
def notification_service(sms_backend) -> NotificationService:
    return NotificationService(backend=sms_backend)


@pytest_asyncio.fixture
async def app_with_db(session_factory, notification_service):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_notification_service] = lambda: notification_service

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


async def seed_world(factory) -> LedgerWorld:
    async with factory() as session:
        member = User(email="member@example.com", name="Member", phone_number="010-1111-2222")
        owner = User(
            email="owner@example.com",
            name="Owner",
            phone_number="010-3333-4444",
            role=UserRoleEnum.BUSINESS.value,
        )
        admin = User(email="admin@example.com", name="Admin", role=UserRoleEnum.ADMIN.value)
        session.add_all([member, owner, admin])
        await session.flush()

        business = Business(
            owner_id=owner.id,
            business_name="Buzz Cafe",
            category="cafe",
            phone_number="02-555-0100",
            status=BusinessStatus.APPROVED,
            bank_name="Buzz Bank",
            bank_account="110-222-333333",
        )
        session.add(business)
        await session.commit()

        return LedgerWorld(
            member_id=member.id,
            owner_id=owner.id,
            admin_id=admin.id,
            business_id=business.id,
        )


@pytest_asyncio.fixture
async def ledger_world(session_factory) -> LedgerWorld:
    return await seed_world(session_factory)


@pytest_asyncio.fixture
async def file_ledger_world(file_session_factory) -> LedgerWorld:
    return await seed_world(file_session_factory)
