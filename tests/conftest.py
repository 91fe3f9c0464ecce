"""
Pytest configuration and fixtures for SendLedger tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- In-memory ledger store with a real uniqueness constraint
- Factory fixtures for creating test data
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sendledger.config import Settings, get_settings
from sendledger.core.database import get_db
from sendledger.core.datetime_utils import utc_now
from sendledger.main import app
from sendledger.models import Base
from sendledger.models.email_send_ledger import EmailSendLedgerEntry
from sendledger.models.user import Session, User, UserRole
from sendledger.services.action_tokens import issue_action_token
from sendledger.services.email_ledger import (
    EmailSendPurpose,
    LedgerConflictError,
    get_ledger_store,
)
from sendledger.services.email_throttle import InMemoryThrottleStore, get_throttle_store

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

INTERNAL_KEY = "test-internal-key"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    resend_api_key: str = "test-key"
    secret_key: str = "test-secret-key"
    base_url: str = "http://localhost:8000"
    internal_email_api_key: str = INTERNAL_KEY
    scheduler_enabled: bool = False


class FakeLedgerStore:
    """In-memory ledger store that enforces idempotency_key uniqueness.

    Yields to the event loop before each insert so concurrent claims
    genuinely interleave.
    """

    def __init__(self) -> None:
        self.rows: dict[str, EmailSendLedgerEntry] = {}
        self.insert_error: Exception | None = None
        self.lookup_error: Exception | None = None
        self.insert_calls = 0

    async def insert_claim(
        self,
        *,
        purpose: str,
        recipient_email: str,
        user_id: uuid.UUID | None,
        idempotency_key: str,
        cooldown_bucket: datetime,
        status: str,
    ) -> uuid.UUID:
        self.insert_calls += 1
        await asyncio.sleep(0)
        if self.insert_error:
            raise self.insert_error
        if idempotency_key in self.rows:
            raise LedgerConflictError(idempotency_key)

        entry = EmailSendLedgerEntry(
            id=uuid.uuid4(),
            purpose=purpose,
            recipient_email=recipient_email,
            user_id=user_id,
            idempotency_key=idempotency_key,
            cooldown_bucket=cooldown_bucket,
            status=status,
            created_at=utc_now(),
        )
        self.rows[idempotency_key] = entry
        return entry.id

    async def find_by_idempotency_key(self, idempotency_key: str) -> EmailSendLedgerEntry | None:
        if self.lookup_error:
            raise self.lookup_error
        return self.rows.get(idempotency_key)

    async def record_outcome(
        self,
        ledger_id: uuid.UUID,
        *,
        status: str,
        provider_message_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        for entry in self.rows.values():
            if entry.id == ledger_id:
                entry.status = status
                if provider_message_id is not None:
                    entry.provider_message_id = provider_message_id
                if meta is not None:
                    entry.meta = meta
                return


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def ledger_store() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def throttle_store() -> InMemoryThrottleStore:
    return InMemoryThrottleStore()


@pytest.fixture
def test_settings() -> TestSettings:
    return TestSettings()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    ledger_store: FakeLedgerStore,
    throttle_store: InMemoryThrottleStore,
    test_settings: TestSettings,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database, ledger and throttle overrides."""
    from sendledger.core.rate_limit import limiter

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_ledger_store] = lambda: ledger_store
    app.dependency_overrides[get_throttle_store] = lambda: throttle_store

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating test users."""

    async def _create_user(
        email: str = None,
        first_name: str | None = "Test",
        role: UserRole = UserRole.TALENT,
        verified: bool = False,
    ) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        user = User(
            email=email,
            first_name=first_name,
            role=role,
            email_verified_at=utc_now() if verified else None,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _create_user


@pytest_asyncio.fixture
async def session_factory(db_session: AsyncSession, user_factory):
    """Factory for creating test sessions."""

    async def _create_session(user: User = None, expired: bool = False) -> Session:
        if user is None:
            user = await user_factory()

        session = Session(
            user_id=user.id,
            expires_at=utc_now() + timedelta(days=-1 if expired else 30),
        )
        db_session.add(session)
        await db_session.flush()
        return session

    return _create_session


@pytest_asyncio.fixture
async def admin_cookies(user_factory, session_factory) -> dict[str, str]:
    """Session cookie for a logged-in admin."""
    admin = await user_factory(email="admin@example.com", role=UserRole.ADMIN)
    session = await session_factory(user=admin)
    return {"session_id": str(session.id)}


@pytest_asyncio.fixture
async def action_token_factory(db_session: AsyncSession):
    """Factory for issuing action tokens, optionally already expired or used."""

    async def _create_token(
        purpose: EmailSendPurpose,
        user: User,
        expired: bool = False,
        used: bool = False,
    ) -> str:
        from sqlalchemy import select

        from sendledger.core.security import hash_token
        from sendledger.models.action_token import ActionToken

        token = await issue_action_token(db_session, purpose, user.email, user_id=user.id)
        if expired or used:
            result = await db_session.execute(
                select(ActionToken).where(ActionToken.token_hash == hash_token(token))
            )
            action_token = result.scalar_one()
            if expired:
                action_token.expires_at = utc_now() - timedelta(minutes=1)
            if used:
                action_token.used_at = utc_now()
            await db_session.flush()
        return token

    return _create_token
