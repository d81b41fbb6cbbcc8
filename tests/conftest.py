"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP test client with the database override
- Test data factories (users, ledger entries)
- A recording notifier in place of the e-mail API
"""
# Settings are read at import time: JWT_SECRET_KEY is required with DEBUG=False,
# and the auth rate limit is raised so API tests never trip it
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("AUTH_RATE_LIMIT_MAX_REQUESTS", "100000")

import pytest
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import Response

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token, hash_password
from app.core.config import settings
from app.db.database import Base, get_db
from app.db.models.expense import Expense, ExpenseCategory, PaymentMethod
from app.db.models.user import User, UserRole
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PASSWORD = "correct-horse-battery"

# bcrypt is slow on purpose; hash the shared test password once
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on"""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Mock External Services
# ============================================================================

@pytest.fixture
def mock_brevo_api():
    """Mock the Brevo transactional e-mail API (201 Created)"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_response = MagicMock(spec=Response)
        mock_response.status_code = 201
        mock_response.text = '{"messageId": "<test@brevo>"}'

        mock_instance = AsyncMock()
        mock_instance.post = AsyncMock(return_value=mock_response)
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)

        mock_client.return_value = mock_instance

        yield mock_instance


@pytest.fixture
def mock_notifier():
    """Stand-in for NotificationService that records calls"""
    notifier = MagicMock()
    notifier.send_deposit = AsyncMock(return_value=True)
    notifier.send_low_balance = AsyncMock(return_value=True)
    return notifier


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    counter = {"n": 0}

    async def _create_user(
        name: str = "Test User",
        email: str | None = None,
        role: UserRole = UserRole.USER,
        wallet_balance: Decimal | str = "0.00",
        total_deposited: Decimal | str = "0.00",
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"user{counter['n']}@example.com",
            password_hash=_TEST_PASSWORD_HASH,
            role=role,
            wallet_balance=Decimal(wallet_balance),
            total_deposited=Decimal(total_deposited),
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def expense_factory(db_session: AsyncSession):
    """Factory for writing ledger rows directly, bypassing the wallet"""
    async def _create_expense(
        user_id: int,
        amount: Decimal | str = "100.00",
        deposit: Decimal | str = "0.00",
        balance: Decimal | str = "0.00",
        description: str = "Lunch",
        category: ExpenseCategory = ExpenseCategory.FOOD,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        date: datetime | None = None,
    ) -> Expense:
        entry = Expense(
            user_id=user_id,
            date=date or datetime(2024, 5, 1, 12, 0, 0),
            amount=Decimal(amount),
            description=description,
            category=category,
            payment_method=payment_method,
            balance=Decimal(balance),
            deposit=Decimal(deposit),
            recover_amount=Decimal("0.00"),
            proofs="",
        )
        db_session.add(entry)
        await db_session.commit()
        await db_session.refresh(entry)
        return entry

    return _create_expense


@pytest.fixture
def user_password() -> str:
    """Plain-text password of every user_factory user"""
    return TEST_PASSWORD


@pytest.fixture
def auth_headers():
    """Build a Bearer header for a user"""
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_user(user_factory) -> User:
    """An employee with an empty wallet"""
    return await user_factory(name="Sample User", email="sample.user@example.com")


@pytest.fixture
async def sample_hr(user_factory) -> User:
    return await user_factory(name="Sample HR", email="hr@example.com", role=UserRole.HR)


@pytest.fixture
async def sample_admin(user_factory) -> User:
    return await user_factory(name="Sample Admin", email="admin@example.com", role=UserRole.ADMIN)


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


# ============================================================================
# Settings for tests
# ============================================================================

_TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-do-not-use-in-production"
_TEST_SESSION_SECRET = "test-session-secret-key-for-testing-only"


@pytest.fixture(autouse=True)
def set_test_settings(tmp_path):
    """JWT secrets, no e-mail provider, uploads under a temp dir"""
    with patch.object(settings, "JWT_SECRET_KEY", _TEST_JWT_SECRET), \
         patch.object(settings, "JWT_SESSION_SECRET_KEY", _TEST_SESSION_SECRET), \
         patch.object(settings, "JWT_ALGORITHM", "HS256"), \
         patch.object(settings, "JWT_ACCESS_TOKEN_EXPIRE_MINUTES", 15), \
         patch.object(settings, "BREVO_API_KEY", ""), \
         patch.object(settings, "UPLOAD_DIR", str(tmp_path / "uploads")):
        yield
