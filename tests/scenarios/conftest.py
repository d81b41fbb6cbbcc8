"""
Fixtures and helpers for end-to-end wallet scenarios.

Provides:
- a notification spy on NotificationService (deposit and low-balance e-mails)
- a WalletDriver that walks the HTTP API as a given user
- DB assertion helpers for the wallet counters and the ledger
"""
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.expense import Expense
from app.db.models.user import User
from app.domain.services.notification_service import NotificationService


# ============================================================================
# Notification spy
# ============================================================================

@pytest.fixture
def notification_spy():
    """Patch both e-mail senders on the class so every service instance uses them"""
    with patch.object(
        NotificationService, "send_deposit", new_callable=AsyncMock, return_value=True
    ) as deposit_mock, patch.object(
        NotificationService, "send_low_balance", new_callable=AsyncMock, return_value=True
    ) as low_balance_mock:
        yield {"deposit": deposit_mock, "low_balance": low_balance_mock}


# ============================================================================
# API driver
# ============================================================================

class WalletDriver:
    """Short helpers around the HTTP API; each call asserts the expected status"""

    def __init__(self, client: AsyncClient, password: str):
        self.client = client
        self.password = password

    async def register(self, name: str, email: str) -> dict[str, str]:
        response = await self.client.post(
            "/api/users/register",
            json={"name": name, "email": email, "password": self.password},
        )
        assert response.status_code == 201, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    async def login(self, email: str) -> dict[str, str]:
        response = await self.client.post(
            "/api/users/login",
            json={"email": email, "password": self.password},
        )
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    async def me(self, headers: dict[str, str]) -> dict:
        response = await self.client.get("/api/users/me", headers=headers)
        assert response.status_code == 200, response.text
        return response.json()

    async def deposit(self, headers: dict[str, str], user_id: int, amount: str) -> dict:
        response = await self.client.post(
            "/api/expenses/deposit",
            json={"user_id": user_id, "amount": amount},
            headers=headers,
        )
        assert response.status_code == 200, response.text
        return response.json()

    async def spend(
        self,
        headers: dict[str, str],
        amount: str,
        *,
        category: str = "Food",
        description: str = "Lunch",
    ) -> dict:
        response = await self.client.post(
            "/api/expenses/create",
            data={
                "amount": amount,
                "description": description,
                "category": category,
                "payment_method": "Card",
            },
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["expense"]

    async def edit(self, headers: dict[str, str], entry_id: int, **fields) -> dict:
        response = await self.client.put(f"/api/expenses/{entry_id}", json=fields, headers=headers)
        assert response.status_code == 200, response.text
        return response.json()

    async def remove(self, headers: dict[str, str], entry_id: int) -> None:
        response = await self.client.delete(f"/api/expenses/{entry_id}", headers=headers)
        assert response.status_code == 200, response.text

    async def ledger(self, headers: dict[str, str], user_id: Optional[int] = None) -> list[dict]:
        params = {"page_size": 100}
        if user_id is not None:
            params["user_id"] = user_id
        response = await self.client.get("/api/expenses/", params=params, headers=headers)
        assert response.status_code == 200, response.text
        return response.json()["items"]


@pytest.fixture
def wallet_driver(test_client: AsyncClient, user_password: str) -> WalletDriver:
    return WalletDriver(test_client, user_password)


# ============================================================================
# DB assertions
# ============================================================================

async def _assert_wallet(
    db: AsyncSession,
    user_id: int,
    *,
    balance: str,
    deposited: str,
) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    assert user is not None, f"user {user_id} not found"
    assert user.wallet_balance == Decimal(balance), (
        f"expected balance {balance}, got {user.wallet_balance}"
    )
    assert user.total_deposited == Decimal(deposited), (
        f"expected total_deposited {deposited}, got {user.total_deposited}"
    )
    return user


async def _count_entries(db: AsyncSession, user_id: int, *, deposits: Optional[bool] = None) -> int:
    query = select(func.count(Expense.id)).where(Expense.user_id == user_id)
    if deposits is True:
        query = query.where(Expense.deposit > 0)
    elif deposits is False:
        query = query.where(Expense.deposit == 0)
    result = await db.execute(query)
    return result.scalar_one()


@pytest.fixture
def assert_wallet():
    return _assert_wallet


@pytest.fixture
def count_entries():
    return _count_entries
