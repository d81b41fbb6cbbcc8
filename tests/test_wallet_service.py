"""
Unit tests for WalletService.

These tests use the in-memory SQLite async session fixture (db_session)
to check that wallet counters and the expenses ledger stay in lockstep.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import Select, func, select, update
from sqlalchemy.dialects import postgresql

from app.core.exceptions import (
    ExpenseNotFoundError,
    InvalidAmountError,
    PermissionDeniedError,
    UserNotFoundError,
    ValidationException,
)
from app.db.models.expense import DEPOSIT_DESCRIPTION, Expense, ExpenseCategory, PaymentMethod
from app.db.models.user import User, UserRole
from app.domain.services.wallet_service import WalletService, compute_recover_amount


EXPENSE_DATE = datetime(2024, 5, 1, 9, 30)


async def _spend(service: WalletService, user_id: int, amount, **overrides) -> Expense:
    fields = {
        "user_id": user_id,
        "amount": amount,
        "date": EXPENSE_DATE,
        "description": "Taxi to client",
        "category": "Transport",
        "payment_method": "Cash",
    }
    fields.update(overrides)
    return await service.create_expense(**fields)


# ============================================================================
# compute_recover_amount
# ============================================================================


@pytest.mark.unit
def test_recover_amount_is_deficit_magnitude():
    assert compute_recover_amount(Decimal("-500.00")) == Decimal("500.00")


@pytest.mark.unit
def test_recover_amount_zero_when_not_overdrawn():
    assert compute_recover_amount(Decimal("0.00")) == Decimal("0.00")
    assert compute_recover_amount(Decimal("12.50")) == Decimal("0.00")


# ============================================================================
# deposit
# ============================================================================


@pytest.mark.unit
async def test_deposit_credits_wallet_and_writes_row(user_factory, db_session, mock_notifier):
    user = await user_factory(name="Nimal Perera")
    service = WalletService(db_session, notifier=mock_notifier)

    result = await service.deposit(user.id, 1000)

    assert result.wallet_balance == Decimal("1000.00")
    assert result.total_deposited == Decimal("1000.00")

    entry = result.entry
    assert entry.user_id == user.id
    assert entry.amount == Decimal("0")
    assert entry.deposit == Decimal("1000.00")
    assert entry.balance == Decimal("1000.00")
    assert entry.recover_amount == Decimal("0")
    assert entry.description == DEPOSIT_DESCRIPTION
    assert entry.category == ExpenseCategory.OTHERS
    assert entry.payment_method == PaymentMethod.OTHER
    assert entry.is_deposit is True


@pytest.mark.unit
async def test_deposit_notifies_user_after_commit(user_factory, db_session, mock_notifier):
    user = await user_factory(name="Nimal Perera", email="nimal@example.com")
    service = WalletService(db_session, notifier=mock_notifier)

    await service.deposit(user.id, "250.50")

    mock_notifier.send_deposit.assert_awaited_once_with(
        "nimal@example.com", "Nimal Perera", Decimal("250.50")
    )


@pytest.mark.unit
async def test_consecutive_deposits_accumulate(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    await service.deposit(user.id, 300)
    result = await service.deposit(user.id, 200)

    assert result.wallet_balance == Decimal("500.00")
    assert result.total_deposited == Decimal("500.00")
    assert result.entry.balance == Decimal("500.00")


@pytest.mark.unit
@pytest.mark.parametrize("amount", [None, 0, -10, "abc", "1.234"])
async def test_deposit_rejects_invalid_amount(user_factory, db_session, mock_notifier, amount):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(InvalidAmountError):
        await service.deposit(user.id, amount)

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("0")
    mock_notifier.send_deposit.assert_not_awaited()


@pytest.mark.unit
async def test_deposit_requires_user_id(db_session, mock_notifier):
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(ValidationException) as exc_info:
        await service.deposit(None, 100)

    assert exc_info.value.details["field"] == "user_id"


@pytest.mark.unit
async def test_deposit_unknown_user(db_session, mock_notifier):
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(UserNotFoundError):
        await service.deposit(999999, 100)

    count = (await db_session.execute(select(func.count(Expense.id)))).scalar_one()
    assert count == 0


# ============================================================================
# create_expense
# ============================================================================


@pytest.mark.unit
async def test_expense_within_balance(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    await service.deposit(user.id, 1000)

    entry = await _spend(service, user.id, 400)

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("600.00")
    assert user.total_deposited == Decimal("1000.00")
    assert entry.amount == Decimal("400.00")
    assert entry.balance == Decimal("600.00")
    assert entry.recover_amount == Decimal("0")
    assert entry.deposit == Decimal("0")
    assert entry.category == ExpenseCategory.TRANSPORT
    assert entry.payment_method == PaymentMethod.CASH
    mock_notifier.send_low_balance.assert_not_awaited()


@pytest.mark.unit
async def test_expense_overdraws_wallet_and_alerts_hr(user_factory, db_session, mock_notifier):
    """Deposit 1000 then spend 1500: balance -500, deficit 500, HR alerted"""
    user = await user_factory(name="Kamal Silva")
    await user_factory(name="HR One", email="hr1@example.com", role=UserRole.HR)
    await user_factory(name="HR Two", email="hr2@example.com", role=UserRole.HR)
    await user_factory(name="An Admin", email="admin@example.com", role=UserRole.ADMIN)
    service = WalletService(db_session, notifier=mock_notifier)
    await service.deposit(user.id, 1000)

    entry = await _spend(service, user.id, 1500)

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("-500.00")
    assert entry.balance == Decimal("-500.00")
    assert entry.recover_amount == Decimal("500.00")

    mock_notifier.send_low_balance.assert_awaited_once()
    emails, name, balance, total_deposited = mock_notifier.send_low_balance.await_args.args
    assert sorted(emails) == ["hr1@example.com", "hr2@example.com"]
    assert name == "Kamal Silva"
    assert balance == Decimal("-500.00")
    assert total_deposited == Decimal("1000.00")


@pytest.mark.unit
async def test_overdraft_without_hr_users_sends_nothing(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    entry = await _spend(service, user.id, 50)

    assert entry.recover_amount == Decimal("50.00")
    mock_notifier.send_low_balance.assert_not_awaited()


@pytest.mark.unit
async def test_expense_to_exactly_zero_is_not_overdrawn(user_factory, db_session, mock_notifier):
    user = await user_factory()
    await user_factory(email="hr@example.com", role=UserRole.HR)
    service = WalletService(db_session, notifier=mock_notifier)
    await service.deposit(user.id, 100)

    entry = await _spend(service, user.id, 100)

    assert entry.balance == Decimal("0.00")
    assert entry.recover_amount == Decimal("0")
    mock_notifier.send_low_balance.assert_not_awaited()


@pytest.mark.unit
async def test_expense_missing_fields(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(ValidationException) as exc_info:
        await _spend(service, user.id, 10, description="", category=None)

    assert exc_info.value.message == "All fields are required"
    assert exc_info.value.details["missing_fields"] == ["description", "category"]


@pytest.mark.unit
async def test_expense_unknown_category(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(ValidationException):
        await _spend(service, user.id, 10, category="Travel")

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("0")


@pytest.mark.unit
async def test_expense_non_positive_amount(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(InvalidAmountError):
        await _spend(service, user.id, -5)


@pytest.mark.unit
async def test_ledger_sum_matches_balance(user_factory, db_session, mock_notifier):
    """balance == sum(deposit) - sum(amount) while no row was edited or deleted"""
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)

    await service.deposit(user.id, 500)
    await _spend(service, user.id, "120.25")
    await service.deposit(user.id, 80)
    await _spend(service, user.id, "700.00")

    totals = (await db_session.execute(
        select(func.sum(Expense.deposit), func.sum(Expense.amount)).where(Expense.user_id == user.id)
    )).one()
    await db_session.refresh(user)

    assert Decimal(str(totals[0])) - Decimal(str(totals[1])) == user.wallet_balance
    assert user.wallet_balance == Decimal("-240.25")


# ============================================================================
# update_expense
# ============================================================================


@pytest.mark.unit
async def test_update_deposit_rebases_wallet(user_factory, db_session, mock_notifier):
    """Deposit 500 edited to 700: balance and total deposited move by +200"""
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(user.id, 500)

    updated = await service.update_expense(result.entry.id, {"amount": 700})

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("700.00")
    assert user.total_deposited == Decimal("700.00")
    assert updated.deposit == Decimal("700.00")
    assert updated.amount == Decimal("0")


@pytest.mark.unit
async def test_update_deposit_down(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(user.id, 500)
    await _spend(service, user.id, 100)

    await service.update_expense(result.entry.id, {"amount": 200})

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("100.00")
    assert user.total_deposited == Decimal("200.00")


@pytest.mark.unit
async def test_update_deposit_rejects_non_positive_amount(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(user.id, 500)

    with pytest.raises(InvalidAmountError):
        await service.update_expense(result.entry.id, {"amount": 0})

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("500.00")


@pytest.mark.unit
async def test_update_plain_expense_leaves_wallet_alone(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    await service.deposit(user.id, 1000)
    entry = await _spend(service, user.id, 300)

    updated = await service.update_expense(
        entry.id,
        {"amount": 450, "description": "Taxi and parking", "category": "Others"},
    )

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("700.00")
    assert updated.amount == Decimal("450.00")
    assert updated.balance == Decimal("700.00")
    assert updated.description == "Taxi and parking"
    assert updated.category == ExpenseCategory.OTHERS


@pytest.mark.unit
async def test_update_ignores_protected_fields(user_factory, db_session, mock_notifier):
    user = await user_factory()
    other = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    entry = await _spend(service, user.id, 40)

    updated = await service.update_expense(
        entry.id,
        {"user_id": other.id, "balance": 9999, "deposit": 9999, "recover_amount": 0},
    )

    assert updated.user_id == user.id
    assert updated.balance == Decimal("-40.00")
    assert updated.deposit == Decimal("0")
    assert updated.recover_amount == Decimal("40.00")


@pytest.mark.unit
async def test_update_missing_entry(db_session, mock_notifier):
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(ExpenseNotFoundError):
        await service.update_expense(424242, {"description": "x"})


@pytest.mark.unit
async def test_update_deposit_amount_requires_staff(user_factory, db_session, mock_notifier):
    owner = await user_factory()
    hr = await user_factory(role=UserRole.HR)
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(owner.id, 200)

    with pytest.raises(PermissionDeniedError):
        await service.update_expense(result.entry.id, {"amount": 5000}, requester=owner)

    await db_session.refresh(owner)
    assert owner.wallet_balance == Decimal("200.00")
    assert owner.total_deposited == Decimal("200.00")

    updated = await service.update_expense(result.entry.id, {"amount": 250}, requester=hr)

    await db_session.refresh(owner)
    assert updated.deposit == Decimal("250.00")
    assert owner.wallet_balance == Decimal("250.00")


@pytest.mark.unit
async def test_owner_may_edit_plain_expense_amount(user_factory, db_session, mock_notifier):
    owner = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    entry = await _spend(service, owner.id, 30)

    updated = await service.update_expense(entry.id, {"amount": 35}, requester=owner)

    assert updated.amount == Decimal("35.00")


@pytest.mark.unit
async def test_update_deposit_reads_committed_deposit(user_factory, db_session, mock_notifier):
    """The delta is taken from the stored row, not from a stale copy in the session"""
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(user.id, 500)

    # another transaction re-bases the same deposit to 800 behind this session's back
    await db_session.execute(
        update(Expense)
        .where(Expense.id == result.entry.id)
        .values(deposit=Decimal("800.00"))
        .execution_options(synchronize_session=False)
    )
    await db_session.execute(
        update(User)
        .where(User.id == user.id)
        .values(wallet_balance=Decimal("800.00"), total_deposited=Decimal("800.00"))
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert result.entry.deposit == Decimal("500.00")

    await service.update_expense(result.entry.id, {"amount": 1000})

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("1000.00")
    assert user.total_deposited == Decimal("1000.00")


def _locked_selects(execute_mock) -> list[str]:
    """SQL of every SELECT ... FOR UPDATE sent through the session, in order"""
    locked = []
    for call in execute_mock.await_args_list:
        stmt = call.args[0]
        if isinstance(stmt, Select):
            sql = str(stmt.compile(dialect=postgresql.dialect()))
            if "FOR UPDATE" in sql:
                locked.append(sql)
    return locked


@pytest.mark.unit
@pytest.mark.parametrize("operation", ["update", "delete"])
async def test_deposit_mutations_lock_entry_then_owner(
    user_factory, db_session, mock_notifier, operation
):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    result = await service.deposit(user.id, 500)

    with patch.object(db_session, "execute", wraps=db_session.execute) as execute_spy:
        if operation == "update":
            await service.update_expense(result.entry.id, {"amount": 600})
        else:
            await service.delete_expense(result.entry.id)

    locked = _locked_selects(execute_spy)
    assert len(locked) == 2
    assert "FROM expenses" in locked[0]
    assert "FROM users" in locked[1]


# ============================================================================
# delete_expense
# ============================================================================


@pytest.mark.unit
async def test_delete_deposit_reverses_it(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    first = await service.deposit(user.id, 500)
    await service.deposit(user.id, 300)

    await service.delete_expense(first.entry.id)

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("300.00")
    assert user.total_deposited == Decimal("300.00")
    assert await db_session.get(Expense, first.entry.id) is None


@pytest.mark.unit
async def test_delete_plain_expense_does_not_refund(user_factory, db_session, mock_notifier):
    user = await user_factory()
    service = WalletService(db_session, notifier=mock_notifier)
    await service.deposit(user.id, 1000)
    entry = await _spend(service, user.id, 250)

    await service.delete_expense(entry.id)

    await db_session.refresh(user)
    assert user.wallet_balance == Decimal("750.00")
    assert user.total_deposited == Decimal("1000.00")


@pytest.mark.unit
async def test_delete_missing_entry(db_session, mock_notifier):
    service = WalletService(db_session, notifier=mock_notifier)

    with pytest.raises(ExpenseNotFoundError):
        await service.delete_expense(424242)


# ============================================================================
# list_entries
# ============================================================================


@pytest.mark.unit
async def test_list_entries_newest_first_and_filtered(user_factory, expense_factory, db_session):
    alice = await user_factory()
    bob = await user_factory()
    older = await expense_factory(alice.id, date=datetime(2024, 1, 1))
    newer = await expense_factory(alice.id, date=datetime(2024, 3, 1))
    await expense_factory(bob.id, date=datetime(2024, 2, 1))

    service = WalletService(db_session)
    rows, total = await service.list_entries(alice.id)

    assert total == 2
    assert [r.id for r in rows] == [newer.id, older.id]

    _, everyone = await service.list_entries()
    assert everyone == 3


@pytest.mark.unit
async def test_list_entries_pagination(user_factory, expense_factory, db_session):
    user = await user_factory()
    for day in range(1, 6):
        await expense_factory(user.id, date=datetime(2024, 4, day))

    service = WalletService(db_session)
    rows, total = await service.list_entries(user.id, page=2, page_size=2)

    assert total == 5
    assert [r.date.day for r in rows] == [3, 2]
