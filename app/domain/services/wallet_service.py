"""
Wallet Service - Reconciles user wallet counters with the expenses ledger

Rules:
- deposit: balance and total_deposited go up; a deposit row is written.
- expense: balance goes down; when it turns negative the deficit is
  snapshotted on the row as recover_amount and HR is alerted.
- update: only deposit rows re-base the wallet (by the amount delta).
  Plain expense rows are edited in place and the wallet is left alone.
- delete: only deposit rows are reversed. Deleting a plain expense does not
  credit the wallet back.

Each mutation locks the ledger row it edits (update, delete) before the owner row, applies the counter change and the ledger
write in one transaction, then commits once. E-mails go out after commit.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ExpenseNotFoundError,
    InvalidAmountError,
    PermissionDeniedError,
    UserNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.validation import AmountValidator
from app.db.models.expense import (
    DEPOSIT_DESCRIPTION,
    Expense,
    ExpenseCategory,
    PaymentMethod,
)
from app.db.models.user import STAFF_ROLES, User, UserRole
from app.domain.services.notification_service import NotificationService

logger = get_logger(__name__)

ZERO = Decimal("0.00")

# Fields a caller may change on an existing ledger row
UPDATABLE_FIELDS = ("amount", "date", "description", "category", "payment_method", "proofs")


@dataclass
class DepositResult:
    """Outcome of a deposit: the new counters and the written ledger row"""
    wallet_balance: Decimal
    total_deposited: Decimal
    entry: Expense


def _money(value: Any, field: str = "amount") -> Decimal:
    """Validate and quantize a positive amount, raising InvalidAmountError"""
    is_valid, error = AmountValidator.validate(value)
    if not is_valid:
        logger.warning("Rejected amount", extra_data={"field": field, "reason": error})
        raise InvalidAmountError(value, field=field)
    return AmountValidator.to_decimal(value).quantize(Decimal("0.01"))


def compute_recover_amount(balance: Decimal) -> Decimal:
    """Deficit magnitude when the balance is negative, else zero"""
    return abs(balance) if balance < 0 else ZERO


class WalletService:
    """Service for wallet deposits and the expense ledger"""

    def __init__(self, db: AsyncSession, notifier: type[NotificationService] = NotificationService):
        self.db = db
        self.notifier = notifier

    async def _get_user(self, user_id: int, for_update: bool = False) -> User:
        query = select(User).where(User.id == user_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        user = result.scalar_one_or_none()
        if not user:
            raise UserNotFoundError(user_id)
        return user

    async def _get_entry(self, entry_id: int, for_update: bool = False) -> Expense:
        query = select(Expense).where(Expense.id == entry_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        entry = result.scalar_one_or_none()
        if not entry:
            raise ExpenseNotFoundError(entry_id)
        return entry

    async def get_entry(self, entry_id: int) -> Expense:
        """Get a single ledger row"""
        return await self._get_entry(entry_id)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _hr_emails(self) -> list[str]:
        result = await self.db.execute(select(User.email).where(User.role == UserRole.HR))
        return [email for email in result.scalars().all() if email]

    @log_async_operation("wallet.deposit")
    async def deposit(self, user_id: Optional[int], amount: Any) -> DepositResult:
        """
        Credit a user's wallet.

        Raises:
            ValidationException: user_id missing
            InvalidAmountError: amount missing or not positive
            UserNotFoundError: no such user
        """
        if not user_id:
            raise ValidationException("Valid userId and positive amount are required", field="user_id")
        amount_dec = _money(amount)

        user = await self._get_user(user_id, for_update=True)

        user.total_deposited = (user.total_deposited or ZERO) + amount_dec
        user.wallet_balance = (user.wallet_balance or ZERO) + amount_dec

        entry = Expense(
            user_id=user.id,
            date=datetime.utcnow(),
            amount=ZERO,
            description=DEPOSIT_DESCRIPTION,
            category=ExpenseCategory.OTHERS,
            payment_method=PaymentMethod.OTHER,
            balance=user.wallet_balance,
            deposit=amount_dec,
            recover_amount=ZERO,
            proofs="",
        )
        self.db.add(entry)
        await self._commit()
        await self.db.refresh(entry)

        logger.info(
            "Deposit applied",
            extra_data={
                "user_id": user.id,
                "amount": str(amount_dec),
                "wallet_balance": str(user.wallet_balance),
                "total_deposited": str(user.total_deposited),
                "entry_id": entry.id,
            },
        )

        if user.email:
            await self.notifier.send_deposit(user.email, user.name, amount_dec)

        return DepositResult(
            wallet_balance=user.wallet_balance,
            total_deposited=user.total_deposited,
            entry=entry,
        )

    @log_async_operation("wallet.create_expense")
    async def create_expense(
        self,
        user_id: int,
        amount: Any,
        date: Optional[datetime],
        description: Optional[str],
        category: Optional[ExpenseCategory | str],
        payment_method: Optional[PaymentMethod | str],
        proofs: str = "",
    ) -> Expense:
        """
        Debit a user's wallet and record the expense.

        Raises:
            ValidationException: a required field is missing or invalid
            UserNotFoundError: no such user
        """
        missing = [
            name for name, value in (
                ("amount", amount),
                ("date", date),
                ("description", description),
                ("category", category),
                ("payment_method", payment_method),
            )
            if value in (None, "")
        ]
        if missing:
            raise ValidationException(
                "All fields are required",
                details={"missing_fields": missing},
            )
        amount_dec = _money(amount)
        try:
            category = ExpenseCategory(category)
            payment_method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise ValidationException(str(exc)) from exc

        user = await self._get_user(user_id, for_update=True)

        user.wallet_balance = (user.wallet_balance or ZERO) - amount_dec
        recover_amount = compute_recover_amount(user.wallet_balance)

        entry = Expense(
            user_id=user.id,
            date=date,
            amount=amount_dec,
            description=description,
            category=category,
            payment_method=payment_method,
            balance=user.wallet_balance,
            deposit=ZERO,
            recover_amount=recover_amount,
            proofs=proofs or "",
        )
        self.db.add(entry)

        hr_emails: list[str] = []
        if recover_amount > 0:
            hr_emails = await self._hr_emails()

        await self._commit()
        await self.db.refresh(entry)

        logger.info(
            "Expense recorded",
            extra_data={
                "user_id": user.id,
                "entry_id": entry.id,
                "amount": str(amount_dec),
                "wallet_balance": str(user.wallet_balance),
                "recover_amount": str(recover_amount),
            },
        )

        if recover_amount > 0:
            logger.warning(
                "Wallet overdrawn",
                extra_data={
                    "user_id": user.id,
                    "wallet_balance": str(user.wallet_balance),
                    "hr_recipients": len(hr_emails),
                },
            )
            if hr_emails:
                await self.notifier.send_low_balance(
                    hr_emails,
                    user.name,
                    user.wallet_balance,
                    user.total_deposited or ZERO,
                )

        return entry

    @log_async_operation("wallet.update_expense")
    async def update_expense(
        self,
        entry_id: int,
        patch: dict[str, Any],
        requester: Optional[User] = None,
    ) -> Expense:
        """
        Update a ledger row.

        A new amount on a deposit row shifts the owner's balance and
        total_deposited by the difference. A new amount on a plain expense
        row does not touch the wallet, and the stored balance and
        recover_amount snapshots are kept as they were.

        Only staff may change the amount of a deposit row; a requester with
        role user gets PermissionDeniedError. No requester means a trusted
        internal caller.

        Raises:
            ExpenseNotFoundError: no such row
            InvalidAmountError: new amount not positive
            PermissionDeniedError: non-staff requester re-basing a deposit
        """
        entry = await self._get_entry(entry_id, for_update=True)
        changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS and v is not None}

        if "category" in changes or "payment_method" in changes:
            try:
                if "category" in changes:
                    changes["category"] = ExpenseCategory(changes["category"])
                if "payment_method" in changes:
                    changes["payment_method"] = PaymentMethod(changes["payment_method"])
            except ValueError as exc:
                raise ValidationException(str(exc)) from exc

        new_amount: Optional[Decimal] = None
        if "amount" in changes:
            new_amount = _money(changes.pop("amount"))

        if (
            new_amount is not None
            and entry.is_deposit
            and requester is not None
            and requester.role not in STAFF_ROLES
        ):
            logger.warning(
                "Deposit edit denied",
                extra_data={"user_id": requester.id, "entry_id": entry.id},
            )
            raise PermissionDeniedError(
                requester.role.value, tuple(r.value for r in STAFF_ROLES)
            )

        if new_amount is not None and entry.is_deposit:
            user = await self._get_user(entry.user_id, for_update=True)
            delta = new_amount - entry.deposit
            user.wallet_balance = (user.wallet_balance or ZERO) + delta
            user.total_deposited = (user.total_deposited or ZERO) + delta
            entry.deposit = new_amount
            logger.info(
                "Deposit re-based",
                extra_data={
                    "user_id": user.id,
                    "entry_id": entry.id,
                    "delta": str(delta),
                    "wallet_balance": str(user.wallet_balance),
                    "total_deposited": str(user.total_deposited),
                },
            )
        elif new_amount is not None:
            entry.amount = new_amount

        for field, value in changes.items():
            setattr(entry, field, value)

        await self._commit()
        await self.db.refresh(entry)
        return entry

    @log_async_operation("wallet.delete_expense")
    async def delete_expense(self, entry_id: int) -> None:
        """
        Delete a ledger row, reversing it on the wallet only when it is a deposit.

        Raises:
            ExpenseNotFoundError: no such row
        """
        entry = await self._get_entry(entry_id, for_update=True)

        if entry.is_deposit:
            user = await self._get_user(entry.user_id, for_update=True)
            user.wallet_balance = (user.wallet_balance or ZERO) - entry.deposit
            user.total_deposited = (user.total_deposited or ZERO) - entry.deposit
            logger.info(
                "Deposit reversed",
                extra_data={
                    "user_id": user.id,
                    "entry_id": entry.id,
                    "deposit": str(entry.deposit),
                    "wallet_balance": str(user.wallet_balance),
                },
            )

        await self.db.delete(entry)
        await self._commit()

    async def list_entries(
        self,
        user_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Expense], int]:
        """Ledger rows newest first, optionally for one user; returns (rows, total)"""
        query = select(Expense)
        count_query = select(func.count(Expense.id))
        if user_id is not None:
            query = query.where(Expense.user_id == user_id)
            count_query = count_query.where(Expense.user_id == user_id)

        total = (await self.db.execute(count_query)).scalar_one()

        result = await self.db.execute(
            query
            .order_by(Expense.date.desc(), Expense.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
