"""
Expense Model - Ledger of expenses and deposits

Each row is a point-in-time snapshot: ``balance`` is the owner's wallet
balance right after the row was applied, ``recover_amount`` the deficit at
creation time. A row with ``deposit > 0`` is a deposit.
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from app.db.database import Base


class ExpenseCategory(str, enum.Enum):
    FOOD = "Food"
    TRANSPORT = "Transport"
    OTHERS = "Others"


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    CARD = "Card"
    ONLINE = "Online"
    OTHER = "Other"


DEPOSIT_DESCRIPTION = "HR Deposit"


class Expense(Base):
    """Ledger entry: an expense, or a deposit when ``deposit > 0``"""

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    date = Column(DateTime, nullable=False, index=True)
    # Spent amount; always 0 on deposit rows, whose value lives in `deposit`
    amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    description = Column(String(500), nullable=False)
    category = Column(
        SQLEnum(
            ExpenseCategory,
            name="expense_category",
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False
    )
    payment_method = Column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False
    )

    balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    deposit = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    recover_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    proofs = Column(String(500), default="", nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="expenses")

    @property
    def is_deposit(self) -> bool:
        return (self.deposit or Decimal("0")) > 0
