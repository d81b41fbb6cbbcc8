"""
User Model - Employees, HR and administrators
"""
import enum
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Enum as SQLEnum
from sqlalchemy.orm import relationship

from app.db.database import Base


class UserRole(str, enum.Enum):
    USER = "user"
    HR = "hr"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# Roles allowed to fund wallets and see every ledger
STAFF_ROLES = (UserRole.HR, UserRole.ADMIN, UserRole.SUPERADMIN)


class User(Base):
    """User with a wallet funded by deposits and debited by expenses"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(254), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    profile_picture = Column(String(500), default="", nullable=False)
    cover_picture = Column(String(500), default="", nullable=False)
    role = Column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=UserRole.USER,
        nullable=False,
        index=True
    )

    # Wallet counters, kept in lockstep with the expenses ledger
    wallet_balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_deposited = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    # Present for compatibility; no operation writes it
    total_recovered = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_active = Column(DateTime, default=datetime.utcnow)

    expenses = relationship(
        "Expense",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
