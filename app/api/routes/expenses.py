"""
Expense API Routes - Ledger listing, expenses, deposits
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_user, require_roles
from app.core.exceptions import PermissionDeniedError, ValidationException
from app.core.validation import sanitized_text_validator
from app.db.database import get_db
from app.db.models.expense import ExpenseCategory, PaymentMethod
from app.db.models.user import STAFF_ROLES, User, UserRole
from app.domain.services.storage_service import StorageService
from app.domain.services.wallet_service import WalletService

router = APIRouter()


class ExpenseResponse(BaseModel):
    id: int
    user_id: int
    date: datetime
    amount: float
    description: str
    category: ExpenseCategory
    payment_method: PaymentMethod
    balance: float
    deposit: float
    recover_amount: float
    proofs: str
    is_deposit: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaginatedExpensesResponse(BaseModel):
    items: List[ExpenseResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class DepositRequest(BaseModel):
    """Missing fields are reported by the service as 400, not as 422"""
    user_id: Optional[int] = None
    amount: Optional[Decimal] = None


class DepositResponse(BaseModel):
    message: str
    wallet_balance: float
    total_deposited: float
    entry: ExpenseResponse


class ExpenseCreatedResponse(BaseModel):
    message: str
    expense: ExpenseResponse


class ExpenseUpdate(BaseModel):
    """Partial update; owner, balance and recovery snapshots are not editable"""
    amount: Optional[Decimal] = None
    date: Optional[datetime] = None
    description: Optional[str] = None
    category: Optional[ExpenseCategory] = None
    payment_method: Optional[PaymentMethod] = None

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v, max_length=500)


@router.get(
    "/",
    response_model=PaginatedExpensesResponse,
    summary="List ledger entries",
    description=(
        "Role `user` always sees their own entries. HR, admin and superadmin "
        "see every entry, or one user's entries with `user_id`."
    ),
)
async def list_expenses(
    user_id: Optional[int] = Query(None, description="Filter by owner (staff only)"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaginatedExpensesResponse:
    owner_id = current_user.id if current_user.role == UserRole.USER else user_id
    service = WalletService(db)
    items, total = await service.list_entries(owner_id, page=page, page_size=page_size)
    return PaginatedExpensesResponse(
        items=[ExpenseResponse.model_validate(e) for e in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=max(1, (total + page_size - 1) // page_size),
    )


@router.post(
    "/create",
    response_model=ExpenseCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record an expense",
    description=(
        "Multipart form. Debits the caller's wallet; when the balance turns "
        "negative the deficit is stored as `recover_amount` and HR is alerted."
    ),
)
async def create_expense(
    date: Optional[datetime] = Form(None),
    amount: Optional[Decimal] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    payment_method: Optional[str] = Form(None),
    proof: Optional[UploadFile] = File(None),
    current_user: User = Depends(require_roles(UserRole.USER)),
    db: AsyncSession = Depends(get_db),
) -> ExpenseCreatedResponse:
    try:
        description = sanitized_text_validator(description, max_length=500)
    except ValueError as exc:
        raise ValidationException(str(exc), field="description") from exc

    storage = StorageService()
    proofs = await storage.save_proof(proof)
    service = WalletService(db)
    try:
        entry = await service.create_expense(
            user_id=current_user.id,
            amount=amount,
            date=date,
            description=description,
            category=category,
            payment_method=payment_method,
            proofs=proofs,
        )
    except Exception:
        storage.discard(proofs)
        raise
    return ExpenseCreatedResponse(
        message="Expense created successfully",
        expense=ExpenseResponse.model_validate(entry),
    )


@router.post(
    "/deposit",
    response_model=DepositResponse,
    summary="Deposit money into a user's wallet",
    description="HR, admin and superadmin only. Credits the wallet and e-mails the user.",
)
async def deposit(
    body: DepositRequest,
    current_user: User = Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
) -> DepositResponse:
    service = WalletService(db)
    result = await service.deposit(body.user_id, body.amount)
    return DepositResponse(
        message="Deposit successful",
        wallet_balance=result.wallet_balance,
        total_deposited=result.total_deposited,
        entry=ExpenseResponse.model_validate(result.entry),
    )


@router.put(
    "/{entry_id}",
    response_model=ExpenseResponse,
    summary="Update a ledger entry",
    description=(
        "A new `amount` on a deposit entry shifts the owner's balance and total "
        "deposited by the difference and is reserved for HR, admin and superadmin. "
        "On a plain expense it only edits the entry."
    ),
    responses={404: {"description": "Entry not found"}},
)
async def update_expense(
    entry_id: int,
    body: ExpenseUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ExpenseResponse:
    service = WalletService(db)
    if current_user.role == UserRole.USER:
        entry = await service.get_entry(entry_id)
        if entry.user_id != current_user.id:
            raise PermissionDeniedError(current_user.role.value, tuple(r.value for r in STAFF_ROLES))

    updated = await service.update_expense(
        entry_id, body.model_dump(exclude_unset=True), requester=current_user
    )
    return ExpenseResponse.model_validate(updated)


@router.delete(
    "/{entry_id}",
    summary="Delete a ledger entry",
    description="Admin and superadmin only. Deleting a deposit reverses it on the wallet.",
    responses={404: {"description": "Entry not found"}},
)
async def delete_expense(
    entry_id: int,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.SUPERADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    service = WalletService(db)
    await service.delete_expense(entry_id)
    return {"message": "Expense deleted successfully"}
