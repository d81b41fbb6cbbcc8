"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.users import router as users_router
from app.api.routes.expenses import router as expenses_router

router = APIRouter()

router.include_router(users_router, prefix="/users", tags=["Users"])
router.include_router(expenses_router, prefix="/expenses", tags=["Expenses"])
