"""
Domain Services
"""
from app.domain.services.wallet_service import WalletService
from app.domain.services.notification_service import NotificationService
from app.domain.services.storage_service import StorageService
from app.domain.services.user_service import UserService

__all__ = [
    "WalletService",
    "NotificationService",
    "StorageService",
    "UserService",
]
