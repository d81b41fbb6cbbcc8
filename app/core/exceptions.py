"""
Custom Exception Hierarchy

Structured exceptions shared by the services and the API layer. Every
exception carries a stable error code and the HTTP status it maps to.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    USER_ALREADY_EXISTS = "ERR_3003"
    INVALID_CREDENTIALS = "ERR_3005"
    INVALID_RESET_TOKEN = "ERR_3006"

    # Wallet / ledger errors (4xxx)
    EXPENSE_NOT_FOUND = "ERR_4001"
    INVALID_AMOUNT = "ERR_4003"
    INVALID_PROOF_FILE = "ERR_4005"

    # External service errors (5xxx)
    EMAIL_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class AuthenticationError(AppException):
    """Raised when credentials or tokens are rejected"""

    def __init__(
        self,
        message: str = "Not authorized",
        error_code: ErrorCode = ErrorCode.UNAUTHORIZED,
    ):
        super().__init__(message=message, error_code=error_code, status_code=401)


class PermissionDeniedError(AppException):
    """Raised when the caller's role may not perform the action"""

    def __init__(self, role: str | None = None, allowed: tuple[str, ...] = ()):
        super().__init__(
            message="You do not have permission to perform this action",
            error_code=ErrorCode.FORBIDDEN,
            status_code=403,
            details={"role": role, "allowed_roles": list(allowed)},
        )


class UserNotFoundError(NotFoundException):
    """Raised when user is not found"""

    def __init__(self, identifier: str | int):
        super().__init__("User", identifier, error_code=ErrorCode.USER_NOT_FOUND)


class UserAlreadyExistsError(AppException):
    """Raised when registering an e-mail that is already taken"""

    def __init__(self, email: str):
        super().__init__(
            message="User already exists",
            error_code=ErrorCode.USER_ALREADY_EXISTS,
            status_code=400,
            details={"email": email},
        )


class InvalidCredentialsError(AuthenticationError):
    """Raised on a failed login"""

    def __init__(self):
        super().__init__("Invalid credentials", ErrorCode.INVALID_CREDENTIALS)


class InvalidResetTokenError(ValidationException):
    """Raised when a password reset token is invalid or expired"""

    def __init__(self):
        super().__init__(
            "Invalid or expired token",
            field="token",
            error_code=ErrorCode.INVALID_RESET_TOKEN,
        )


class ExpenseNotFoundError(NotFoundException):
    """Raised when a ledger entry is not found"""

    def __init__(self, entry_id: int):
        super().__init__("Expense", entry_id, error_code=ErrorCode.EXPENSE_NOT_FOUND)


class InvalidAmountError(ValidationException):
    """Raised when a deposit or expense amount is missing or not positive"""

    def __init__(self, amount: Any, field: str = "amount"):
        super().__init__(
            message="A positive amount is required",
            field=field,
            details={"amount": None if amount is None else str(amount)},
            error_code=ErrorCode.INVALID_AMOUNT,
        )


class InvalidProofFileError(ValidationException):
    """Raised when an uploaded proof is too large or of a disallowed type"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            field="proof",
            details=details,
            error_code=ErrorCode.INVALID_PROOF_FILE,
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class EmailDeliveryError(ExternalServiceException):
    """Raised when the e-mail provider rejects or fails a send"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="email",
            message=f"E-mail delivery error: {message}",
            error_code=ErrorCode.EMAIL_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "EmailDeliveryError":
        """Build an EmailDeliveryError from an HTTP response, truncating the body"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
