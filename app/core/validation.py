"""
Input Validation Utilities

Provides validation for user inputs including:
- E-mail validation, normalization and masking for logs
- Name validation
- Text sanitization for descriptions
- Monetary amount validation
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any


class ValidationPatterns:
    """Regex patterns for validation"""

    EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")

    # Letters from any script plus space, hyphen, apostrophe, dot
    NAME = re.compile(r"^[^\W\d_](?:[^\W\d_]|[\s\-\'\.])*$")

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"\bon\w+=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
        re.compile(r"<object", re.IGNORECASE),
        re.compile(r"<embed", re.IGNORECASE),
    ]


class EmailValidator:
    """E-mail validation and normalization"""

    MAX_LENGTH = 254

    @staticmethod
    def validate(email: str) -> bool:
        if not email:
            return False
        email = email.strip()
        if len(email) > EmailValidator.MAX_LENGTH:
            return False
        return bool(ValidationPatterns.EMAIL.match(email))

    @staticmethod
    def normalize(email: str) -> str:
        """Lower-case and trim, so lookups are case-insensitive"""
        return email.strip().lower()

    @staticmethod
    def mask(email: str) -> str:
        """
        Mask an e-mail address for logging (privacy).

        Returns:
            Masked address (e.g., jo****@example.com)
        """
        if not email or "@" not in email:
            return "****"
        local, _, domain = email.partition("@")
        return f"{local[:2]}****@{domain}"


class TextSanitizer:
    """Text sanitization for security"""

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        Trims whitespace, enforces max length, removes null bytes and
        collapses runs of spaces. HTML escaping is left to display time.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        sanitized = re.sub(r" +", " ", sanitized)

        return sanitized

    @staticmethod
    def check_for_injection(text: str) -> tuple[bool, str | None]:
        """
        Check text for script injection.

        Returns:
            Tuple of (is_safe, detected_pattern)
        """
        if not text:
            return True, None

        for pattern in ValidationPatterns.XSS_PATTERNS:
            if pattern.search(text):
                return False, "XSS pattern detected"

        return True, None


class NameValidator:
    """Name validation utilities"""

    MIN_LENGTH = 2
    MAX_LENGTH = 100

    @staticmethod
    def validate(name: str) -> tuple[bool, str | None]:
        """
        Validate name format.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Name is required"

        name = name.strip()

        if len(name) < NameValidator.MIN_LENGTH:
            return False, f"Name too short (minimum {NameValidator.MIN_LENGTH} characters)"

        if len(name) > NameValidator.MAX_LENGTH:
            return False, f"Name too long (maximum {NameValidator.MAX_LENGTH} characters)"

        if not ValidationPatterns.NAME.match(name):
            return False, "Name contains invalid characters"

        return True, None


class AmountValidator:
    """Monetary amount validation"""

    MAX_VALUE = Decimal("10000000")

    @staticmethod
    def to_decimal(amount: Any) -> Decimal | None:
        """Convert an incoming amount to Decimal, None when it is not a number"""
        if amount is None or isinstance(amount, bool):
            return None
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return None
        if not value.is_finite():
            return None
        return value

    @staticmethod
    def validate(amount: Any) -> tuple[bool, str | None]:
        """
        Validate a positive monetary amount with at most two decimal places.

        Returns:
            Tuple of (is_valid, error_message)
        """
        value = AmountValidator.to_decimal(amount)
        if value is None:
            return False, "Amount must be a number"

        if value <= 0:
            return False, "Amount must be greater than 0"

        if value > AmountValidator.MAX_VALUE:
            return False, f"Amount cannot exceed {AmountValidator.MAX_VALUE}"

        if value != value.quantize(Decimal("0.01")):
            return False, "Amount cannot have more than 2 decimal places"

        return True, None


# Pydantic field validators for reuse
def email_validator(v: str | None) -> str | None:
    """Pydantic field validator for e-mail addresses"""
    if v is None:
        return None
    if not EmailValidator.validate(v):
        raise ValueError("Invalid e-mail address")
    return EmailValidator.normalize(v)


def name_validator(v: str | None) -> str | None:
    """Pydantic field validator for names"""
    if v is None:
        return None
    is_valid, error = NameValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return TextSanitizer.sanitize(v.strip(), max_length=NameValidator.MAX_LENGTH)


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    """Pydantic field validator for sanitized text"""
    if v is None:
        return None
    is_safe, pattern = TextSanitizer.check_for_injection(v)
    if not is_safe:
        raise ValueError(f"Invalid input: {pattern}")
    return TextSanitizer.sanitize(v, max_length)
