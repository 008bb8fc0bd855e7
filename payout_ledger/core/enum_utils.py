"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(50) - NOT PostgreSQL ENUM
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python Enum for API validation
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request / service call):
    Enum → .value → String → Database
    Example: PayoutStatus.UNPAID → "UNPAID" → VARCHAR

OUTPUT (reading a row):
    Database → String → decode_enum() → Enum
    Example: VARCHAR "PENDING_APPROVAL" → PayoutStatus.PENDING_APPROVAL

An unrecognized string is never silently accepted on decode: decode_enum()
raises EnumDecodeError, which callers may catch and report.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


class EnumDecodeError(ValueError):
    """A stored string does not name any member of the expected enum."""
    def __init__(self, value: Any, enum_class: Type[Enum]):
        self.value = value
        self.enum_class = enum_class
        self.message = (
            f"'{value}' is not a valid {enum_class.__name__}. "
            f"Expected one of: {', '.join(enum_values(enum_class))}"
        )
        self.details = {"value": value, "enum": enum_class.__name__}
        super().__init__(self.message)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(PayoutStatus.UNPAID)
        'UNPAID'
        >>> get_enum_value("UNPAID")
        'UNPAID'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def decode_enum(value: Any, enum_class: Type[T]) -> T:
    """
    Convert a stored string back to an enum member.

    Raises:
        EnumDecodeError: if the value is None or names no member.

    Examples:
        >>> decode_enum("PAID", PayoutStatus)
        PayoutStatus.PAID
        >>> decode_enum("BOGUS", PayoutStatus)
        Traceback (most recent call last):
        EnumDecodeError: 'BOGUS' is not a valid PayoutStatus. ...
    """
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        raise EnumDecodeError(value, enum_class)


def enum_values(enum_class: Type[Enum]) -> list:
    """
    Get all values from an enum class.

    Examples:
        >>> enum_values(PayeeType)
        ['STORE', 'PLATFORM', 'BUYER_AFFILIATE', 'SELLER_AFFILIATE']
    """
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """Comma-separated valid values, for VARCHAR column comments."""
    return ", ".join(enum_values(enum_class))


# =============================================================================
# COMPARISON HELPERS
# =============================================================================

def is_status(db_value: str, enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value


def status_in(db_value: str, *enum_values: Enum) -> bool:
    """
    Check if database value matches any of the given enums.

    Examples:
        >>> status_in(payout.status, PayoutStatus.PENDING_APPROVAL, PayoutStatus.PENDING_REFUND)
        True
    """
    if db_value is None:
        return False
    return db_value in [e.value for e in enum_values]


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Use this in Pydantic field_validators to accept case-insensitive input
    while ensuring UPPERCASE storage in the database.

    Examples:
        >>> normalize_to_uppercase('seller', {'SELLER', 'BUYER_AFFILIATE'})
        'SELLER'
        >>> normalize_to_uppercase('invalid', {'SELLER'})
        'invalid'  # Returns as-is for Pydantic to raise validation error
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.upper()
        if upper_v in valid_values:
            return upper_v
    return value
