"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE CONVENTION:
━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(30) - NOT a native database ENUM
• SQLAlchemy: String(30) with Mapped[str]
• Pydantic: Python Enum for API validation
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request / service call):
    Enum → .value → String → Database
    Example: QualityStatus.APPROVED → "APPROVED" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(QualityStatus.APPROVED)
        'APPROVED'
        >>> get_enum_value("APPROVED")
        'APPROVED'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, or None if it is not a member.
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(CellStatus)
        'AVAILABLE, OCCUPIED'
    """
    return ", ".join(enum_values(enum_class))


# =============================================================================
# COMPARISON HELPERS
# =============================================================================

def status_in(db_value: str, *enum_values: Enum) -> bool:
    """
    Check if database value matches any of the given enums.

    Examples:
        >>> status_in(order.order_status, DepartureStatus.APPROVED, DepartureStatus.PARTIALLY_DISPATCHED)
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

    Returns the original value otherwise so Pydantic raises the validation error.
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.upper()
        if upper_v in valid_values:
            return upper_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_QUALITY_STATUSES = {
    "QUARANTINE", "APPROVED", "RETURNS", "SAMPLES", "REJECTED"
}

VALID_CELL_ROLES = {
    "STANDARD", "DAMAGED", "EXPIRED", "RETURNS", "SAMPLES", "REJECTED"
}

VALID_REVIEW_STATUSES = {
    "PENDING", "APPROVED", "REJECTED", "NEEDS_REVISION"
}
