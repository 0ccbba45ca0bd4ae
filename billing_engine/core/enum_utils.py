"""
Enum Utilities for VARCHAR-based Type and Status Fields

STORAGE CONVENTION:
━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(30) - NOT a database ENUM
• SQLAlchemy: String(30) with Mapped[str]
• Pydantic / services: Python str-Enum for validation
• Case: document types and statuses are stored in UPPERCASE;
  tax types keep their lowercase wire values ("sgst_cgst", "igst")

Clients send "draft", "Draft" and "DRAFT" interchangeably, so every
enum-like input is normalized before it is compared or written.
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type, Set


T = TypeVar('T', bound=Enum)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a raw value to an enum instance, case-insensitively.

    Dashes and spaces are accepted in place of underscores so that URL
    slugs such as ``credit-note`` resolve to ``CREDIT_NOTE``.

    Returns:
        Enum instance or None if the value is not a member
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    raw = str(value).strip()
    for candidate in (raw, raw.upper(), raw.lower()):
        candidate = candidate.replace("-", "_").replace(" ", "_")
        try:
            return enum_class(candidate)
        except (ValueError, KeyError):
            continue
    return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(TaxType)
        'sgst_cgst, igst'
    """
    return ", ".join(enum_values(enum_class))


def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Use this in Pydantic field_validators to accept case-insensitive input
    while ensuring UPPERCASE storage in the database.

    Examples:
        >>> normalize_to_uppercase('paid', {'PAID', 'DRAFT'})
        'PAID'
        >>> normalize_to_uppercase('invalid', {'PAID', 'DRAFT'})
        'invalid'  # Returned as-is for Pydantic to raise validation error
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper().replace("-", "_").replace(" ", "_")
        if upper_v in valid_values:
            return upper_v
    return value


def create_uppercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to UPPERCASE.

    Usage:
        class StatusUpdateRequest(BaseModel):
            status: DocumentStatus

            _normalize_status = create_uppercase_validator('status', VALID_DOCUMENT_STATUSES)
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_uppercase(v, valid_values)

    return validate


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_DOCUMENT_TYPES = {
    "PROFORMA", "SALES", "CREDIT_NOTE", "DEBIT_NOTE",
    "DELIVERY_CHALLAN", "PURCHASE_ORDER",
}

VALID_DOCUMENT_STATUSES = {
    "DRAFT", "PENDING", "PARTIAL", "DELIVERED", "PAID", "CANCELLED",
}
