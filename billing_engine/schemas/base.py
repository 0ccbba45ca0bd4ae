"""
Base Schema Classes for Pydantic Models

RULES:
- Response schemas that read from ORM models inherit from BaseResponseSchema.
- Request payloads inherit from BaseCreateSchema (unknown keys ignored).
- Records persisted inside JSON columns inherit from StrictRecordSchema
  (unknown keys rejected, so the stored shape cannot drift).
"""

from datetime import date, datetime
from typing import Any
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class DocumentBrief(BaseResponseSchema):
            id: UUID
            document_number: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    These schemas accept string UUIDs from the caller and convert to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class StrictRecordSchema(BaseModel):
    """Base class for structured records persisted as JSON."""
    model_config = ConfigDict(
        extra='forbid',
    )


def normalize_date(value: Any) -> Any:
    """
    Normalize date input to a YYYY-MM-DD value.

    Accepts date objects, datetimes and ISO strings with a time part
    ("2024-05-01T10:30:00Z" -> "2024-05-01").
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if "T" in text:
            text = text.split("T")[0]
        elif " " in text:
            text = text.split(" ")[0]
        return text
    return value

