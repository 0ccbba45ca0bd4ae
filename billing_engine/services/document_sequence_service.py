"""
Document Sequence Service for Atomic Number Generation

- One counter row per document type (``document_counters``)
- Atomic increment-and-read with a single UPDATE ... RETURNING, executed in
  the caller's transaction so the number and the header insert commit or
  roll back together
- First use of a type seeds the counter from the last persisted document
- Format: {PREFIX}{SEQUENCE}, e.g. INV-0001, PRO-0042

USAGE:
    from billing_engine.services.document_sequence_service import DocumentSequenceService

    async def create_invoice(db: AsyncSession):
        service = DocumentSequenceService(db)
        number = await service.get_next_number(DocumentType.SALES)
        # Returns: INV-0001

The UNIQUE(document_type, document_number) constraint on ``invoices`` is
the backstop: a collision surfaces as IntegrityError, which the writing
service retries once with ``resync=True``.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.config import settings
from billing_engine.core.enum_utils import to_enum
from billing_engine.core.exceptions import ValidationError
from billing_engine.models.document import Document, DocumentCounter, DocumentType


logger = logging.getLogger(__name__)

DIGIT_RUN = re.compile(r"\d+")

# Constraint / table names that identify a numbering collision
NUMBER_COLLISION_MARKERS = (
    "uq_invoices_type_number",
    "invoices.document_type, invoices.document_number",
    "invoices.document_number",
    "document_counters",
)


def parse_sequence(document_number: Optional[str]) -> Optional[int]:
    """
    Extract the sequence value from a document number.

    The last run of digits wins, so prefixes containing digits are safe.

    Examples:
        >>> parse_sequence("INV-0042")
        42
        >>> parse_sequence("PO/2024/0007")
        7
        >>> parse_sequence("DRAFT") is None
        True
    """
    if not document_number:
        return None
    runs = DIGIT_RUN.findall(str(document_number))
    if not runs:
        return None
    return int(runs[-1])


def is_number_collision(error: IntegrityError) -> bool:
    """True when an IntegrityError comes from document numbering."""
    message = str(getattr(error, "orig", None) or error)
    return any(marker in message for marker in NUMBER_COLLISION_MARKERS)


class DocumentSequenceService:
    """
    Service for generating atomic document numbers.

    Serialization happens on the counter row: the UPDATE takes the row
    (PostgreSQL) or database (SQLite) write lock until the caller's
    transaction ends.
    """

    def __init__(
        self,
        db: AsyncSession,
        prefixes: Optional[Dict[str, str]] = None,
        padding: Optional[int] = None
    ):
        self.db = db
        self.prefixes = prefixes or settings.DOCUMENT_NUMBER_PREFIXES
        self.padding = padding or settings.SEQUENCE_PADDING

    def _validate_type(self, document_type: Union[DocumentType, str]) -> DocumentType:
        doc_type = to_enum(document_type, DocumentType)
        if doc_type is None:
            valid_types = ", ".join(t.value for t in DocumentType)
            raise ValidationError(
                f"Invalid document type '{document_type}'. Valid types: {valid_types}"
            )
        return doc_type

    def get_prefix(self, document_type: Union[DocumentType, str]) -> str:
        doc_type = self._validate_type(document_type)
        return self.prefixes.get(doc_type.value, f"{doc_type.value}-")

    def format_number(self, document_type: Union[DocumentType, str], value: int) -> str:
        """Format a sequence value, e.g. (SALES, 7) -> INV-0007."""
        return f"{self.get_prefix(document_type)}{str(value).zfill(self.padding)}"

    async def get_last_persisted_sequence(self, document_type: DocumentType) -> int:
        """
        Sequence value of the most recently created document of a type.

        Returns 0 if no document of this type exists.
        """
        result = await self.db.execute(
            select(Document.document_number)
            .where(Document.document_type == document_type.value)
            .order_by(Document.created_at.desc())
            .limit(1)
        )
        last_number = result.scalar_one_or_none()
        return parse_sequence(last_number) or 0

    async def _increment_counter(self, document_type: DocumentType) -> Optional[int]:
        result = await self.db.execute(
            update(DocumentCounter)
            .where(DocumentCounter.document_type == document_type.value)
            .values(
                last_number=DocumentCounter.last_number + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(DocumentCounter.last_number)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def _set_counter(self, document_type: DocumentType, value: int) -> None:
        await self.db.execute(
            update(DocumentCounter)
            .where(DocumentCounter.document_type == document_type.value)
            .values(last_number=value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def get_next_number(
        self,
        document_type: Union[DocumentType, str],
        resync: bool = False
    ) -> str:
        """
        Get next document number with atomic increment.

        Must run inside the transaction that inserts the document.

        Args:
            document_type: Document type (enum or case-insensitive string)
            resync: Lift the counter to at least last persisted + 1.
                Used on the retry after a numbering collision.

        Returns:
            Formatted document number, e.g. INV-0001

        Raises:
            ValidationError: If document_type is invalid
            IntegrityError: If another transaction seeded the counter first
        """
        doc_type = self._validate_type(document_type)

        # The increment is the first statement so the write lock is taken
        # before anything is read
        value = await self._increment_counter(doc_type)

        if value is None:
            value = await self.get_last_persisted_sequence(doc_type) + 1
            self.db.add(DocumentCounter(document_type=doc_type.value, last_number=value))
            await self.db.flush()
            logger.info(f"Seeded {doc_type.value} counter at {value}")
        elif resync:
            last_persisted = await self.get_last_persisted_sequence(doc_type)
            if value <= last_persisted:
                logger.warning(
                    f"{doc_type.value} counter {value} behind last persisted "
                    f"{last_persisted}, resyncing"
                )
                value = last_persisted + 1
                await self._set_counter(doc_type, value)

        return self.format_number(doc_type, value)

    async def preview_next_number(self, document_type: Union[DocumentType, str]) -> str:
        """
        Preview what the next number would be without incrementing.

        Not a reservation: a concurrent create may take this number first.
        """
        doc_type = self._validate_type(document_type)

        result = await self.db.execute(
            select(DocumentCounter.last_number)
            .where(DocumentCounter.document_type == doc_type.value)
        )
        current = result.scalar_one_or_none()
        if current is None:
            current = await self.get_last_persisted_sequence(doc_type)

        return self.format_number(doc_type, current + 1)
