"""Conversion Service - clone a document into another type (Proforma -> Sales).

One transaction:
1. Lock the source row, then load its items and attributes
2. Allocate a number for the target type
3. Insert the target header (totals, notes, party, tax configuration copied,
   status DRAFT, dated today, linked back to the source)
4. Copy every line item verbatim
5. Mark the source converted and link it forward

The source keeps its status; conversion is tracked by the separate
``conversion_status`` attribute.
"""
import logging
import uuid
from datetime import date
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import async_sessionmaker

from billing_engine.config import settings
from billing_engine.database import get_db_session, async_session_factory
from billing_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing_engine.models.document import (
    ConversionStatus,
    Document,
    DocumentItem,
    DocumentStatus,
    DocumentType,
)
from billing_engine.schemas.document import DETAILS_SCHEMAS, ConversionResult
from billing_engine.services.document_service import (
    lock_document,
    resolve_document_type,
    validated_attributes,
)
from billing_engine.services.document_sequence_service import DocumentSequenceService
from billing_engine.services.events import DocumentConverted, EventPublisher, event_publisher
from billing_engine.services.transaction_utils import run_numbered


logger = logging.getLogger(__name__)

# Header columns copied from source to target unchanged
COPIED_HEADER_FIELDS = (
    "party_id",
    "due_date",
    "sub_total",
    "discount_total",
    "additional_charges_total",
    "taxable_amount",
    "tcs_amount",
    "tax_total",
    "sgst_total",
    "cgst_total",
    "igst_total",
    "round_off",
    "grand_total",
    "amount_in_words",
)

COPIED_ITEM_FIELDS = (
    "line_number",
    "description",
    "hsn_code",
    "unit_of_measure",
    "quantity",
    "rate",
    "discount_percent",
    "tax_percent",
    "sgst_percent",
    "cgst_percent",
    "igst_percent",
    "base_amount",
    "discount_amount",
    "taxable_amount",
    "tax_amount",
    "sgst_amount",
    "cgst_amount",
    "igst_amount",
    "line_total",
)


def carry_over_details(details: dict, target_type: DocumentType) -> dict:
    """Keep only the detail fields the target type's schema defines."""
    allowed = DETAILS_SCHEMAS[target_type].model_fields
    return {key: value for key, value in (details or {}).items() if key in allowed}


class ConversionService:
    """Convert documents between types while keeping an audit link."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        publisher: Optional[EventPublisher] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.publisher = publisher or event_publisher
        self.timeout = timeout if timeout is not None else settings.OPERATION_TIMEOUT_SECONDS

    async def convert_document(
        self,
        source_id: uuid.UUID,
        target_type: Union[DocumentType, str] = DocumentType.SALES,
        source_type: Optional[Union[DocumentType, str]] = None,
    ) -> ConversionResult:
        """
        Convert a document into a new document of ``target_type``.

        Raises:
            NotFoundError: Source missing, or not of ``source_type``
            ValidationError: Source and target are the same type
            ConflictError: Source already converted, or numbering collision
            PersistenceError: Storage failure or timeout
        """
        target = resolve_document_type(target_type)
        expected_source = resolve_document_type(source_type) if source_type else None

        async def attempt(resync: bool):
            async with get_db_session(self.session_factory) as db:
                # Lock first so the conversion state read below is current
                await lock_document(db, source_id)

                query = select(Document).where(Document.id == source_id)
                if expected_source:
                    query = query.where(Document.document_type == expected_source.value)
                result = await db.execute(
                    query.options(selectinload(Document.items)).with_for_update()
                )
                source = result.scalar_one_or_none()
                if not source:
                    raise NotFoundError(
                        f"Source document {source_id} not found",
                        {"document_id": str(source_id)}
                    )
                if source.document_type == target.value:
                    raise ValidationError(
                        f"Cannot convert {source.document_type} into the same type",
                        {"field": "target_type"}
                    )

                attributes = dict(source.extended_attributes or {})
                if attributes.get("conversion_status") == ConversionStatus.CONVERTED.value:
                    raise ConflictError(
                        f"{source.document_type} {source.document_number} is already converted",
                        {"converted_to_id": attributes.get("converted_to_id")}
                    )

                sequence_service = DocumentSequenceService(db)
                new_number = await sequence_service.get_next_number(target, resync=resync)

                new_attributes = dict(attributes)
                new_attributes.update({
                    "conversion_status": ConversionStatus.ACTIVE.value,
                    "converted_from_id": str(source.id),
                    "converted_to_id": None,
                    "details": carry_over_details(attributes.get("details"), target),
                })

                new_document = Document(
                    id=uuid.uuid4(),
                    document_type=target.value,
                    document_number=new_number,
                    document_date=date.today(),
                    status=DocumentStatus.DRAFT.value,
                    notes=list(source.notes or []),
                    extended_attributes=validated_attributes(new_attributes),
                    **{field: getattr(source, field) for field in COPIED_HEADER_FIELDS},
                )
                db.add(new_document)
                db.add_all([
                    DocumentItem(
                        document_id=new_document.id,
                        **{field: getattr(item, field) for field in COPIED_ITEM_FIELDS},
                    )
                    for item in source.items
                ])

                attributes["conversion_status"] = ConversionStatus.CONVERTED.value
                attributes["converted_to_id"] = str(new_document.id)
                source.extended_attributes = validated_attributes(attributes)

                await db.flush()
                return source.id, source.document_type, new_document.id, new_number

        source_key, source_doc_type, new_id, new_number = await run_numbered(
            attempt, self.timeout, f"convert to {target.value}"
        )

        logger.info(f"Converted {source_doc_type} {source_key} into {target.value} {new_number}")
        await self.publisher.publish(DocumentConverted(
            document_id=new_id,
            document_type=target.value,
            document_number=new_number,
            source_id=source_key,
            source_type=source_doc_type,
        ))
        return ConversionResult(source_id=source_key, new_id=new_id, new_document_number=new_number)
