"""Document Service - one transactional engine for every billing document type.

Pipeline for create/update:
    validate payload -> resolve jurisdiction -> compute lines -> aggregate
    -> open transaction -> allocate number / lock header -> verify party
    -> write header + items -> commit -> publish event

Proforma, Sales, Credit note, Debit note, Delivery challan and Purchase
order all go through the same code; the document type is a parameter.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, delete, update, func, case, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_engine.config import settings
from billing_engine.database import get_db_session, async_session_factory
from billing_engine.core.enum_utils import to_enum
from billing_engine.core.exceptions import NotFoundError, ValidationError
from billing_engine.models.document import (
    Document,
    DocumentItem,
    DocumentStatus,
    DocumentType,
    Party,
    TaxType,
)
from billing_engine.schemas.document import (
    DETAILS_SCHEMAS,
    DocumentBrief,
    DocumentListResponse,
    DocumentPayload,
    DocumentStats,
    DocumentTotalsResponse,
    DocumentWriteResult,
    ExtendedAttributes,
)
from billing_engine.services.billing_calculator import (
    DocumentTotals,
    LineAmounts,
    QUANTITY_PLACES,
    aggregate_totals,
    amount_in_words,
    calculate_lines,
    money,
    resolve_jurisdiction,
)
from billing_engine.services.document_sequence_service import DocumentSequenceService
from billing_engine.services.events import (
    EventPublisher,
    DocumentCreated,
    DocumentDeleted,
    DocumentStatusChanged,
    DocumentUpdated,
    event_publisher,
)
from billing_engine.services.transaction_utils import (
    parse_model,
    run_numbered,
    run_with_timeout,
    storage_errors,
)


logger = logging.getLogger(__name__)

# Linkage keys owned by the conversion service, kept across updates
LINKAGE_FIELDS = ("conversion_status", "converted_from_id", "converted_to_id")


@dataclass(frozen=True)
class PreparedDocument:
    """Everything computed from a payload before the transaction opens."""
    payload: DocumentPayload
    tax_type: TaxType
    lines: List[LineAmounts]
    totals: DocumentTotals
    attributes: Dict[str, Any]


def resolve_document_type(document_type: Union[DocumentType, str]) -> DocumentType:
    doc_type = to_enum(document_type, DocumentType)
    if doc_type is None:
        valid_types = ", ".join(t.value for t in DocumentType)
        raise ValidationError(
            f"Invalid document type '{document_type}'. Valid types: {valid_types}",
            {"field": "document_type"}
        )
    return doc_type


def build_items(document_id: uuid.UUID, items: List[Any], lines: List[LineAmounts]) -> List[DocumentItem]:
    """Line item rows for a document, amounts rounded for storage."""
    rows = []
    for line_number, (item, line) in enumerate(zip(items, lines), start=1):
        rows.append(DocumentItem(
            document_id=document_id,
            line_number=line_number,
            description=item.description or "",
            hsn_code=item.hsn_code or "",
            unit_of_measure=item.unit_of_measure or "",
            quantity=line.quantity.quantize(QUANTITY_PLACES),
            rate=money(line.rate),
            discount_percent=money(line.discount_percent),
            tax_percent=money(line.tax_percent),
            sgst_percent=money(line.sgst_percent),
            cgst_percent=money(line.cgst_percent),
            igst_percent=money(line.igst_percent),
            base_amount=money(line.base_amount),
            discount_amount=money(line.discount_amount),
            taxable_amount=money(line.taxable_amount),
            tax_amount=money(line.tax_amount),
            sgst_amount=money(line.sgst_amount),
            cgst_amount=money(line.cgst_amount),
            igst_amount=money(line.igst_amount),
            line_total=money(line.line_total),
        ))
    return rows


def apply_totals(document: Document, totals: DocumentTotals) -> None:
    """Write rounded document totals onto a header row."""
    rounded = totals.quantized()
    document.sub_total = rounded.sub_total
    document.discount_total = rounded.discount_total
    document.additional_charges_total = rounded.additional_charges_total
    document.taxable_amount = rounded.taxable_amount
    document.tcs_amount = rounded.tcs_amount
    document.tax_total = rounded.tax_total
    document.sgst_total = rounded.sgst_total
    document.cgst_total = rounded.cgst_total
    document.igst_total = rounded.igst_total
    document.round_off = rounded.round_off
    document.grand_total = rounded.grand_total
    document.amount_in_words = amount_in_words(rounded.grand_total)


def validated_attributes(attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Run a merged attribute record back through ``ExtendedAttributes``."""
    record = parse_model(ExtendedAttributes, attributes, "extended_attributes")
    return record.model_dump(mode="json")


async def lock_document(db: AsyncSession, document_id: uuid.UUID) -> None:
    """
    Take the write lock on a document row before reading it.

    SQLite ignores FOR UPDATE and only locks the database at the first write
    statement, so the lock is taken with a no-op UPDATE. On PostgreSQL this
    row-locks the header like SELECT ... FOR UPDATE.
    """
    await db.execute(
        update(Document)
        .where(Document.id == document_id)
        .values(updated_at=Document.updated_at)
        .execution_options(synchronize_session=False)
    )


async def ensure_party(db: AsyncSession, party_id: uuid.UUID) -> Party:
    party = await db.get(Party, party_id)
    if not party:
        raise ValidationError(f"Party {party_id} not found", {"field": "party_id"})
    return party


class DocumentService:
    """Create, read, update and delete billing documents of any type."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        publisher: Optional[EventPublisher] = None,
        timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.publisher = publisher or event_publisher
        self.timeout = timeout if timeout is not None else settings.OPERATION_TIMEOUT_SECONDS

    # ==================== Preparation ====================

    def prepare(
        self,
        document_type: DocumentType,
        payload: Union[DocumentPayload, Dict[str, Any]],
    ) -> PreparedDocument:
        """Validate a payload and compute every derived amount. No I/O."""
        payload = parse_model(DocumentPayload, payload)

        if not payload.items:
            raise ValidationError("At least one line item is required", {"field": "items"})

        details_schema = DETAILS_SCHEMAS[document_type]
        details = parse_model(details_schema, payload.attributes, "attributes")

        tax_type = resolve_jurisdiction(payload.tax_type, payload.shipping_address)
        lines = calculate_lines(payload.items, tax_type)
        totals = aggregate_totals(
            lines,
            discount=payload.discount,
            additional_charges=payload.additional_charges,
            apply_tcs=payload.apply_tcs,
            rounding_applied=payload.rounding_applied,
        )

        attributes = ExtendedAttributes(
            tax_type=tax_type,
            discount=payload.discount,
            additional_charges=payload.additional_charges,
            apply_tcs=payload.apply_tcs,
            rounding_applied=payload.rounding_applied,
            billing_address=payload.billing_address,
            shipping_address=payload.shipping_address,
            details=details.model_dump(mode="json", exclude_none=True),
        )

        return PreparedDocument(
            payload=payload,
            tax_type=tax_type,
            lines=lines,
            totals=totals,
            attributes=attributes.model_dump(mode="json"),
        )

    @staticmethod
    def _write_result(document_id: uuid.UUID, number: str, totals: DocumentTotals) -> DocumentWriteResult:
        return DocumentWriteResult(
            id=document_id,
            document_number=number,
            totals=DocumentTotalsResponse(**totals.quantized().as_dict()),
        )

    # ==================== Create ====================

    async def create_document(
        self,
        document_type: Union[DocumentType, str],
        payload: Union[DocumentPayload, Dict[str, Any]],
    ) -> DocumentWriteResult:
        """
        Create a document with its line items in one transaction.

        Raises:
            ValidationError: Bad payload, unknown party
            ConflictError: Numbering collision persisted after retry
            PersistenceError: Storage failure or timeout
        """
        doc_type = resolve_document_type(document_type)
        prepared = self.prepare(doc_type, payload)
        data = prepared.payload

        async def attempt(resync: bool):
            async with get_db_session(self.session_factory) as db:
                sequence_service = DocumentSequenceService(db)
                document_number = await sequence_service.get_next_number(doc_type, resync=resync)

                await ensure_party(db, data.party_id)

                document = Document(
                    id=uuid.uuid4(),
                    document_type=doc_type.value,
                    document_number=document_number,
                    party_id=data.party_id,
                    document_date=data.document_date or date.today(),
                    due_date=data.due_date,
                    status=(data.status or DocumentStatus.DRAFT).value,
                    notes=list(data.notes),
                    extended_attributes=prepared.attributes,
                )
                apply_totals(document, prepared.totals)
                db.add(document)
                db.add_all(build_items(document.id, data.items, prepared.lines))
                await db.flush()
                return document.id, document_number

        document_id, document_number = await run_numbered(
            attempt, self.timeout, f"create {doc_type.value}"
        )

        logger.info(
            f"Created {doc_type.value} {document_number} "
            f"(grand total {money(prepared.totals.grand_total)})"
        )
        await self.publisher.publish(DocumentCreated(
            document_id=document_id,
            document_type=doc_type.value,
            document_number=document_number,
            grand_total=money(prepared.totals.grand_total),
        ))
        return self._write_result(document_id, document_number, prepared.totals)

    # ==================== Read ====================

    async def _load(
        self,
        db: AsyncSession,
        document_type: DocumentType,
        document_id: uuid.UUID,
        with_items: bool = False,
        for_update: bool = False,
    ) -> Document:
        query = select(Document).where(
            Document.id == document_id,
            Document.document_type == document_type.value,
        )
        if with_items:
            query = query.options(selectinload(Document.items))
        if for_update:
            await lock_document(db, document_id)
            query = query.with_for_update()

        result = await db.execute(query)
        document = result.scalar_one_or_none()
        if not document:
            raise NotFoundError(
                f"{document_type.value} {document_id} not found",
                {"document_type": document_type.value, "document_id": str(document_id)}
            )
        return document

    async def get_document(
        self,
        document_type: Union[DocumentType, str],
        document_id: uuid.UUID,
    ) -> Document:
        """Get a document header with its items."""
        doc_type = resolve_document_type(document_type)
        with storage_errors(f"get {doc_type.value}"):
            async with self.session_factory() as db:
                return await self._load(db, doc_type, document_id, with_items=True)

    def _filtered(self, query, document_type: DocumentType, filters: Dict[str, Any]):
        query = query.where(Document.document_type == document_type.value)

        status = filters.get("status")
        if status:
            status_enum = to_enum(status, DocumentStatus)
            if status_enum is None:
                raise ValidationError(f"Unknown status: {status}", {"field": "status"})
            query = query.where(Document.status == status_enum.value)
        if filters.get("party_id"):
            query = query.where(Document.party_id == filters["party_id"])
        if filters.get("date_from"):
            query = query.where(Document.document_date >= filters["date_from"])
        if filters.get("date_to"):
            query = query.where(Document.document_date <= filters["date_to"])
        if filters.get("search"):
            search = f"%{filters['search']}%"
            query = query.where(or_(
                Document.document_number.ilike(search),
                Document.amount_in_words.ilike(search),
            ))
        return query

    async def list_documents(
        self,
        document_type: Union[DocumentType, str],
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> DocumentListResponse:
        """
        List documents of a type, newest first.

        Filters: status, party_id, date_from, date_to, search (document number).
        """
        doc_type = resolve_document_type(document_type)
        filters = filters or {}

        with storage_errors(f"list {doc_type.value}"):
            async with self.session_factory() as db:
                summary_query = self._filtered(
                    select(
                        func.count(Document.id),
                        func.coalesce(func.sum(Document.grand_total), 0),
                    ),
                    doc_type,
                    filters,
                )
                total, total_value = (await db.execute(summary_query)).one()

                page_query = (
                    self._filtered(select(Document), doc_type, filters)
                    .order_by(Document.created_at.desc())
                    .offset(skip)
                    .limit(limit)
                )
                documents = (await db.execute(page_query)).scalars().all()

        return DocumentListResponse(
            items=[DocumentBrief.model_validate(d) for d in documents],
            total=total or 0,
            total_value=money(total_value),
            skip=skip,
            limit=limit,
        )

    async def get_stats(self, document_type: Union[DocumentType, str]) -> DocumentStats:
        """Count, total value, paid count and draft count for a type."""
        doc_type = resolve_document_type(document_type)

        with storage_errors(f"stats {doc_type.value}"):
            async with self.session_factory() as db:
                result = await db.execute(
                    select(
                        func.count(Document.id),
                        func.coalesce(func.sum(Document.grand_total), 0),
                        func.count(case((Document.status == DocumentStatus.PAID.value, 1))),
                        func.count(case((Document.status == DocumentStatus.DRAFT.value, 1))),
                    ).where(Document.document_type == doc_type.value)
                )
                total_count, total_value, paid_count, draft_count = result.one()

        return DocumentStats(
            document_type=doc_type,
            total_count=total_count or 0,
            total_value=money(total_value),
            paid_count=paid_count or 0,
            draft_count=draft_count or 0,
        )

    async def preview_next_number(self, document_type: Union[DocumentType, str]) -> str:
        """Next number for a type, without reserving it."""
        doc_type = resolve_document_type(document_type)
        with storage_errors(f"preview {doc_type.value} number"):
            async with self.session_factory() as db:
                return await DocumentSequenceService(db).preview_next_number(doc_type)

    # ==================== Update ====================

    async def update_document(
        self,
        document_type: Union[DocumentType, str],
        document_id: uuid.UUID,
        payload: Union[DocumentPayload, Dict[str, Any]],
    ) -> DocumentWriteResult:
        """
        Replace a document's header and items in one transaction.

        All existing items are deleted and the new set inserted; on any
        failure the original items remain. The document number and the
        conversion linkage are kept.
        """
        doc_type = resolve_document_type(document_type)
        prepared = self.prepare(doc_type, payload)
        data = prepared.payload

        async def replace():
            async with get_db_session(self.session_factory) as db:
                document = await self._load(db, doc_type, document_id, for_update=True)
                await ensure_party(db, data.party_id)

                await db.execute(
                    delete(DocumentItem).where(DocumentItem.document_id == document.id)
                )
                db.add_all(build_items(document.id, data.items, prepared.lines))

                attributes = dict(prepared.attributes)
                existing = document.extended_attributes or {}
                for key in LINKAGE_FIELDS:
                    if key in existing:
                        attributes[key] = existing[key]

                document.party_id = data.party_id
                if data.document_date:
                    document.document_date = data.document_date
                document.due_date = data.due_date
                if data.status:
                    document.status = data.status.value
                document.notes = list(data.notes)
                document.extended_attributes = validated_attributes(attributes)
                apply_totals(document, prepared.totals)

                await db.flush()
                return document.document_number

        action = f"update {doc_type.value}"
        with storage_errors(action):
            document_number = await run_with_timeout(replace(), self.timeout, action)

        logger.info(f"Updated {doc_type.value} {document_number}")
        await self.publisher.publish(DocumentUpdated(
            document_id=document_id,
            document_type=doc_type.value,
            document_number=document_number,
            grand_total=money(prepared.totals.grand_total),
        ))
        return self._write_result(document_id, document_number, prepared.totals)

    async def update_status(
        self,
        document_type: Union[DocumentType, str],
        document_id: uuid.UUID,
        status: Union[DocumentStatus, str],
    ) -> Document:
        """Set the status column only. Any status may follow any other."""
        doc_type = resolve_document_type(document_type)
        new_status = to_enum(status, DocumentStatus)
        if new_status is None:
            valid = ", ".join(s.value for s in DocumentStatus)
            raise ValidationError(
                f"Invalid status '{status}'. Valid statuses: {valid}",
                {"field": "status"}
            )

        async def change():
            async with get_db_session(self.session_factory) as db:
                document = await self._load(db, doc_type, document_id, for_update=True)
                old_status = document.status
                document.status = new_status.value
                await db.flush()
                return document, old_status

        action = f"update {doc_type.value} status"
        with storage_errors(action):
            document, old_status = await run_with_timeout(change(), self.timeout, action)

        logger.info(
            f"{doc_type.value} {document.document_number} status {old_status} -> {new_status.value}"
        )
        await self.publisher.publish(DocumentStatusChanged(
            document_id=document.id,
            document_type=doc_type.value,
            document_number=document.document_number,
            old_status=old_status,
            new_status=new_status.value,
        ))
        return document

    # ==================== Delete ====================

    async def delete_document(
        self,
        document_type: Union[DocumentType, str],
        document_id: uuid.UUID,
    ) -> None:
        """Delete a document and its line items."""
        doc_type = resolve_document_type(document_type)

        async def remove():
            async with get_db_session(self.session_factory) as db:
                document = await self._load(db, doc_type, document_id, for_update=True)
                document_number = document.document_number
                await db.execute(
                    delete(DocumentItem).where(DocumentItem.document_id == document.id)
                )
                await db.execute(
                    delete(Document).where(Document.id == document.id)
                )
                return document_number

        action = f"delete {doc_type.value}"
        with storage_errors(action):
            document_number = await run_with_timeout(remove(), self.timeout, action)

        logger.info(f"Deleted {doc_type.value} {document_number}")
        await self.publisher.publish(DocumentDeleted(
            document_id=document_id,
            document_type=doc_type.value,
            document_number=document_number,
        ))
