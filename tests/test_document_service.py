"""Tests for DocumentService (create, read, update, delete, status, stats)"""

import asyncio
import uuid
import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func

from billing_engine.core.exceptions import (
    NotFoundError,
    OperationTimeoutError,
    PersistenceError,
    ValidationError,
)
from billing_engine.models.document import (
    Document,
    DocumentCounter,
    DocumentItem,
    DocumentStatus,
    DocumentType,
)
from billing_engine.services import document_service as document_service_module
from billing_engine.services.document_service import DocumentService
from billing_engine.services.events import (
    DocumentCreated,
    DocumentDeleted,
    DocumentStatusChanged,
    DocumentUpdated,
)


async def _count(session_factory, model, *criteria) -> int:
    async with session_factory() as db:
        query = select(func.count()).select_from(model)
        if criteria:
            query = query.where(*criteria)
        return (await db.execute(query)).scalar_one()


class TestCreateDocument:

    async def test_create_sales_invoice(self, document_service, make_payload, events):
        result = await document_service.create_document("sales", make_payload())

        assert result.document_number == "INV-0001"
        assert result.totals.sub_total == Decimal("1000.00")
        assert result.totals.sgst_total == Decimal("90.00")
        assert result.totals.cgst_total == Decimal("90.00")
        assert result.totals.grand_total == Decimal("1180.00")

        assert len(events) == 1
        assert isinstance(events[0], DocumentCreated)
        assert events[0].document_id == result.id

    async def test_persisted_header_and_items(self, document_service, make_payload):
        result = await document_service.create_document(DocumentType.SALES, make_payload())

        document = await document_service.get_document(DocumentType.SALES, result.id)
        assert document.document_type == "SALES"
        assert document.status == DocumentStatus.DRAFT.value
        assert document.document_date == date(2024, 5, 1)
        assert document.grand_total == Decimal("1180.00")
        assert document.amount_in_words.startswith("Rupees One Thousand")
        assert document.notes == ["Thank you for your business"]

        assert len(document.items) == 1
        item = document.items[0]
        assert item.line_number == 1
        assert item.base_amount == Decimal("1000.00")
        assert item.line_total == item.taxable_amount
        assert item.sgst_percent == Decimal("9.00")
        assert item.igst_percent == Decimal("0.00")

    async def test_totals_match_items(self, document_service, make_payload):
        payload = make_payload(
            tax_type=None,
            shipping_address="Hinjewadi, Pune 411057",
            items=[
                {"description": "Filter", "quantity": 3, "rate": "199.99", "tax_percent": 5},
                {"description": "Membrane", "quantity": "1.5", "rate": "1200.10", "discount_percent": 7},
            ],
        )
        result = await document_service.create_document(DocumentType.SALES, payload)
        document = await document_service.get_document(DocumentType.SALES, result.id)

        assert abs(document.sub_total - sum(i.base_amount for i in document.items)) <= Decimal("0.01")
        assert abs(document.tax_total - sum(i.tax_amount for i in document.items)) <= Decimal("0.01")
        assert document.sgst_total == Decimal("0.00")
        assert document.igst_total > 0
        assert document.extended_attributes["tax_type"] == "igst"

    async def test_extended_attributes_record(self, document_service, make_payload):
        payload = make_payload(
            discount={"type": "PERCENT", "value": "5"},
            additional_charges=[{"name": "Freight", "amount": "150"}],
            apply_tcs=True,
            attributes={"payment_terms": "Net 30", "eway_bill_number": "EWB123"},
        )
        result = await document_service.create_document(DocumentType.SALES, payload)
        document = await document_service.get_document(DocumentType.SALES, result.id)

        attributes = document.extended_attributes
        assert attributes["schema_version"] == 1
        assert attributes["discount"] == {"type": "percent", "value": "5"}
        assert attributes["apply_tcs"] is True
        assert attributes["conversion_status"] == "active"
        assert attributes["details"] == {"payment_terms": "Net 30", "eway_bill_number": "EWB123"}
        assert document.discount_total == Decimal("50.00")
        assert document.tcs_amount == Decimal("11.00")

    async def test_unknown_attribute_rejected(self, document_service, make_payload):
        payload = make_payload(attributes={"vehicle_number": "TN01AB1234"})

        with pytest.raises(ValidationError):
            await document_service.create_document(DocumentType.SALES, payload)

    async def test_type_specific_attribute_accepted(self, document_service, make_payload):
        payload = make_payload(attributes={"vehicle_number": "TN01AB1234", "transport_mode": "Road"})
        result = await document_service.create_document(DocumentType.DELIVERY_CHALLAN, payload)
        assert result.document_number == "DC-0001"

    async def test_datetime_string_truncated(self, document_service, make_payload):
        result = await document_service.create_document(
            DocumentType.PROFORMA,
            make_payload(date="2024-06-15T18:30:00.000Z", due_date="2024-07-15T00:00:00Z"),
        )
        document = await document_service.get_document(DocumentType.PROFORMA, result.id)
        assert document.document_date == date(2024, 6, 15)
        assert document.due_date == date(2024, 7, 15)

    async def test_status_case_insensitive(self, document_service, make_payload):
        result = await document_service.create_document(DocumentType.SALES, make_payload(status="pending"))
        document = await document_service.get_document(DocumentType.SALES, result.id)
        assert document.status == "PENDING"

    async def test_invalid_line_rolls_nothing(self, document_service, make_payload, session_factory, events):
        payload = make_payload(items=[{"quantity": -1, "rate": 100}])

        with pytest.raises(ValidationError):
            await document_service.create_document(DocumentType.SALES, payload)

        assert await _count(session_factory, Document) == 0
        assert events == []

    async def test_quantity_beyond_three_places_rejected(self, document_service, make_payload, session_factory):
        payload = make_payload(items=[{"quantity": "0.0004", "rate": 100}])

        with pytest.raises(ValidationError, match="3 decimal places"):
            await document_service.create_document(DocumentType.SALES, payload)

        assert await _count(session_factory, Document) == 0

    async def test_stored_quantity_matches_input(self, document_service, make_payload):
        result = await document_service.create_document(
            DocumentType.SALES, make_payload(items=[{"quantity": "0.125", "rate": 100}])
        )

        document = await document_service.get_document(DocumentType.SALES, result.id)
        assert document.items[0].quantity == Decimal("0.125")
        assert document.items[0].base_amount == Decimal("12.50")

    async def test_very_large_total_written_in_figures(self, document_service, make_payload):
        result = await document_service.create_document(
            DocumentType.SALES, make_payload(items=[{"quantity": 100, "rate": 100000000}])
        )

        document = await document_service.get_document(DocumentType.SALES, result.id)
        assert document.grand_total == Decimal("11800000000.00")
        assert document.amount_in_words == "INR 11,800,000,000.00"

    async def test_items_required(self, document_service, make_payload):
        with pytest.raises(ValidationError):
            await document_service.create_document(DocumentType.SALES, make_payload(items=[]))

    async def test_unknown_party(self, document_service, make_payload, session_factory):
        payload = make_payload(party_id=str(uuid.uuid4()))

        with pytest.raises(ValidationError, match="Party"):
            await document_service.create_document(DocumentType.SALES, payload)

        assert await _count(session_factory, Document) == 0
        assert await _count(session_factory, DocumentCounter) == 0

    async def test_unknown_document_type(self, document_service, make_payload):
        with pytest.raises(ValidationError):
            await document_service.create_document("QUOTATION", make_payload())

    async def test_failure_after_header_rolls_back(self, document_service, make_payload, session_factory, monkeypatch):
        def broken_items(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(document_service_module, "build_items", broken_items)

        with pytest.raises(RuntimeError):
            await document_service.create_document(DocumentType.SALES, make_payload())

        assert await _count(session_factory, Document) == 0
        monkeypatch.undo()

        result = await document_service.create_document(DocumentType.SALES, make_payload())
        assert result.document_number == "INV-0001"

    async def test_timeout_rolls_back(self, session_factory, make_payload, monkeypatch):
        async def slow_party_check(db, party_id):
            await asyncio.sleep(5)

        monkeypatch.setattr(document_service_module, "ensure_party", slow_party_check)
        service = DocumentService(session_factory=session_factory, timeout=0.05)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await service.create_document(DocumentType.SALES, make_payload())

        assert isinstance(exc_info.value, PersistenceError)
        assert exc_info.value.kind == "timeout"
        assert await _count(session_factory, Document) == 0
        assert await _count(session_factory, DocumentCounter) == 0

    async def test_numbers_per_type_are_independent(self, document_service, make_payload):
        first = await document_service.create_document(DocumentType.SALES, make_payload())
        second = await document_service.create_document(DocumentType.SALES, make_payload())
        note = await document_service.create_document(DocumentType.CREDIT_NOTE, make_payload())

        assert (first.document_number, second.document_number) == ("INV-0001", "INV-0002")
        assert note.document_number == "CN-0001"


class TestReadDocuments:

    async def test_get_wrong_type_is_not_found(self, document_service, make_payload):
        result = await document_service.create_document(DocumentType.SALES, make_payload())

        with pytest.raises(NotFoundError):
            await document_service.get_document(DocumentType.PROFORMA, result.id)

    async def test_get_missing(self, document_service):
        with pytest.raises(NotFoundError) as exc_info:
            await document_service.get_document(DocumentType.SALES, uuid.uuid4())
        assert exc_info.value.kind == "not_found"

    async def test_list_newest_first_with_totals(self, document_service, make_payload):
        for quantity in (1, 2, 3):
            await document_service.create_document(
                DocumentType.SALES,
                make_payload(items=[{"quantity": quantity, "rate": 100}]),
            )
        await document_service.create_document(DocumentType.PROFORMA, make_payload())

        listing = await document_service.list_documents(DocumentType.SALES)

        assert listing.total == 3
        assert [d.document_number for d in listing.items] == ["INV-0003", "INV-0002", "INV-0001"]
        assert listing.total_value == Decimal("708.00")

    async def test_list_filters(self, document_service, make_payload, party):
        await document_service.create_document(DocumentType.SALES, make_payload(date="2024-01-10"))
        paid = await document_service.create_document(DocumentType.SALES, make_payload(date="2024-02-10"))
        await document_service.update_status(DocumentType.SALES, paid.id, "paid")

        by_status = await document_service.list_documents(DocumentType.SALES, {"status": "PAID"})
        assert [d.id for d in by_status.items] == [paid.id]

        by_date = await document_service.list_documents(
            DocumentType.SALES, {"date_from": date(2024, 2, 1), "date_to": date(2024, 2, 28)}
        )
        assert by_date.total == 1

        by_search = await document_service.list_documents(DocumentType.SALES, {"search": "0002"})
        assert [d.document_number for d in by_search.items] == ["INV-0002"]

        by_party = await document_service.list_documents(DocumentType.SALES, {"party_id": party.id})
        assert by_party.total == 2

    async def test_list_pagination(self, document_service, make_payload):
        for _ in range(3):
            await document_service.create_document(DocumentType.SALES, make_payload())

        page = await document_service.list_documents(DocumentType.SALES, skip=1, limit=1)
        assert page.total == 3
        assert [d.document_number for d in page.items] == ["INV-0002"]

    async def test_list_unknown_status_filter(self, document_service):
        with pytest.raises(ValidationError):
            await document_service.list_documents(DocumentType.SALES, {"status": "ARCHIVED"})

    async def test_stats(self, document_service, make_payload):
        first = await document_service.create_document(DocumentType.DEBIT_NOTE, make_payload())
        await document_service.create_document(DocumentType.DEBIT_NOTE, make_payload())
        await document_service.update_status(DocumentType.DEBIT_NOTE, first.id, DocumentStatus.PAID)

        stats = await document_service.get_stats(DocumentType.DEBIT_NOTE)

        assert stats.total_count == 2
        assert stats.total_value == Decimal("2360.00")
        assert stats.paid_count == 1
        assert stats.draft_count == 1

    async def test_stats_empty(self, document_service):
        stats = await document_service.get_stats(DocumentType.PURCHASE_ORDER)
        assert stats.total_count == 0
        assert stats.total_value == Decimal("0.00")

    async def test_preview_next_number(self, document_service, make_payload):
        assert await document_service.preview_next_number("sales") == "INV-0001"
        await document_service.create_document(DocumentType.SALES, make_payload())
        assert await document_service.preview_next_number("sales") == "INV-0002"
        assert await document_service.preview_next_number("sales") == "INV-0002"


class TestUpdateDocument:

    async def test_replaces_items_and_totals(self, document_service, make_payload, session_factory, events):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        updated = await document_service.update_document(
            DocumentType.SALES,
            created.id,
            make_payload(items=[
                {"description": "Pump", "quantity": 1, "rate": 500},
                {"description": "Tap", "quantity": 2, "rate": 50},
            ]),
        )

        assert updated.id == created.id
        assert updated.document_number == "INV-0001"
        assert updated.totals.sub_total == Decimal("600.00")

        document = await document_service.get_document(DocumentType.SALES, created.id)
        assert [i.description for i in document.items] == ["Pump", "Tap"]
        assert document.grand_total == Decimal("708.00")
        assert await _count(session_factory, DocumentItem) == 2
        assert isinstance(events[-1], DocumentUpdated)

    async def test_failure_after_item_delete_keeps_original_items(
        self, document_service, make_payload, session_factory, monkeypatch
    ):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        def broken_items(*args, **kwargs):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(document_service_module, "build_items", broken_items)

        with pytest.raises(RuntimeError):
            await document_service.update_document(
                DocumentType.SALES,
                created.id,
                make_payload(items=[{"description": "Pump", "quantity": 1, "rate": 500}]),
            )

        document = await document_service.get_document(DocumentType.SALES, created.id)
        assert [i.description for i in document.items] == ["RO Water Purifier"]
        assert document.grand_total == Decimal("1180.00")

    async def test_keeps_status_when_not_given(self, document_service, make_payload):
        created = await document_service.create_document(DocumentType.SALES, make_payload())
        await document_service.update_status(DocumentType.SALES, created.id, "PARTIAL")

        await document_service.update_document(DocumentType.SALES, created.id, make_payload())

        document = await document_service.get_document(DocumentType.SALES, created.id)
        assert document.status == "PARTIAL"

    async def test_missing_document(self, document_service, make_payload):
        with pytest.raises(NotFoundError):
            await document_service.update_document(DocumentType.SALES, uuid.uuid4(), make_payload())

    async def test_wrong_type(self, document_service, make_payload):
        created = await document_service.create_document(DocumentType.SALES, make_payload())
        with pytest.raises(NotFoundError):
            await document_service.update_document(DocumentType.CREDIT_NOTE, created.id, make_payload())


class TestStatusAndDelete:

    async def test_update_status(self, document_service, make_payload, events):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        document = await document_service.update_status(DocumentType.SALES, created.id, "delivered")

        assert document.status == "DELIVERED"
        event = events[-1]
        assert isinstance(event, DocumentStatusChanged)
        assert (event.old_status, event.new_status) == ("DRAFT", "DELIVERED")

    async def test_unknown_status_rejected_before_write(self, document_service, make_payload):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        with pytest.raises(ValidationError):
            await document_service.update_status(DocumentType.SALES, created.id, "ARCHIVED")

        document = await document_service.get_document(DocumentType.SALES, created.id)
        assert document.status == "DRAFT"

    async def test_status_missing_document(self, document_service):
        with pytest.raises(NotFoundError):
            await document_service.update_status(DocumentType.SALES, uuid.uuid4(), "PAID")

    async def test_delete_removes_items(self, document_service, make_payload, session_factory, events):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        await document_service.delete_document(DocumentType.SALES, created.id)

        assert await _count(session_factory, Document) == 0
        assert await _count(session_factory, DocumentItem) == 0
        assert isinstance(events[-1], DocumentDeleted)
        with pytest.raises(NotFoundError):
            await document_service.get_document(DocumentType.SALES, created.id)

    async def test_delete_wrong_type(self, document_service, make_payload, session_factory):
        created = await document_service.create_document(DocumentType.SALES, make_payload())

        with pytest.raises(NotFoundError):
            await document_service.delete_document(DocumentType.PROFORMA, created.id)

        assert await _count(session_factory, Document) == 1


class TestEvents:

    async def test_failing_handler_does_not_undo_write(self, document_service, make_payload, publisher, session_factory):
        async def broken_handler(event):
            raise RuntimeError("smtp down")

        publisher.subscribe(DocumentCreated, broken_handler)

        result = await document_service.create_document(DocumentType.SALES, make_payload())

        assert result.document_number == "INV-0001"
        assert await _count(session_factory, Document) == 1
