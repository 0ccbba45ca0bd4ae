"""Pydantic schemas for billing documents.

Three families live here:
- request payloads (``DocumentPayload`` and friends), lenient about unknown keys;
- the persisted ``ExtendedAttributes`` record with per-type ``details``,
  strict about unknown keys and versioned;
- response / result objects returned by the services.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from billing_engine.schemas.base import (
    BaseResponseSchema,
    BaseCreateSchema,
    StrictRecordSchema,
    normalize_date,
)
from billing_engine.models.document import (
    DocumentType,
    DocumentStatus,
    TaxType,
    DiscountType,
    ConversionStatus,
)
from billing_engine.core.enum_utils import (
    create_uppercase_validator,
    VALID_DOCUMENT_STATUSES,
    VALID_DOCUMENT_TYPES,
)


EXTENDED_ATTRIBUTES_VERSION = 1


# ==================== Request payloads ====================

class LineItemInput(BaseCreateSchema):
    """One line of a document payload. Amount fields are always derived."""
    description: str = ""
    hsn_code: str = ""
    unit_of_measure: str = ""
    quantity: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    tax_percent: Optional[Decimal] = None
    sgst_percent: Optional[Decimal] = None
    cgst_percent: Optional[Decimal] = None
    igst_percent: Optional[Decimal] = None


class DiscountInput(StrictRecordSchema):
    """Document-level discount: flat amount or percent of sub total."""
    type: DiscountType = DiscountType.FLAT
    value: Optional[Decimal] = None

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class AdditionalCharge(StrictRecordSchema):
    name: str = ""
    amount: Decimal = Decimal("0")


class DocumentPayload(BaseCreateSchema):
    """Create/update payload shared by every document type."""
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    party_id: UUID
    document_date: Optional[date] = Field(default=None, alias="date")
    due_date: Optional[date] = None
    status: Optional[DocumentStatus] = None  # DRAFT on create, unchanged on update
    notes: List[str] = Field(default_factory=list)
    tax_type: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    items: List[LineItemInput] = Field(default_factory=list)
    discount: Optional[DiscountInput] = None
    additional_charges: List[AdditionalCharge] = Field(default_factory=list)
    apply_tcs: bool = False
    rounding_applied: bool = False
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Per-type details (payment terms, PO number, e-way bill, ...)"
    )

    _normalize_status = create_uppercase_validator('status', VALID_DOCUMENT_STATUSES)

    @field_validator('document_date', 'due_date', mode='before')
    @classmethod
    def normalize_dates(cls, v):
        return normalize_date(v)

    @field_validator('notes', mode='before')
    @classmethod
    def normalize_notes(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v


class StatusUpdateRequest(BaseCreateSchema):
    status: DocumentStatus

    _normalize_status = create_uppercase_validator('status', VALID_DOCUMENT_STATUSES)


class ConvertRequest(BaseCreateSchema):
    target_type: DocumentType = DocumentType.SALES

    _normalize_target_type = create_uppercase_validator('target_type', VALID_DOCUMENT_TYPES)


# ==================== Persisted attribute record ====================

class DocumentDetails(StrictRecordSchema):
    """Fields common to every document type."""
    payment_terms: Optional[str] = None
    payment_mode: Optional[str] = None
    bank_details_id: Optional[str] = None
    po_number: Optional[str] = None
    po_date: Optional[date] = None

    @field_validator('po_date', mode='before')
    @classmethod
    def normalize_po_date(cls, v):
        return normalize_date(v)


class ProformaDetails(DocumentDetails):
    validity_date: Optional[date] = None

    @field_validator('validity_date', mode='before')
    @classmethod
    def normalize_validity_date(cls, v):
        return normalize_date(v)


class SalesDetails(DocumentDetails):
    eway_bill_number: Optional[str] = None


class CreditNoteDetails(DocumentDetails):
    original_invoice_number: Optional[str] = None
    reason: Optional[str] = None


class DebitNoteDetails(DocumentDetails):
    original_invoice_number: Optional[str] = None
    reason: Optional[str] = None


class DeliveryChallanDetails(DocumentDetails):
    vehicle_number: Optional[str] = None
    transport_mode: Optional[str] = None
    eway_bill_number: Optional[str] = None


class PurchaseOrderDetails(DocumentDetails):
    order_number: Optional[str] = None
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None

    @field_validator('order_date', 'expected_delivery_date', mode='before')
    @classmethod
    def normalize_order_dates(cls, v):
        return normalize_date(v)


DETAILS_SCHEMAS: Dict[DocumentType, Type[DocumentDetails]] = {
    DocumentType.PROFORMA: ProformaDetails,
    DocumentType.SALES: SalesDetails,
    DocumentType.CREDIT_NOTE: CreditNoteDetails,
    DocumentType.DEBIT_NOTE: DebitNoteDetails,
    DocumentType.DELIVERY_CHALLAN: DeliveryChallanDetails,
    DocumentType.PURCHASE_ORDER: PurchaseOrderDetails,
}


class ExtendedAttributes(StrictRecordSchema):
    """
    Structured attribute record stored in ``invoices.extended_attributes``.

    ``details`` is validated separately against the schema of the owning
    document type (see ``DETAILS_SCHEMAS``) and kept here in its dumped form.
    """
    schema_version: int = EXTENDED_ATTRIBUTES_VERSION
    tax_type: TaxType = TaxType.SGST_CGST
    discount: Optional[DiscountInput] = None
    additional_charges: List[AdditionalCharge] = Field(default_factory=list)
    apply_tcs: bool = False
    rounding_applied: bool = False
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    conversion_status: ConversionStatus = ConversionStatus.ACTIVE
    converted_from_id: Optional[UUID] = None
    converted_to_id: Optional[UUID] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# ==================== Responses ====================

class DocumentTotalsResponse(BaseResponseSchema):
    sub_total: Decimal
    discount_total: Decimal
    additional_charges_total: Decimal
    taxable_amount: Decimal
    tcs_amount: Decimal
    tax_total: Decimal
    sgst_total: Decimal
    cgst_total: Decimal
    igst_total: Decimal
    round_off: Decimal
    grand_total: Decimal


class DocumentWriteResult(BaseModel):
    """Returned by create and update."""
    id: UUID
    document_number: str
    totals: DocumentTotalsResponse


class ConversionResult(BaseModel):
    source_id: UUID
    new_id: UUID
    new_document_number: str


class BalanceResult(BaseModel):
    document_id: UUID
    total: Decimal
    paid: Decimal
    balance: Decimal


class DocumentItemResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    description: str
    hsn_code: Optional[str] = ""
    unit_of_measure: Optional[str] = ""
    quantity: Decimal
    rate: Decimal
    discount_percent: Decimal
    tax_percent: Decimal
    sgst_percent: Decimal
    cgst_percent: Decimal
    igst_percent: Decimal
    base_amount: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    sgst_amount: Decimal
    cgst_amount: Decimal
    igst_amount: Decimal
    line_total: Decimal


class DocumentBrief(BaseResponseSchema):
    """Header row as shown in list views."""
    id: UUID
    document_type: str
    document_number: str
    party_id: UUID
    document_date: date = Field(serialization_alias="date")
    due_date: Optional[date] = None
    status: str
    grand_total: Decimal
    created_at: datetime


class DocumentResponse(DocumentBrief):
    sub_total: Decimal
    discount_total: Decimal
    additional_charges_total: Decimal
    taxable_amount: Decimal
    tcs_amount: Decimal
    tax_total: Decimal
    sgst_total: Decimal
    cgst_total: Decimal
    igst_total: Decimal
    round_off: Decimal
    amount_in_words: Optional[str] = None
    notes: Optional[List[str]] = None
    extended_attributes: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime
    items: List[DocumentItemResponse] = []


class DocumentListResponse(BaseModel):
    items: List[DocumentBrief]
    total: int
    total_value: Decimal
    skip: int = 0
    limit: int = 50


class DocumentStats(BaseModel):
    document_type: DocumentType
    total_count: int
    total_value: Decimal
    paid_count: int
    draft_count: int


class NextNumberResponse(BaseModel):
    document_type: DocumentType
    next_number: str
