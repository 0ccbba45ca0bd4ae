"""Billing document models.

All document types share one header table (``invoices``) and one line
item table (``invoice_items``); the document type is a variant tag on
the header row.

Supports:
- Proforma, Sales invoice, Credit note, Debit note
- Delivery challan, Purchase order
- Per-type document counters for atomic numbering
- Payments recorded against a document (read for balances)
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric, Date
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base
from billing_engine.db_types import JSONType, UUIDType
from billing_engine.core.enum_utils import enum_comment


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentType(str, Enum):
    """Document type enumeration."""
    PROFORMA = "PROFORMA"
    SALES = "SALES"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"
    DELIVERY_CHALLAN = "DELIVERY_CHALLAN"
    PURCHASE_ORDER = "PURCHASE_ORDER"


class DocumentStatus(str, Enum):
    """Payment / fulfilment status of a document."""
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    DELIVERED = "DELIVERED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class TaxType(str, Enum):
    """GST jurisdiction mode."""
    SGST_CGST = "sgst_cgst"  # Intra-state
    IGST = "igst"            # Inter-state


class DiscountType(str, Enum):
    """Document-level discount kind."""
    FLAT = "flat"
    PERCENT = "percent"


class ConversionStatus(str, Enum):
    """Conversion tag, orthogonal to DocumentStatus."""
    ACTIVE = "active"
    CONVERTED = "converted"


class PartyType(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"


class Party(Base):
    """Customer or vendor referenced by documents. Not owned by the engine."""
    __tablename__ = "parties"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    party_name: Mapped[str] = mapped_column(String(200), nullable=False)
    party_type: Mapped[str] = mapped_column(
        String(20),
        default=PartyType.CUSTOMER.value,
        comment=enum_comment(PartyType)
    )
    gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    billing_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipping_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Party(name='{self.party_name}')>"


class Document(Base):
    """
    Billing document header.

    Monetary columns are always derived from the line items and the
    document-level discount/charges/TCS inputs; they are never hand-entered.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint(
            "document_type", "document_number",
            name="uq_invoices_type_number"
        ),
        Index("ix_invoices_type_created", "document_type", "created_at"),
        Index("ix_invoices_document_date", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    document_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment=enum_comment(DocumentType)
    )
    document_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Unique per document type, e.g. INV-0001"
    )

    party_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Dates
    document_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        default=DocumentStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment=enum_comment(DocumentStatus)
    )

    # Amounts (in INR)
    sub_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Sum of line base amounts"
    )
    discount_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0"),
        comment="Document-level discount"
    )
    additional_charges_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        default=Decimal("0")
    )
    taxable_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="sub_total - discount + additional charges"
    )
    tcs_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        comment="Tax collected at source"
    )
    tax_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Sum of line generic tax amounts"
    )

    # GST Components
    sgst_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    cgst_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    igst_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # Grand Total
    round_off: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Final document amount"
    )
    amount_in_words: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    notes: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    extended_attributes: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Versioned, schema-validated attribute record"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    # Relationships
    items: Mapped[List["DocumentItem"]] = relationship(
        "DocumentItem",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentItem.line_number"
    )

    def __repr__(self) -> str:
        return f"<Document(type='{self.document_type}', number='{self.document_number}')>"


class DocumentItem(Base):
    """Document line item with HSN and GST breakup."""
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Item Details
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    hsn_code: Mapped[str] = mapped_column(
        String(20),
        default="",
        comment="HSN code for goods, SAC for services"
    )
    unit_of_measure: Mapped[str] = mapped_column(String(20), default="")

    # Quantity & Pricing
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    tax_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    sgst_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    cgst_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    igst_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))

    # Derived amounts
    base_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Equals taxable_amount; GST is not added at line level"
    )

    document: Mapped["Document"] = relationship("Document", back_populates="items")

    def __repr__(self) -> str:
        return f"<DocumentItem(line={self.line_number}, total={self.line_total})>"


class DocumentCounter(Base):
    """
    Last issued sequence value per document type.

    Incremented with a single UPDATE ... RETURNING inside the same
    transaction as the header insert, so concurrent creates serialize on
    this row only.
    """
    __tablename__ = "document_counters"

    document_type: Mapped[str] = mapped_column(String(30), primary_key=True)
    last_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DocumentCounter({self.document_type}: {self.last_number})>"


class Payment(Base):
    """Payment recorded against a document."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(30), default="CASH")
    reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="UTR/Transaction ID"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Payment(amount={self.amount})>"
