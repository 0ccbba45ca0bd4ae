"""Create billing document tables

Revision ID: 001_billing_documents
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_billing_documents'
down_revision = None
branch_labels = None
depends_on = None


def _money(name, precision=14, **kwargs):
    return sa.Column(name, sa.Numeric(precision, 2), server_default='0', nullable=False, **kwargs)


def upgrade():
    """Create parties, invoices, invoice_items, document_counters and payments"""

    # ====================
    # PARTIES TABLE
    # ====================
    op.create_table(
        'parties',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('party_name', sa.String(200), nullable=False),
        sa.Column('party_type', sa.String(20), server_default='CUSTOMER', comment='CUSTOMER, VENDOR'),
        sa.Column('gstin', sa.String(15), nullable=True),
        sa.Column('billing_address', sa.String(500), nullable=True),
        sa.Column('shipping_address', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    # ====================
    # INVOICES TABLE (all document types)
    # ====================
    op.create_table(
        'invoices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('document_type', sa.String(30), nullable=False,
                  comment='PROFORMA, SALES, CREDIT_NOTE, DEBIT_NOTE, DELIVERY_CHALLAN, PURCHASE_ORDER'),
        sa.Column('document_number', sa.String(50), nullable=False),
        sa.Column('party_id', UUID(as_uuid=True), sa.ForeignKey('parties.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('due_date', sa.Date, nullable=True),
        sa.Column('status', sa.String(30), server_default='DRAFT', nullable=False,
                  comment='DRAFT, PENDING, PARTIAL, DELIVERED, PAID, CANCELLED'),
        _money('sub_total'),
        _money('discount_total'),
        _money('additional_charges_total'),
        _money('taxable_amount'),
        _money('tcs_amount', 12),
        _money('tax_total'),
        _money('sgst_total'),
        _money('cgst_total'),
        _money('igst_total'),
        _money('round_off', 6),
        _money('grand_total'),
        sa.Column('amount_in_words', sa.String(500), nullable=True),
        sa.Column('notes', JSONB, nullable=True),
        sa.Column('extended_attributes', JSONB, server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('document_type', 'document_number', name='uq_invoices_type_number'),
    )

    op.create_index('ix_invoices_document_type', 'invoices', ['document_type'])
    op.create_index('ix_invoices_party_id', 'invoices', ['party_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_type_created', 'invoices', ['document_type', 'created_at'])
    op.create_index('ix_invoices_document_date', 'invoices', ['date'])

    # ====================
    # INVOICE ITEMS TABLE
    # ====================
    op.create_table(
        'invoice_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('document_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('hsn_code', sa.String(20), server_default=''),
        sa.Column('unit_of_measure', sa.String(20), server_default=''),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('rate', sa.Numeric(14, 2), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), server_default='0'),
        sa.Column('tax_percent', sa.Numeric(5, 2), server_default='0'),
        sa.Column('sgst_percent', sa.Numeric(5, 2), server_default='0'),
        sa.Column('cgst_percent', sa.Numeric(5, 2), server_default='0'),
        sa.Column('igst_percent', sa.Numeric(5, 2), server_default='0'),
        sa.Column('base_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('taxable_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('sgst_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('cgst_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('igst_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('line_total', sa.Numeric(14, 2), nullable=False),
    )

    op.create_index('ix_invoice_items_document_id', 'invoice_items', ['document_id'])

    # ====================
    # DOCUMENT COUNTERS TABLE
    # ====================
    op.create_table(
        'document_counters',
        sa.Column('document_type', sa.String(30), primary_key=True),
        sa.Column('last_number', sa.Integer, server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    # ====================
    # PAYMENTS TABLE
    # ====================
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('document_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('payment_date', sa.Date, nullable=False),
        sa.Column('payment_mode', sa.String(30), server_default='CASH'),
        sa.Column('reference', sa.String(100), nullable=True, comment='UTR/Transaction ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_index('ix_payments_document_id', 'payments', ['document_id'])

    # Existing documents seed their counters on first use
    # (see DocumentSequenceService.get_next_number)


def downgrade():
    """Drop billing document tables"""
    op.drop_table('payments')
    op.drop_table('document_counters')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('parties')
