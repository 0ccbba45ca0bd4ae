"""API endpoints for billing documents (all types share these routes).

``{document_type}`` is one of: proforma, sales, credit-note, debit-note,
delivery-challan, purchase-order (case-insensitive, ``_`` or ``-``).
"""
from typing import Optional
from uuid import UUID
from datetime import date

from fastapi import APIRouter, Query, status

from billing_engine.api.deps import DocType, Documents, Conversions, Balances
from billing_engine.schemas.document import (
    BalanceResult,
    ConversionResult,
    ConvertRequest,
    DocumentBrief,
    DocumentListResponse,
    DocumentPayload,
    DocumentResponse,
    DocumentStats,
    DocumentWriteResult,
    NextNumberResponse,
    StatusUpdateRequest,
)


router = APIRouter()


@router.get("/{document_type}/next-number", response_model=NextNumberResponse)
async def get_next_number(document_type: DocType, service: Documents):
    """Preview the next document number without reserving it."""
    next_number = await service.preview_next_number(document_type)
    return NextNumberResponse(document_type=document_type, next_number=next_number)


@router.get("/{document_type}/stats", response_model=DocumentStats)
async def get_stats(document_type: DocType, service: Documents):
    """Count, total value, paid and draft counts."""
    return await service.get_stats(document_type)


@router.get("/{document_type}", response_model=DocumentListResponse)
async def list_documents(
    document_type: DocType,
    service: Documents,
    status_filter: Optional[str] = Query(None, alias="status"),
    party_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List documents, newest first."""
    filters = {
        "status": status_filter,
        "party_id": party_id,
        "date_from": date_from,
        "date_to": date_to,
        "search": search,
    }
    return await service.list_documents(document_type, filters, skip=skip, limit=limit)


@router.post("/{document_type}", response_model=DocumentWriteResult, status_code=status.HTTP_201_CREATED)
async def create_document(
    document_type: DocType,
    payload: DocumentPayload,
    service: Documents,
):
    """Create a document. Totals and the document number are computed server-side."""
    return await service.create_document(document_type, payload)


@router.get("/{document_type}/{document_id}", response_model=DocumentResponse)
async def get_document(document_type: DocType, document_id: UUID, service: Documents):
    """Get a document with its line items."""
    return await service.get_document(document_type, document_id)


@router.put("/{document_type}/{document_id}", response_model=DocumentWriteResult)
async def update_document(
    document_type: DocType,
    document_id: UUID,
    payload: DocumentPayload,
    service: Documents,
):
    """Replace a document's header and items."""
    return await service.update_document(document_type, document_id, payload)


@router.delete("/{document_type}/{document_id}")
async def delete_document(document_type: DocType, document_id: UUID, service: Documents):
    """Delete a document and its items."""
    await service.delete_document(document_type, document_id)
    return {"message": "Document deleted", "id": str(document_id)}


@router.patch("/{document_type}/{document_id}/status", response_model=DocumentBrief)
async def update_status(
    document_type: DocType,
    document_id: UUID,
    request: StatusUpdateRequest,
    service: Documents,
):
    """Change the document status."""
    return await service.update_status(document_type, document_id, request.status)


@router.post(
    "/{document_type}/{document_id}/convert",
    response_model=ConversionResult,
    status_code=status.HTTP_201_CREATED,
)
async def convert_document(
    document_type: DocType,
    document_id: UUID,
    service: Conversions,
    request: Optional[ConvertRequest] = None,
):
    """Convert the document into another type (default: sales invoice)."""
    request = request or ConvertRequest()
    return await service.convert_document(
        document_id,
        target_type=request.target_type,
        source_type=document_type,
    )


@router.get("/{document_type}/{document_id}/balance", response_model=BalanceResult)
async def get_balance(document_type: DocType, document_id: UUID, service: Balances):
    """Grand total, amount paid and outstanding balance."""
    return await service.get_balance(document_id, document_type)
