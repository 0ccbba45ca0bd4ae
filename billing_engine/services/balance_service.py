"""Balance Service - outstanding amount on a document."""
import uuid
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from billing_engine.database import async_session_factory
from billing_engine.core.exceptions import NotFoundError
from billing_engine.models.document import Document, DocumentType, Payment
from billing_engine.schemas.document import BalanceResult
from billing_engine.services.billing_calculator import money
from billing_engine.services.document_service import resolve_document_type
from billing_engine.services.transaction_utils import storage_errors


class BalanceService:
    """Reads grand total and payments; never writes."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session_factory

    async def get_balance(
        self,
        document_id: uuid.UUID,
        document_type: Optional[Union[DocumentType, str]] = None,
    ) -> BalanceResult:
        """
        Grand total minus the sum of recorded payments.

        Overpayment yields a negative balance, returned as-is.
        """
        doc_type = resolve_document_type(document_type) if document_type else None

        with storage_errors("get balance"):
            async with self.session_factory() as db:
                query = select(Document.grand_total).where(Document.id == document_id)
                if doc_type:
                    query = query.where(Document.document_type == doc_type.value)
                total = (await db.execute(query)).scalar_one_or_none()
                if total is None:
                    raise NotFoundError(
                        f"Document {document_id} not found",
                        {"document_id": str(document_id)}
                    )

                paid = (await db.execute(
                    select(func.coalesce(func.sum(Payment.amount), 0))
                    .where(Payment.document_id == document_id)
                )).scalar_one()

        total = money(total)
        paid = money(paid or Decimal("0"))
        return BalanceResult(
            document_id=document_id,
            total=total,
            paid=paid,
            balance=money(total - paid),
        )
