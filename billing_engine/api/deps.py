from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from billing_engine.database import async_session_factory
from billing_engine.core.enum_utils import to_enum
from billing_engine.core.exceptions import ValidationError
from billing_engine.models.document import DocumentType
from billing_engine.services.document_service import DocumentService
from billing_engine.services.conversion_service import ConversionService
from billing_engine.services.balance_service import BalanceService
from billing_engine.services.events import event_publisher


def get_session_factory() -> async_sessionmaker:
    """Session factory used by the services. Overridden in tests."""
    return async_session_factory


SessionFactory = Annotated[async_sessionmaker, Depends(get_session_factory)]


def parse_document_type(document_type: str) -> DocumentType:
    """Resolve the ``{document_type}`` path segment (``sales``, ``credit-note``, ...)."""
    doc_type = to_enum(document_type, DocumentType)
    if doc_type is None:
        valid_types = ", ".join(t.value.lower().replace("_", "-") for t in DocumentType)
        raise ValidationError(
            f"Unknown document type '{document_type}'. Valid types: {valid_types}",
            {"field": "document_type"}
        )
    return doc_type


def get_document_service(session_factory: SessionFactory) -> DocumentService:
    return DocumentService(session_factory=session_factory, publisher=event_publisher)


def get_conversion_service(session_factory: SessionFactory) -> ConversionService:
    return ConversionService(session_factory=session_factory, publisher=event_publisher)


def get_balance_service(session_factory: SessionFactory) -> BalanceService:
    return BalanceService(session_factory=session_factory)


DocType = Annotated[DocumentType, Depends(parse_document_type)]
Documents = Annotated[DocumentService, Depends(get_document_service)]
Conversions = Annotated[ConversionService, Depends(get_conversion_service)]
Balances = Annotated[BalanceService, Depends(get_balance_service)]
