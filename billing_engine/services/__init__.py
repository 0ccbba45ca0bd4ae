# Services module
from billing_engine.services.document_service import DocumentService
from billing_engine.services.conversion_service import ConversionService
from billing_engine.services.balance_service import BalanceService
from billing_engine.services.document_sequence_service import DocumentSequenceService
from billing_engine.services.events import EventPublisher, event_publisher

__all__ = [
    "DocumentService",
    "ConversionService",
    "BalanceService",
    "DocumentSequenceService",
    "EventPublisher",
    "event_publisher",
]
