"""Pytest configuration and shared fixtures"""

import pytest
from typing import AsyncGenerator, Any, Dict, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from billing_engine.database import Base
from billing_engine.models.document import Party, PartyType
from billing_engine.services.document_service import DocumentService
from billing_engine.services.conversion_service import ConversionService
from billing_engine.services.balance_service import BalanceService
from billing_engine.services.events import DocumentEvent, EventPublisher


# Test database setup (SQLite in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def engine():
    """Fresh in-memory database with all tables for each test"""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """File-backed database so concurrent writers each get their own connection"""
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and inspecting rows directly"""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def party(session_factory) -> Party:
    async with session_factory() as session:
        customer = Party(
            party_name="Chennai Traders",
            party_type=PartyType.CUSTOMER.value,
            gstin="33AAACC1234F1Z5",
            billing_address="12 Anna Salai, Chennai 600002",
            shipping_address="Plot 4, Guindy, Chennai 600032",
        )
        session.add(customer)
        await session.commit()
        return customer


@pytest.fixture
def events() -> List[DocumentEvent]:
    return []


@pytest.fixture
def publisher(events) -> EventPublisher:
    """Publisher that records every event"""
    event_publisher = EventPublisher()
    event_publisher.subscribe(DocumentEvent, events.append)
    return event_publisher


@pytest.fixture
def document_service(session_factory, publisher) -> DocumentService:
    return DocumentService(session_factory=session_factory, publisher=publisher)


@pytest.fixture
def conversion_service(session_factory, publisher) -> ConversionService:
    return ConversionService(session_factory=session_factory, publisher=publisher)


@pytest.fixture
def balance_service(session_factory) -> BalanceService:
    return BalanceService(session_factory=session_factory)


@pytest.fixture
def make_payload(party):
    """Build a document payload for the test party"""
    def _make(**overrides) -> Dict[str, Any]:
        payload = {
            "party_id": str(party.id),
            "date": "2024-05-01",
            "tax_type": "sgst_cgst",
            "notes": ["Thank you for your business"],
            "items": [
                {
                    "description": "RO Water Purifier",
                    "hsn_code": "84212110",
                    "unit_of_measure": "NOS",
                    "quantity": 10,
                    "rate": 100,
                }
            ],
        }
        payload.update(overrides)
        return payload
    return _make
