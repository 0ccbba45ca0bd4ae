from fastapi import APIRouter

from billing_engine.api.v1.endpoints import (
    # Billing documents (Proforma, Sales, Credit/Debit notes, Challans, POs)
    documents,
)

api_router = APIRouter(prefix="/api/v1")

# ==================== Billing Documents ====================
api_router.include_router(
    documents.router,
    prefix="/documents",
    tags=["Billing Documents"]
)
