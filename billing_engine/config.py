from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, Dict
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./billing.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Billing Document Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Document numbering
    SEQUENCE_PADDING: int = 4  # 4 = 0001
    DOCUMENT_NUMBER_PREFIXES: Dict[str, str] = {
        "PROFORMA": "PRO-",
        "SALES": "INV-",
        "CREDIT_NOTE": "CN-",
        "DEBIT_NOTE": "DN-",
        "DELIVERY_CHALLAN": "DC-",
        "PURCHASE_ORDER": "PO-",
    }
    NUMBERING_MAX_RETRIES: int = 1  # Retries after a duplicate number collision

    # Per-call timeout for write operations (None disables)
    OPERATION_TIMEOUT_SECONDS: Optional[float] = None

    # GST defaults
    HOME_STATE_PINCODE_PREFIX: str = "6"  # Tamil Nadu pincodes start with 6
    DEFAULT_SGST_RATE: Decimal = Decimal("9")
    DEFAULT_CGST_RATE: Decimal = Decimal("9")
    DEFAULT_IGST_RATE: Decimal = Decimal("18")
    TCS_RATE: Decimal = Decimal("0.01")

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
