from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pharma_wms.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Pharma WMS Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Cell capacity policy: NONE (usage is tracked only) or ENFORCE (reject
    # writes that would exceed a cell's configured max_* ceilings)
    CELL_CAPACITY_POLICY: str = "NONE"

    # Quality control: allow APPROVED -> REJECTED/RETURNS (product recall)
    QC_ALLOW_RECALL_FROM_APPROVED: bool = False

    # Order numbering
    ENTRY_ORDER_PREFIX: str = "OI"
    DEPARTURE_ORDER_PREFIX: str = "OS"
    ORDER_NUMBER_PADDING: int = 5

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('CELL_CAPACITY_POLICY', mode='before')
    @classmethod
    def normalize_capacity_policy(cls, v):
        value = str(v).strip().upper()
        if value not in ("NONE", "ENFORCE"):
            raise ValueError("CELL_CAPACITY_POLICY must be NONE or ENFORCE")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    @property
    def enforce_cell_capacity(self) -> bool:
        return self.CELL_CAPACITY_POLICY == "ENFORCE"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
