import os
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: Optional[str] = Field(None, description="MongoDB URI, or memory:// for the in-process store")
    database_name: str = Field("ecommerce", description="Database name")
    frontend_origin: str = Field("http://localhost:3000", description="Allowed CORS origin")
    port: int = Field(8000, description="HTTP port for uvicorn")
    log_level: str = Field("INFO", description="Root logging level")
    seed_products: bool = Field(False, description="Seed the demo catalog when it is empty")


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME", "ecommerce"),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        port=int(os.getenv("PORT", 8000)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        seed_products=_flag(os.getenv("SEED_PRODUCTS")),
    )
