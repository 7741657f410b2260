"""
Resi Hub Settings - PostgreSQL in deployment, SQLite for local runs and tests.
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

# Deployment constants, approximate on purpose: not market-fetched.
DEFAULT_EXCHANGE_RATES: Dict[str, float] = {
    "MYR": 3500.0,
    "PHP": 280.0,
    "SGD": 11500.0,
    "USD": 16000.0,
    "IDR": 1.0,
}


class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs, uploaded exports)
    # =========================================================================
    RESI_HUB_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "resi-data"),
        validation_alias=AliasChoices("RESI_HUB_DATA_ROOT", "resi_data_root"),
    )

    # =========================================================================
    # Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="resi_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL override (e.g. sqlite+aiosqlite:///./resi.db); wins over DB_*
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "RESI_HUB_DATABASE_URL"),
    )

    # =========================================================================
    # Domain
    # =========================================================================
    # Physical store partitions. Open set, two in the current deployment.
    STORES: List[str] = Field(default_factory=lambda: ["mjm", "bjw"])
    BASE_CURRENCY: str = Field(default="IDR")
    EXCHANGE_RATES: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_EXCHANGE_RATES),
        validation_alias=AliasChoices("EXCHANGE_RATES", "RESI_HUB_EXCHANGE_RATES"),
    )

    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
