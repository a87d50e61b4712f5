from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Literal

from pydantic_settings import BaseSettings
from pydantic import Field
from urllib.parse import quote_plus, urlparse

logger = logging.getLogger("insurance-api")

class Settings(BaseSettings):
    # "registry" reads the JSON tariff registry; "database" reads published versions from DATABASE_URL.
    tariff_source: Literal["registry", "database"] = Field(default="registry", alias="TARIFF_SOURCE")
    tariff_registry_path: Path | None = Field(default=None, alias="TARIFF_REGISTRY_PATH")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    # Add-on services (internal insurance only), whole currency units
    electronic_card_fee: int = Field(default=150, alias="ELECTRONIC_CARD_FEE")
    premium_service_fee: int = Field(default=50, alias="PREMIUM_SERVICE_FEE")
    rescue_service_fee: int = Field(default=30, alias="RESCUE_SERVICE_FEE")

    internal_allowed_months: List[int] = Field(default=[1, 2, 3, 6, 12], alias="INTERNAL_ALLOWED_MONTHS")
    strict_tariff_totals: bool = Field(default=False, alias="STRICT_TARIFF_TOTALS")

    allow_origins: str = Field(default="*", alias="ALLOW_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def sqlalchemy_url(self) -> str:
        if not self.database_url:
            raise RuntimeError("DATABASE_URL must be set when TARIFF_SOURCE=database")

        parsed = urlparse(self.database_url)
        logger.info(f"DB target → user={parsed.username} host={parsed.hostname} port={parsed.port} db={parsed.path.lstrip('/')}")

        # Re-encode the password so special characters survive the round trip
        if parsed.password:
            encoded_password = quote_plus(parsed.password)
            netloc = f"{parsed.username}:{encoded_password}@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            fixed_url = f"{parsed.scheme}://{netloc}{parsed.path}"
            if parsed.query:
                fixed_url += f"?{parsed.query}"
            return fixed_url

        return self.database_url

    @property
    def origins(self) -> List[str]:
        return [o.strip() for o in self.allow_origins.split(",") if o.strip()] or ["*"]

settings = Settings()
