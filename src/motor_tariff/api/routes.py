# src/motor_tariff/api/routes.py
"""
Pricing API routes.

Notes:
- The calculation endpoint takes a raw JSON object; validation belongs to the
  engine's normalizer so HTTP and non-HTTP callers get identical error kinds.
- Every error leaves as {"success": false, "message": ...} with the status
  carried by the engine result; no partial breakdown is ever returned.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from ..rules.errors import MISSING_FIELD, TableUnavailableError, ValidationError
from ..rules.premium_engine import PremiumEngine, QuoteResult
from ..rules.tariff_codes import (
    BORDER_TYPE_LABELS,
    CATEGORY_LABELS,
    CLASSIFICATION_LABELS,
    INTERNAL_VEHICLE_TYPE_LABELS,
    PERIOD_LABELS,
)
from ..rules.tariff_loader import TariffTable, TariffTableStore, load_tariff_table
from ..settings import settings

logger = logging.getLogger("insurance-api")

router = APIRouter(prefix="/api", tags=["Mandatory Insurance"])

tariff_store = TariffTableStore()


def get_tariff_store() -> TariffTableStore:
    return tariff_store


def get_premium_engine() -> PremiumEngine:
    return PremiumEngine.from_settings(settings)


def load_active_table(on: Optional[date] = None) -> TariffTable:
    """Load the tariff version effective on ``on`` from the configured source."""
    if settings.tariff_source == "database":
        from ..db import SessionLocal
        from ..rules.tariff_db import load_tariff_table_from_db

        with SessionLocal() as db:
            return load_tariff_table_from_db(db, on)
    return load_tariff_table(on, registry_path=settings.tariff_registry_path, refresh=True)


# ============ Pydantic Models ============

class ActiveTariffOut(BaseModel):
    version: str = Field(..., example="2024-07-15")
    effective: date
    internal_rows: int
    border_rows: int
    source: str = Field(..., example="registry")


class OptionOut(BaseModel):
    value: str
    label: str


class PeriodOut(BaseModel):
    value: int
    label: str


class InsuranceOptionsOut(BaseModel):
    categories: List[OptionOut]
    classifications: List[OptionOut]
    periods: List[PeriodOut]
    internal_vehicle_types: List[OptionOut]
    border_vehicle_types: List[OptionOut]
    internal_months: List[int]
    add_on_fees: Dict[str, int]


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


# ============ Endpoints ============

CALCULATE_EXAMPLE: Dict[str, Any] = {
    "insuranceType": "internal",
    "vehicleCode": "01",
    "category": "01",
    "classification": "0",
    "months": 12,
    "electronicCard": False,
    "premiumService": False,
    "rescueService": False,
}


@router.post(
    "/insurance/calculate",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": {"type": "object"}, "example": CALCULATE_EXAMPLE}},
        }
    },
)
async def calculate_premium(
    request: Request,
    store: TariffTableStore = Depends(get_tariff_store),
    engine: PremiumEngine = Depends(get_premium_engine),
) -> JSONResponse:
    # The body is read raw so every malformed payload gets the engine's 400 envelope.
    try:
        payload = await request.json()
    except ValueError:
        result = QuoteResult(error=ValidationError(MISSING_FIELD, "body", "request body must be a JSON object"))
    else:
        result = engine.calculate(payload, store)
    return JSONResponse(status_code=result.status_code, content=result.to_response())


@router.get("/pricing/active", response_model=ActiveTariffOut)
def active_pricing(store: TariffTableStore = Depends(get_tariff_store)):
    try:
        table = store.active()
    except TableUnavailableError as exc:
        return _error(exc.status_code, exc.message, retryable=True)
    return ActiveTariffOut(
        version=table.version,
        effective=table.effective,
        internal_rows=len(table.internal),
        border_rows=len(table.border),
        source=settings.tariff_source,
    )


@router.post("/pricing/reload", response_model=ActiveTariffOut)
def reload_pricing(
    on: Optional[date] = Query(None, description="Select the version effective on this date (default today)"),
    store: TariffTableStore = Depends(get_tariff_store),
):
    try:
        table = load_active_table(on)
    except (KeyError, ValueError, OSError, RuntimeError, SQLAlchemyError) as exc:
        # The previously published version stays active.
        logger.exception("Tariff reload failed")
        return _error(500, f"tariff reload failed: {exc}")
    store.publish(table)
    return ActiveTariffOut(
        version=table.version,
        effective=table.effective,
        internal_rows=len(table.internal),
        border_rows=len(table.border),
        source=settings.tariff_source,
    )


@router.get("/insurance/options", response_model=InsuranceOptionsOut)
def insurance_options(engine: PremiumEngine = Depends(get_premium_engine)) -> InsuranceOptionsOut:
    fees = engine.add_on_fees
    return InsuranceOptionsOut(
        categories=[OptionOut(value=k, label=v) for k, v in CATEGORY_LABELS.items()],
        classifications=[OptionOut(value=k, label=v) for k, v in CLASSIFICATION_LABELS.items()],
        periods=[PeriodOut(value=k, label=v) for k, v in PERIOD_LABELS.items()],
        internal_vehicle_types=[
            OptionOut(value=k, label=v) for k, v in INTERNAL_VEHICLE_TYPE_LABELS.items()
        ],
        border_vehicle_types=[OptionOut(value=k, label=v) for k, v in BORDER_TYPE_LABELS.items()],
        internal_months=list(engine.internal_months),
        add_on_fees={
            "electronicCard": fees.electronic_card,
            "premiumService": fees.premium_service,
            "rescueService": fees.rescue_service,
        },
    )
