from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import router as pricing_router, load_active_table, tariff_store
from ..rules.errors import TableUnavailableError
from ..rules.tariff_loader import SAMPLE_VERSION
from ..settings import settings

# ---------------- Logging ----------------
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("insurance-api")

API_VERSION = "1.0.0"

# ---------- App ----------
app = FastAPI(
    title="Mandatory Motor Insurance Pricing",
    version=API_VERSION,
    description="Tariff resolution and premium calculation for internal and border mandatory insurance",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(pricing_router)

# ----- CORS -----
allow_origins = settings.origins
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)


# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Load and publish the active tariff table."""
    if settings.tariff_source == "database":
        try:
            from ..db import init_db

            init_db()
        except Exception:
            logger.exception("DB init failed during startup; continuing without blocking app.")
    try:
        table = load_active_table()
        tariff_store.publish(table)
        logger.info("Startup complete, tariff version %s active.", table.version)
        if table.version == SAMPLE_VERSION:
            logger.warning(
                "The active tariff is bundled sample data; import the published workbook before quoting customers."
            )
    except Exception:
        # Calculations answer 503 until POST /api/pricing/reload succeeds.
        logger.exception("Tariff load failed during startup; continuing without an active table.")


# ----- System -----
@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    try:
        table = tariff_store.active()
    except TableUnavailableError:
        table = None
    return {
        "ok": True,
        "version": API_VERSION,
        "tariff_loaded": table is not None,
        "tariff_version": table.version if table else None,
        "tariff_source": settings.tariff_source,
    }
