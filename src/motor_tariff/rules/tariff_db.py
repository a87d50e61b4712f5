"""Database-backed tariff versions.

Publishing writes a whole version (header plus every row) in one transaction;
loading reads the latest version effective on a date and freezes it into the
same :class:`TariffTable` the JSON registry produces, with the same
completeness checks.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..models import TariffRate, TariffVersion
from .tariff_codes import BORDER, INTERNAL
from .tariff_loader import STATUTORY_FIELDS, TariffTable, build_tariff_table

logger = logging.getLogger(__name__)


def save_tariff_table(
    db: Session,
    table: TariffTable,
    *,
    source: Optional[str] = None,
    replace: bool = False,
) -> TariffVersion:
    """Persist ``table`` as a new version. Existing versions are only overwritten with ``replace``."""

    existing = db.execute(
        select(TariffVersion).where(TariffVersion.version == table.version)
    ).scalar_one_or_none()
    if existing is not None:
        if not replace:
            raise ValueError(f"tariff version {table.version} already exists")
        db.delete(existing)
        db.flush()

    header = TariffVersion(version=table.version, effective=table.effective, source=source)
    for scheme, rows in ((INTERNAL, table.internal), (BORDER, table.border)):
        for key, row in rows.items():
            header.rates.append(
                TariffRate(
                    scheme=scheme,
                    row_key=key,
                    net_premium=row.net_premium,
                    stamp_fee=row.stamp_fee,
                    war_effort=row.war_effort,
                    local_administration=row.local_administration,
                    reconstruction=row.reconstruction,
                    martyr_fund=row.martyr_fund,
                    total=row.total,
                    label=row.label,
                )
            )
    db.add(header)
    db.commit()
    logger.info("Stored tariff version %s with %d rows", table.version, len(header.rates))
    return header


def _row_record(rate: TariffRate) -> Dict[str, Any]:
    record: Dict[str, Any] = {k: getattr(rate, attr) for k, attr in STATUTORY_FIELDS.items()}
    record["total"] = rate.total
    if rate.label:
        record["label"] = rate.label
    return record


def load_tariff_table_from_db(db: Session, on: date | None = None) -> TariffTable:
    """Return the most recent stored version effective on ``on`` (default: today)."""

    on = on or date.today()
    header = (
        db.execute(
            select(TariffVersion)
            .where(TariffVersion.effective <= on)
            .order_by(TariffVersion.effective.desc(), TariffVersion.published_at.desc())
            .options(selectinload(TariffVersion.rates))
        )
        .scalars()
        .first()
    )
    if header is None:
        raise ValueError(f"no tariff version effective on {on.isoformat()} in the database")

    record: Dict[str, Any] = {
        "version": header.version,
        "effective": header.effective,
        INTERNAL: {},
        BORDER: {},
    }
    for rate in header.rates:
        record[rate.scheme][rate.row_key] = _row_record(rate)

    table = build_tariff_table(record)
    logger.info(
        "Loaded tariff version %s from database (effective %s)",
        table.version, table.effective.isoformat(),
    )
    return table
