# src/motor_tariff/importers/tariff_workbook.py
"""
Import a published tariff workbook into the tariff registry (or database).

The workbook has two sheets:
  - "Internal": one row per real tariff code 1..136, with the category text
    ("01-خاصة", "02-عامة", ...) in its own column.
  - "Border": one row per (vehicle type, duration) with the duration as text
    ("3 أشهر", "6 أشهر", "سنة").

Header rows are located by their column titles rather than by position, since
the published files carry a varying number of title lines above the table.
"""
from __future__ import annotations

import argparse
import io
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import openpyxl

from ..rules.tariff_codes import (
    BORDER,
    CATEGORY_OFFSETS,
    INTERNAL,
    border_tariff_code,
    row_key,
    split_internal_code,
)
from ..rules.tariff_loader import build_tariff_table, load_registry_versions

logger = logging.getLogger(__name__)

INTERNAL_SHEET = "Internal"
BORDER_SHEET = "Border"

# column title -> registry field
INTERNAL_COLUMNS: Dict[str, str] = {
    "البدل الصافي الجديد": "netPremium",
    "رسم الطابع": "stampFee",
    "مجهود حربي": "warEffort",
    "الادارة المحلية": "localAdministration",
    "اعمار": "reconstruction",
    "طابع شهيد": "martyrFund",
    "الإجمالي": "total",
}
INTERNAL_CODE_COL = "الرمز"
INTERNAL_VEHICLE_COL = "نوع المركبة"
INTERNAL_CATEGORY_COL = "الفئة"

BORDER_COLUMNS: Dict[str, str] = {
    "البدل المقترح": "netPremium",
    "رسم الطابع": "stampFee",
    "مجهود حربي": "warEffort",
    "الادارة المحلية": "localAdministration",
    "رسم اعمار": "reconstruction",
    "طابع الشهيد": "martyrFund",
    "الإجمالي": "total",
}
BORDER_VEHICLE_COL = "نوع المركبة"
BORDER_DURATION_COL = "المدة"

BORDER_TYPE_NAMES: Dict[str, str] = {
    "سياحية": "tourist",
    "دراجة نارية": "motorcycle",
    "باص": "bus",
    "بقية الفئات": "other",
}


class WorkbookFormatError(ValueError):
    """The workbook does not have the expected sheets or header rows."""


def _cell_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _find_header(rows: Sequence[Sequence[Any]], required: Sequence[str], sheet: str) -> int:
    for idx, row in enumerate(rows):
        titles = {_cell_text(c) for c in row}
        if all(r in titles for r in required):
            return idx
    raise WorkbookFormatError(f"{sheet}: header row with {', '.join(required)} not found")


def _column_index(header: Sequence[Any], title: str, sheet: str) -> int:
    for idx, cell in enumerate(header):
        if _cell_text(cell) == title:
            return idx
    raise WorkbookFormatError(f"{sheet}: column {title!r} not found")


def _amount(value: Any) -> Any:
    # Empty cells mean zero in the published files; other values pass through for loader validation.
    if value is None or _cell_text(value) == "":
        return 0
    return value


def _sheet_rows(wb: Any, name: str) -> List[Sequence[Any]]:
    if name not in wb.sheetnames:
        raise WorkbookFormatError(f"sheet {name!r} not found (have: {', '.join(wb.sheetnames)})")
    return [tuple(r) for r in wb[name].iter_rows(values_only=True)]


def parse_internal_sheet(rows: Sequence[Sequence[Any]]) -> Dict[str, Dict[str, Any]]:
    header_idx = _find_header(
        rows, (INTERNAL_CODE_COL, INTERNAL_VEHICLE_COL, INTERNAL_CATEGORY_COL), INTERNAL_SHEET
    )
    header = rows[header_idx]
    code_col = _column_index(header, INTERNAL_CODE_COL, INTERNAL_SHEET)
    vehicle_col = _column_index(header, INTERNAL_VEHICLE_COL, INTERNAL_SHEET)
    category_col = _column_index(header, INTERNAL_CATEGORY_COL, INTERNAL_SHEET)
    value_cols = {f: _column_index(header, title, INTERNAL_SHEET) for title, f in INTERNAL_COLUMNS.items()}

    tariffs: Dict[str, Dict[str, Any]] = {}
    for row in rows[header_idx + 1:]:
        if not row or all(c is None for c in row):
            continue
        code_txt = _cell_text(row[code_col] if code_col < len(row) else None)
        category_txt = _cell_text(row[category_col] if category_col < len(row) else None)
        label = _cell_text(row[vehicle_col] if vehicle_col < len(row) else None)
        try:
            code = int(float(code_txt))
        except ValueError:
            continue
        if not code or not category_txt or not label:
            continue

        category = category_txt[:2]
        if category not in CATEGORY_OFFSETS:
            logger.warning("Internal code %s: unknown category %r; skipped", code, category_txt)
            continue
        try:
            split_category, _base = split_internal_code(code)
        except ValueError:
            logger.warning("Internal code %s is outside the tariff code range; skipped", code)
            continue
        if split_category != category:
            logger.warning(
                "Internal code %s is listed under category %s but belongs to %s; skipped",
                code, category, split_category,
            )
            continue

        record = {f: _amount(row[i] if i < len(row) else None) for f, i in value_cols.items()}
        record["label"] = label
        tariffs[row_key(code)] = record
    return tariffs


def _months_from_text(text: str) -> int:
    if "3" in text:
        return 3
    if "6" in text:
        return 6
    return 12


def parse_border_sheet(rows: Sequence[Sequence[Any]]) -> Dict[str, Dict[str, Any]]:
    header_idx = _find_header(rows, (INTERNAL_CODE_COL, BORDER_VEHICLE_COL, BORDER_DURATION_COL), BORDER_SHEET)
    header = rows[header_idx]
    vehicle_col = _column_index(header, BORDER_VEHICLE_COL, BORDER_SHEET)
    duration_col = _column_index(header, BORDER_DURATION_COL, BORDER_SHEET)
    value_cols = {f: _column_index(header, title, BORDER_SHEET) for title, f in BORDER_COLUMNS.items()}

    tariffs: Dict[str, Dict[str, Any]] = {}
    for row in rows[header_idx + 1:]:
        if not row or all(c is None for c in row):
            continue
        border_type = BORDER_TYPE_NAMES.get(_cell_text(row[vehicle_col] if vehicle_col < len(row) else None))
        if not border_type:
            continue
        months = _months_from_text(_cell_text(row[duration_col] if duration_col < len(row) else None))
        record = {f: _amount(row[i] if i < len(row) else None) for f, i in value_cols.items()}
        tariffs[row_key(border_tariff_code(border_type, months))] = record
    return tariffs


def parse_workbook(data: bytes | str | Path, *, version: str, effective: date) -> Dict[str, Any]:
    """Parse a tariff workbook into one registry version record (validated)."""

    source = io.BytesIO(data) if isinstance(data, bytes) else str(data)
    wb = openpyxl.load_workbook(source, data_only=True, read_only=True)
    try:
        record = {
            "version": version,
            "effective": effective.isoformat(),
            INTERNAL: parse_internal_sheet(_sheet_rows(wb, INTERNAL_SHEET)),
            BORDER: parse_border_sheet(_sheet_rows(wb, BORDER_SHEET)),
        }
    finally:
        wb.close()

    # Fails on missing rows or malformed amounts before anything is written
    build_tariff_table(record)
    logger.info(
        "Parsed tariff workbook: %d internal rows, %d border rows",
        len(record[INTERNAL]), len(record[BORDER]),
    )
    return record


def write_registry(record: Dict[str, Any], path: Path) -> None:
    """Add ``record`` to the registry at ``path``, replacing a version with the same name."""

    versions: List[Dict[str, Any]] = []
    if path.exists():
        versions = [v for v in load_registry_versions(path) if v.get("version") != record["version"]]
    versions.append(record)
    versions.sort(key=lambda v: str(v.get("effective")))
    path.write_text(json.dumps({"versions": versions}, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Wrote tariff version %s to %s", record["version"], path)


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import a mandatory insurance tariff workbook.")
    parser.add_argument("--file", required=True, type=Path, help="path to the .xlsx tariff workbook")
    parser.add_argument("--version", required=True, help="version label, e.g. 2024-07-15")
    parser.add_argument("--effective", required=True, type=_parse_date, help="effective date (YYYY-MM-DD)")
    parser.add_argument("--out", type=Path, help="registry JSON file to update")
    parser.add_argument("--to-db", action="store_true", help="store the version in DATABASE_URL")
    parser.add_argument("--replace", action="store_true", help="overwrite an existing database version")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    if not args.out and not args.to_db:
        parser.error("one of --out or --to-db is required")

    record = parse_workbook(args.file, version=args.version, effective=args.effective)
    if args.out:
        write_registry(record, args.out)
    if args.to_db:
        from ..db import SessionLocal, init_db
        from ..rules.tariff_db import save_tariff_table

        init_db()
        with SessionLocal() as db:
            save_tariff_table(db, build_tariff_table(record), source=args.file.name, replace=args.replace)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
