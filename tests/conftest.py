from __future__ import annotations

import json
from typing import Any, Dict

import pytest

from motor_tariff.rules.tariff_codes import REQUIRED_BORDER_CODES, REQUIRED_INTERNAL_CODES
from motor_tariff.rules.tariff_loader import TariffTable, build_tariff_table


def make_row(net: int, *, total: int | None = None) -> Dict[str, Any]:
    row = {
        "netPremium": net,
        "stampFee": 500,
        "warEffort": net // 50,
        "localAdministration": net // 100,
        "reconstruction": (net * 3) // 100,
        "martyrFund": 100,
    }
    row["total"] = sum(row.values()) if total is None else total
    return row


def make_version(version: str = "test-1", effective: str = "2024-01-01", *, scale: int = 1) -> Dict[str, Any]:
    """A complete registry version: every internal and border code has a row."""
    return {
        "version": version,
        "effective": effective,
        "internal": {str(c): make_row((10000 + (c - 1) * 100) * scale) for c in sorted(REQUIRED_INTERNAL_CODES)},
        "border": {str(c): make_row((50000 + c * 1000) * scale) for c in sorted(REQUIRED_BORDER_CODES)},
    }


@pytest.fixture
def version_record() -> Dict[str, Any]:
    return make_version()


@pytest.fixture
def tariff_table(version_record) -> TariffTable:
    return build_tariff_table(version_record)


@pytest.fixture
def write_registry(tmp_path):
    def _write(*versions: Dict[str, Any]):
        path = tmp_path / "tariffs.json"
        path.write_text(json.dumps({"versions": list(versions)}), encoding="utf-8")
        return path

    return _write
