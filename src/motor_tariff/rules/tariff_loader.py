"""Tariff registry loader and the active-snapshot store."""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .errors import MissingTariffField, MissingTariffRow, TableUnavailableError
from .tariff_codes import (
    BORDER,
    INTERNAL,
    REQUIRED_BORDER_CODES,
    REQUIRED_INTERNAL_CODES,
    TariffKey,
    row_key,
)

__all__ = [
    "STATUTORY_FIELDS",
    "TariffRow",
    "TariffTable",
    "TariffTableStore",
    "build_tariff_table",
    "load_tariff_table",
    "load_registry_versions",
]

logger = logging.getLogger(__name__)

_DEFAULT_REGISTRY_PATH = Path(__file__).with_name("tariff_registry.json")
# The bundled registry holds illustrative amounts only, under this version label.
SAMPLE_VERSION = "sample"

# Registry field name -> TariffRow attribute, in breakdown order
STATUTORY_FIELDS: Dict[str, str] = {
    "netPremium": "net_premium",
    "stampFee": "stamp_fee",
    "warEffort": "war_effort",
    "localAdministration": "local_administration",
    "reconstruction": "reconstruction",
    "martyrFund": "martyr_fund",
}

_REQUIRED_VERSION_KEYS = {"version", "effective", INTERNAL, BORDER}
_REQUIRED_ROW_KEYS = set(STATUTORY_FIELDS) | {"total"}


@dataclass(frozen=True)
class TariffRow:
    net_premium: int
    stamp_fee: int
    war_effort: int
    local_administration: int
    reconstruction: int
    martyr_fund: int
    total: int
    label: Optional[str] = None

    @property
    def components_sum(self) -> int:
        return (
            self.net_premium
            + self.stamp_fee
            + self.war_effort
            + self.local_administration
            + self.reconstruction
            + self.martyr_fund
        )

    def to_registry(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {k: getattr(self, attr) for k, attr in STATUTORY_FIELDS.items()}
        payload["total"] = self.total
        if self.label:
            payload["label"] = self.label
        return payload


@dataclass(frozen=True)
class TariffTable:
    """One immutable tariff version. Never edited in place; publish a new one instead."""

    version: str
    effective: date
    internal: Mapping[str, TariffRow] = field(default_factory=dict)
    border: Mapping[str, TariffRow] = field(default_factory=dict)

    def row_for(self, key: TariffKey) -> Optional[TariffRow]:
        rows = self.internal if key.scheme == INTERNAL else self.border
        return rows.get(key.lookup)

    def to_registry(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "effective": self.effective.isoformat(),
            INTERNAL: {k: r.to_registry() for k, r in self.internal.items()},
            BORDER: {k: r.to_registry() for k, r in self.border.items()},
        }


# ---------- Parsing ----------

def _to_amount(value: Any, field_path: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_path}: expected a whole amount, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        raise ValueError(f"{field_path}: expected a whole amount, got {value!r}") from None
    if not number.is_integer():
        raise ValueError(f"{field_path}: fractional amount {value!r} is not allowed")
    return int(number)


def _parse_row(path: str, record: Any) -> TariffRow:
    if not isinstance(record, Mapping):
        raise ValueError(f"invalid tariff row at {path}")
    for key in _REQUIRED_ROW_KEYS:
        if key not in record:
            raise MissingTariffField(f"{path}.{key}")
    amounts = {attr: _to_amount(record[k], f"{path}.{k}") for k, attr in STATUTORY_FIELDS.items()}
    label = record.get("label")
    return TariffRow(
        total=_to_amount(record["total"], f"{path}.total"),
        label=str(label) if label else None,
        **amounts,
    )


def _parse_rows(version: str, scheme: str, rows: Any) -> Dict[str, TariffRow]:
    if not isinstance(rows, Mapping):
        raise MissingTariffField(f"{version}.{scheme}")
    parsed: Dict[str, TariffRow] = {}
    for raw_key, record in rows.items():
        code, _, variant = str(raw_key).strip().partition(":")
        try:
            key = row_key(code, variant or None)
        except ValueError:
            raise ValueError(f"{version}.{scheme}: invalid tariff code {raw_key!r}") from None
        parsed[key] = _parse_row(f"{version}.{scheme}.{raw_key}", record)
    return parsed


def _ensure_complete(version: str, internal: Mapping[str, TariffRow], border: Mapping[str, TariffRow]) -> None:
    missing_internal = [c for c in REQUIRED_INTERNAL_CODES if row_key(c) not in internal]
    if missing_internal:
        raise MissingTariffRow(version, INTERNAL, missing_internal)
    missing_border = [c for c in REQUIRED_BORDER_CODES if row_key(c) not in border]
    if missing_border:
        raise MissingTariffRow(version, BORDER, missing_border)


def _parse_effective(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), "%Y-%m-%d").date()


def build_tariff_table(record: Mapping[str, Any]) -> TariffTable:
    """Validate one registry version and freeze it into a :class:`TariffTable`."""

    if not isinstance(record, Mapping):
        raise ValueError("tariff version must be a mapping")
    label = str(record.get("version") or "<unnamed>")
    for key in _REQUIRED_VERSION_KEYS:
        if key not in record:
            raise MissingTariffField(f"{label}.{key}")

    internal = _parse_rows(label, INTERNAL, record[INTERNAL])
    border = _parse_rows(label, BORDER, record[BORDER])
    _ensure_complete(label, internal, border)

    return TariffTable(
        version=label,
        effective=_parse_effective(record["effective"]),
        internal=MappingProxyType(internal),
        border=MappingProxyType(border),
    )


# ---------- Registry file ----------

def _resolve_registry_path(path: str | os.PathLike[str] | None) -> Path:
    if path is not None:
        return Path(path)
    override = os.getenv("TARIFF_REGISTRY_PATH")
    if override:
        return Path(override)
    return _DEFAULT_REGISTRY_PATH


@lru_cache(maxsize=None)
def _load_registry(path_str: str) -> List[Dict[str, Any]]:
    path = Path(path_str)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    versions = data.get("versions") if isinstance(data, Mapping) else None
    if not isinstance(versions, list):
        raise ValueError("tariff registry must be a mapping with a 'versions' list")
    return versions


def load_registry_versions(registry_path: str | os.PathLike[str] | None = None) -> List[Dict[str, Any]]:
    """Raw version records of a registry file (uncached copy)."""

    path = _resolve_registry_path(registry_path)
    _load_registry.cache_clear()
    return [dict(v) for v in _load_registry(str(path))]


def load_tariff_table(
    on: date | None = None,
    *,
    registry_path: str | os.PathLike[str] | None = None,
    refresh: bool = False,
) -> TariffTable:
    """Return the most recent tariff version effective on ``on`` (default: today)."""

    on = on or date.today()
    path = _resolve_registry_path(registry_path)
    if refresh:
        _load_registry.cache_clear()
    versions = _load_registry(str(path))

    selected: Dict[str, Any] | None = None
    selected_date: date | None = None
    for entry in versions:
        if not isinstance(entry, Mapping) or "effective" not in entry:
            raise ValueError(f"invalid tariff registry entry in {path}")
        effective = _parse_effective(entry["effective"])
        if effective <= on and (selected_date is None or effective > selected_date):
            selected = entry
            selected_date = effective

    if selected is None:
        raise ValueError(f"no tariff version effective on {on.isoformat()} in {path}")

    table = build_tariff_table(selected)
    logger.info(
        "Loaded tariff version %s (effective %s): %d internal rows, %d border rows",
        table.version, table.effective.isoformat(), len(table.internal), len(table.border),
    )
    return table


# ---------- Active snapshot ----------

class TariffTableStore:
    """
    Holds the active tariff snapshot.

    Readers take the current reference without locking; ``publish`` swaps the
    reference in one assignment so a calculation sees either the old or the
    new version, never a mix. Writers are serialized by a lock.
    """

    def __init__(self, table: Optional[TariffTable] = None):
        self._table = table
        self._publish_lock = threading.Lock()

    def active(self) -> TariffTable:
        table = self._table
        if table is None:
            raise TableUnavailableError()
        return table

    @property
    def is_loaded(self) -> bool:
        return self._table is not None

    def publish(self, table: TariffTable) -> TariffTable | None:
        """Make ``table`` the active version; returns the one it replaced."""

        with self._publish_lock:
            previous = self._table
            self._table = table
        logger.info(
            "Published tariff version %s (previous: %s)",
            table.version, previous.version if previous else None,
        )
        return previous

    def reload(
        self,
        on: date | None = None,
        *,
        registry_path: str | os.PathLike[str] | None = None,
    ) -> TariffTable:
        table = load_tariff_table(on, registry_path=registry_path, refresh=True)
        self.publish(table)
        return table

    def clear(self) -> None:
        with self._publish_lock:
            self._table = None
