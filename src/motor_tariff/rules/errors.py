"""Error taxonomy for the premium calculation engine.

Request-level failures derive from :class:`PricingError` and carry the HTTP
status the API layer answers with. Tariff *configuration* problems found
while loading a table (missing fields, missing rows) derive from the builtin
``KeyError``/``ValueError`` instead; they are raised by the loader and never
reach an individual request.
"""
from __future__ import annotations

from typing import Optional

__all__ = [
    "PricingError",
    "ValidationError",
    "TariffNotFoundError",
    "TableUnavailableError",
    "TariffInconsistencyError",
    "TariffInconsistencyWarning",
    "MissingTariffField",
    "MissingTariffRow",
    "MISSING_FIELD",
    "INVALID_ENUM",
    "INVALID_DURATION",
]

MISSING_FIELD = "MissingField"
INVALID_ENUM = "InvalidEnum"
INVALID_DURATION = "InvalidDuration"


class PricingError(Exception):
    """Base class for failures that end a single pricing request."""

    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PricingError):
    """Malformed or missing request field."""

    status_code = 400

    def __init__(self, kind: str, field: str, message: Optional[str] = None):
        self.kind = kind
        self.field = field
        super().__init__(message or f"{kind}: {field}")


class TariffNotFoundError(PricingError):
    """The computed tariff key has no row in the active table."""

    status_code = 422

    def __init__(self, scheme: str, code: object, version: Optional[str] = None):
        self.scheme = scheme
        self.code = code
        self.version = version
        where = f" in tariff version {version}" if version else ""
        super().__init__(f"cannot price this combination: no {scheme} tariff for code {code}{where}")


class TableUnavailableError(PricingError):
    """No tariff snapshot could be obtained; callers may retry once one is published."""

    status_code = 503
    retryable = True

    def __init__(self, message: str = "tariff table is not loaded; service temporarily unavailable"):
        super().__init__(message)


class TariffInconsistencyError(PricingError):
    """Stored row total disagrees with its components (strict mode only)."""

    status_code = 500


class TariffInconsistencyWarning(UserWarning):
    """Stored row total disagrees with its components; the recomputed value wins."""


class MissingTariffField(KeyError):
    """Raised when an expected field is missing from a tariff registry entry."""

    def __init__(self, field_path: str):
        super().__init__(field_path)
        self.field_path = field_path

    def __str__(self) -> str:  # pragma: no cover - inherited KeyError repr is noisy
        return f"missing required tariff field: {self.field_path}"


class MissingTariffRow(KeyError):
    """Raised when a classification the engine can produce has no tariff row."""

    def __init__(self, version: str, scheme: str, codes):
        self.version = version
        self.scheme = scheme
        self.codes = sorted(codes)
        super().__init__(f"{version}.{scheme}")

    def __str__(self) -> str:  # pragma: no cover
        shown = ", ".join(str(c) for c in self.codes[:10])
        more = "" if len(self.codes) <= 10 else f" (+{len(self.codes) - 10} more)"
        return f"tariff version {self.version} has no {self.scheme} rows for codes {shown}{more}"
