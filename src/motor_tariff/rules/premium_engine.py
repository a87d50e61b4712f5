# src/motor_tariff/rules/premium_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import (
    INVALID_DURATION,
    INVALID_ENUM,
    MISSING_FIELD,
    PricingError,
    TariffInconsistencyError,
    TariffInconsistencyWarning,
    TariffNotFoundError,
    ValidationError,
)
from .tariff_codes import (
    BORDER,
    BORDER_BASE_CODES,
    BORDER_DURATION_INDEX,
    CATEGORY_OFFSETS,
    CLASSIFICATIONS,
    INTERNAL,
    TariffKey,
    border_tariff_code,
    internal_tariff_code,
)
from .tariff_loader import TariffRow, TariffTable, TariffTableStore

logger = logging.getLogger(__name__)

DEFAULT_INTERNAL_MONTHS: Tuple[int, ...] = (1, 2, 3, 6, 12)
BORDER_MONTHS: Tuple[int, ...] = tuple(sorted(BORDER_DURATION_INDEX))


# -------------------------------
# Request & result models
# -------------------------------

@dataclass(frozen=True)
class AddOnFees:
    """Fixed surcharges for the optional internal-insurance services."""
    electronic_card: int = 150
    premium_service: int = 50
    rescue_service: int = 30

    @classmethod
    def from_settings(cls, cfg: Any) -> "AddOnFees":
        return cls(
            electronic_card=int(cfg.electronic_card_fee),
            premium_service=int(cfg.premium_service_fee),
            rescue_service=int(cfg.rescue_service_fee),
        )


@dataclass(frozen=True)
class InternalPricing:
    vehicle_code: str
    category: str
    classification: str
    months: int
    electronic_card: bool = False
    premium_service: bool = False
    rescue_service: bool = False
    variant: Optional[str] = None

    insurance_type = INTERNAL

    @property
    def base_type(self) -> int:
        return int(self.vehicle_code)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "insuranceType": INTERNAL,
            "vehicleCode": self.vehicle_code,
            "category": self.category,
            "classification": self.classification,
            "months": self.months,
            "electronicCard": self.electronic_card,
            "premiumService": self.premium_service,
            "rescueService": self.rescue_service,
        }
        if self.variant:
            payload["variant"] = self.variant
        return payload


@dataclass(frozen=True)
class BorderPricing:
    border_vehicle_type: str
    months: int

    insurance_type = BORDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insuranceType": BORDER,
            "borderVehicleType": self.border_vehicle_type,
            "months": self.months,
        }


PricingInput = Union[InternalPricing, BorderPricing]


@dataclass(frozen=True)
class QuoteBreakdown:
    net_premium: int
    stamp_fee: int
    war_effort: int
    local_administration: int
    reconstruction: int
    martyr_fund: int
    subtotal: int
    total: int
    electronic_card_fee: int = 0
    premium_service_fee: int = 0
    rescue_service_fee: int = 0
    tariff_code: Optional[str] = None
    tariff_version: Optional[str] = None

    @property
    def add_ons(self) -> int:
        return self.electronic_card_fee + self.premium_service_fee + self.rescue_service_fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "netPremium": self.net_premium,
            "stampFee": self.stamp_fee,
            "warEffort": self.war_effort,
            "localAdministration": self.local_administration,
            "reconstruction": self.reconstruction,
            "martyrFund": self.martyr_fund,
            "electronicCardFee": self.electronic_card_fee,
            "premiumServiceFee": self.premium_service_fee,
            "rescueServiceFee": self.rescue_service_fee,
            "subtotal": self.subtotal,
            "total": self.total,
            "tariffCode": self.tariff_code,
            "tariffVersion": self.tariff_version,
        }


@dataclass
class QuoteResult:
    """Outcome of one request: a complete breakdown or an error, never both."""
    breakdown: Optional[QuoteBreakdown] = None
    error: Optional[PricingError] = None
    pricing: Optional[PricingInput] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.breakdown is not None

    @property
    def status_code(self) -> int:
        if self.error is not None:
            return self.error.status_code
        return 200

    def to_response(self) -> Dict[str, Any]:
        if not self.success:
            payload: Dict[str, Any] = {
                "success": False,
                "message": self.error.message if self.error else "calculation failed",
            }
            if isinstance(self.error, ValidationError):
                payload["kind"] = self.error.kind
                payload["field"] = self.error.field
            if self.error is not None and self.error.retryable:
                payload["retryable"] = True
            return payload

        data: Dict[str, Any] = {
            "breakdown": self.breakdown.to_dict(),
            "total": self.breakdown.total,
        }
        if self.pricing is not None:
            data["pricing"] = self.pricing.to_dict()
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return {"success": True, "data": data}


# -------------------------------
# Input normalizer
# -------------------------------

def _text(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(MISSING_FIELD, name, f"{name} is required")
    txt = str(value).strip()
    if not txt:
        raise ValidationError(MISSING_FIELD, name, f"{name} is required")
    return txt


def _months(payload: Mapping[str, Any], allowed: Iterable[int]) -> int:
    value = payload.get("months")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(MISSING_FIELD, "months", "months is required")
    allowed_set = sorted(set(allowed))
    if isinstance(value, bool):
        months = None
    elif isinstance(value, int):
        months = value
    elif isinstance(value, float) and value.is_integer():
        months = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        try:
            months = int(value.strip())
        except ValueError:
            months = None
    else:
        months = None
    if months is None or months not in allowed_set:
        raise ValidationError(
            INVALID_DURATION,
            "months",
            f"months must be one of {', '.join(str(m) for m in allowed_set)}; got {value!r:.40}",
        )
    return months


def _flag(payload: Mapping[str, Any], name: str) -> bool:
    value = payload.get(name)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        norm = value.strip().lower()
        if norm in ("true", "1", "yes", "on"):
            return True
        if norm in ("false", "0", "no", "off", ""):
            return False
    raise ValidationError(INVALID_ENUM, name, f"{name} must be a boolean; got {value!r}")


def _two_digit(payload: Mapping[str, Any], name: str) -> str:
    raw = _text(payload, name)
    message = f"{name} must be a numeric code; got {raw[:20]!r}"
    if not raw.isdigit():
        raise ValidationError(INVALID_ENUM, name, message)
    # isdigit() admits superscripts and digit runs past the int conversion limit
    try:
        return f"{int(raw):02d}"
    except ValueError:
        raise ValidationError(INVALID_ENUM, name, message) from None


def _normalize_internal(payload: Mapping[str, Any], internal_months: Iterable[int]) -> InternalPricing:
    vehicle_code = _two_digit(payload, "vehicleCode")
    category = _two_digit(payload, "category")
    if category not in CATEGORY_OFFSETS:
        raise ValidationError(
            INVALID_ENUM, "category",
            f"category must be one of {', '.join(CATEGORY_OFFSETS)}; got {category!r}",
        )
    classification = _text(payload, "classification")
    if classification not in CLASSIFICATIONS:
        raise ValidationError(
            INVALID_ENUM, "classification",
            f"classification must be one of {', '.join(CLASSIFICATIONS)}; got {classification!r}",
        )
    months = _months(payload, internal_months)
    variant = payload.get("variant")
    if variant is not None:
        variant = str(variant).strip() or None
    return InternalPricing(
        vehicle_code=vehicle_code,
        category=category,
        classification=classification,
        months=months,
        electronic_card=_flag(payload, "electronicCard"),
        premium_service=_flag(payload, "premiumService"),
        rescue_service=_flag(payload, "rescueService"),
        variant=variant,
    )


def _normalize_border(payload: Mapping[str, Any]) -> BorderPricing:
    border_type = _text(payload, "borderVehicleType").lower()
    if border_type not in BORDER_BASE_CODES:
        raise ValidationError(
            INVALID_ENUM, "borderVehicleType",
            f"borderVehicleType must be one of {', '.join(BORDER_BASE_CODES)}; got {border_type!r}",
        )
    return BorderPricing(border_vehicle_type=border_type, months=_months(payload, BORDER_MONTHS))


def normalize_request(
    payload: Mapping[str, Any],
    *,
    internal_months: Iterable[int] = DEFAULT_INTERNAL_MONTHS,
) -> PricingInput:
    """Validate a raw pricing payload and return its canonical form."""

    if not isinstance(payload, Mapping):
        raise ValidationError(MISSING_FIELD, "body", "request body must be a JSON object")
    insurance_type = _text(payload, "insuranceType").lower()
    if insurance_type == INTERNAL:
        return _normalize_internal(payload, internal_months)
    if insurance_type == BORDER:
        return _normalize_border(payload)
    raise ValidationError(
        INVALID_ENUM, "insuranceType",
        f"insuranceType must be 'internal' or 'border'; got {insurance_type!r}",
    )


# -------------------------------
# Resolver, composer, aggregator
# -------------------------------

def tariff_key_for(pricing: PricingInput) -> TariffKey:
    if isinstance(pricing, InternalPricing):
        code = internal_tariff_code(pricing.base_type, pricing.category)
        return TariffKey(INTERNAL, code, pricing.variant)
    return TariffKey(BORDER, border_tariff_code(pricing.border_vehicle_type, pricing.months))


def resolve_tariff(pricing: PricingInput, table: TariffTable) -> Tuple[TariffKey, TariffRow]:
    key = tariff_key_for(pricing)
    row = table.row_for(key)
    if row is None:
        raise TariffNotFoundError(key.scheme, key.lookup, table.version)
    return key, row


def compose_add_ons(pricing: PricingInput, fees: AddOnFees) -> Dict[str, int]:
    """Add-on fees for the request; border requests always carry zeros."""

    add_ons = {"electronic_card_fee": 0, "premium_service_fee": 0, "rescue_service_fee": 0}
    if isinstance(pricing, InternalPricing):
        if pricing.electronic_card:
            add_ons["electronic_card_fee"] = fees.electronic_card
        if pricing.premium_service:
            add_ons["premium_service_fee"] = fees.premium_service
        if pricing.rescue_service:
            add_ons["rescue_service_fee"] = fees.rescue_service
    return add_ons


def aggregate(
    key: TariffKey,
    row: TariffRow,
    add_ons: Mapping[str, int],
    *,
    version: Optional[str] = None,
) -> QuoteBreakdown:
    subtotal = row.components_sum
    return QuoteBreakdown(
        net_premium=row.net_premium,
        stamp_fee=row.stamp_fee,
        war_effort=row.war_effort,
        local_administration=row.local_administration,
        reconstruction=row.reconstruction,
        martyr_fund=row.martyr_fund,
        subtotal=subtotal,
        total=subtotal + sum(add_ons.values()),
        tariff_code=key.lookup,
        tariff_version=version,
        **add_ons,
    )


class PremiumEngine:
    """
    Prices mandatory insurance requests against a tariff snapshot.

    The engine holds configuration only (add-on fees, allowed durations);
    the tariff table is passed in per call so every calculation runs against
    exactly one version.
    """

    def __init__(
        self,
        add_on_fees: Optional[AddOnFees] = None,
        *,
        internal_months: Iterable[int] = DEFAULT_INTERNAL_MONTHS,
        strict_totals: bool = False,
    ):
        self.add_on_fees = add_on_fees or AddOnFees()
        self.internal_months = tuple(sorted(set(internal_months)))
        self.strict_totals = strict_totals

    @classmethod
    def from_settings(cls, cfg: Any) -> "PremiumEngine":
        return cls(
            AddOnFees.from_settings(cfg),
            internal_months=cfg.internal_allowed_months,
            strict_totals=cfg.strict_tariff_totals,
        )

    def normalize(self, payload: Mapping[str, Any]) -> PricingInput:
        return normalize_request(payload, internal_months=self.internal_months)

    def _check_total(self, key: TariffKey, row: TariffRow, table: TariffTable) -> Optional[str]:
        recomputed = row.components_sum
        if row.total == recomputed:
            return None
        message = (
            f"tariff {table.version} {key.scheme} code {key.lookup}: stored total {row.total} "
            f"!= recomputed {recomputed}; using recomputed value"
        )
        if self.strict_totals:
            raise TariffInconsistencyError(message)
        logger.warning("%s: %s", TariffInconsistencyWarning.__name__, message)
        return message

    def _price(self, pricing: PricingInput, table: TariffTable) -> Tuple[QuoteBreakdown, List[str]]:
        key, row = resolve_tariff(pricing, table)
        warning = self._check_total(key, row, table)
        add_ons = compose_add_ons(pricing, self.add_on_fees)
        breakdown = aggregate(key, row, add_ons, version=table.version)
        return breakdown, [warning] if warning else []

    def quote(self, pricing: PricingInput, table: TariffTable) -> QuoteBreakdown:
        """Price a normalized request; raises :class:`PricingError` subclasses."""

        breakdown, _ = self._price(pricing, table)
        return breakdown

    def calculate(
        self,
        payload: Mapping[str, Any],
        source: Union[TariffTable, TariffTableStore],
    ) -> QuoteResult:
        """Normalize, resolve and price ``payload``; errors come back in the result."""

        pricing: Optional[PricingInput] = None
        try:
            pricing = self.normalize(payload)
            table = source.active() if isinstance(source, TariffTableStore) else source
            breakdown, warnings = self._price(pricing, table)
        except PricingError as exc:
            logger.info("Pricing request rejected (%s): %s", type(exc).__name__, exc.message)
            return QuoteResult(error=exc, pricing=pricing)
        except Exception:
            logger.exception("Premium calculation failed")
            return QuoteResult(error=PricingError("premium calculation failed"), pricing=pricing)
        return QuoteResult(breakdown=breakdown, pricing=pricing, warnings=warnings)
