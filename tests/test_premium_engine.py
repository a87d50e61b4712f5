import logging

import pytest

from motor_tariff.rules.errors import (
    INVALID_DURATION,
    INVALID_ENUM,
    MISSING_FIELD,
    TariffInconsistencyError,
    TariffNotFoundError,
    ValidationError,
)
from motor_tariff.rules.premium_engine import (
    AddOnFees,
    BorderPricing,
    InternalPricing,
    PremiumEngine,
    normalize_request,
)
from motor_tariff.rules.tariff_loader import TariffTableStore, build_tariff_table

from conftest import make_row

INTERNAL_REQUEST = {
    "insuranceType": "internal",
    "vehicleCode": "01",
    "category": "01",
    "classification": "0",
    "months": 12,
}


def _breakdown_components(b):
    return b.net_premium + b.stamp_fee + b.war_effort + b.local_administration + b.reconstruction + b.martyr_fund


# ---------- Scenarios ----------

def test_internal_without_add_ons(tariff_table):
    engine = PremiumEngine()

    breakdown = engine.quote(normalize_request(INTERNAL_REQUEST), tariff_table)

    assert (breakdown.net_premium, breakdown.stamp_fee, breakdown.war_effort) == (10000, 500, 200)
    assert (breakdown.local_administration, breakdown.reconstruction, breakdown.martyr_fund) == (100, 300, 100)
    assert breakdown.subtotal == 11200
    assert breakdown.total == 11200
    assert breakdown.add_ons == 0


def test_internal_with_all_add_ons(tariff_table):
    engine = PremiumEngine(AddOnFees(electronic_card=150, premium_service=50, rescue_service=30))
    payload = {**INTERNAL_REQUEST, "electronicCard": True, "premiumService": True, "rescueService": True}

    breakdown = engine.quote(engine.normalize(payload), tariff_table)

    assert breakdown.electronic_card_fee == 150
    assert breakdown.premium_service_fee == 50
    assert breakdown.rescue_service_fee == 30
    assert breakdown.subtotal == 11200
    assert breakdown.total == 11430


def test_border_tourist_twelve_months_matches_row_4(tariff_table):
    engine = PremiumEngine()

    breakdown = engine.quote(
        normalize_request({"insuranceType": "border", "borderVehicleType": "tourist", "months": 12}),
        tariff_table,
    )

    row = tariff_table.border["4"]
    assert breakdown.tariff_code == "4"
    assert breakdown.net_premium == row.net_premium
    assert breakdown.stamp_fee == row.stamp_fee
    assert breakdown.war_effort == row.war_effort
    assert breakdown.local_administration == row.local_administration
    assert breakdown.reconstruction == row.reconstruction
    assert breakdown.martyr_fund == row.martyr_fund
    assert breakdown.subtotal == breakdown.total == row.total
    assert breakdown.add_ons == 0


def test_invalid_internal_duration():
    with pytest.raises(ValidationError) as exc:
        normalize_request({**INTERNAL_REQUEST, "months": 4})

    assert exc.value.kind == INVALID_DURATION
    assert exc.value.field == "months"


# ---------- Properties ----------

def test_determinism(tariff_table):
    engine = PremiumEngine()
    payload = {**INTERNAL_REQUEST, "vehicleCode": "17", "category": "03", "rescueService": True}

    assert engine.quote(engine.normalize(payload), tariff_table) == engine.quote(engine.normalize(payload), tariff_table)


@pytest.mark.parametrize("category", ["01", "02", "03", "04"])
def test_aggregation_identity_for_every_internal_code(tariff_table, category):
    engine = PremiumEngine()
    for base in range(1, 35):
        pricing = InternalPricing(f"{base:02d}", category, "0", 12, electronic_card=base % 2 == 0, rescue_service=True)
        b = engine.quote(pricing, tariff_table)
        assert b.subtotal == _breakdown_components(b)
        assert b.total == b.subtotal + b.electronic_card_fee + b.premium_service_fee + b.rescue_service_fee
        assert b.tariff_code == str(base + {"01": 0, "02": 34, "03": 68, "04": 102}[category])


@pytest.mark.parametrize("border_type", ["tourist", "motorcycle", "bus", "other"])
@pytest.mark.parametrize("months", [3, 6, 12])
def test_border_requests_never_carry_add_ons(tariff_table, border_type, months):
    engine = PremiumEngine()
    payload = {
        "insuranceType": "border",
        "borderVehicleType": border_type,
        "months": months,
        # ignored for border insurance
        "electronicCard": True,
        "premiumService": True,
        "rescueService": True,
    }

    b = engine.quote(engine.normalize(payload), tariff_table)

    assert b.electronic_card_fee == b.premium_service_fee == b.rescue_service_fee == 0
    assert b.total == b.subtotal


def test_unknown_base_type_fails_closed(tariff_table):
    engine = PremiumEngine()

    with pytest.raises(TariffNotFoundError):
        engine.quote(engine.normalize({**INTERNAL_REQUEST, "vehicleCode": "35"}), tariff_table)


def test_unknown_variant_fails_closed(tariff_table):
    engine = PremiumEngine()

    with pytest.raises(TariffNotFoundError):
        engine.quote(engine.normalize({**INTERNAL_REQUEST, "variant": "ev"}), tariff_table)


def test_classification_does_not_change_price(tariff_table):
    engine = PremiumEngine()
    totals = {
        engine.quote(engine.normalize({**INTERNAL_REQUEST, "classification": c}), tariff_table).total
        for c in ("0", "1", "2", "3")
    }

    assert totals == {11200}


# ---------- Normalizer ----------

def test_normalizer_canonicalizes_internal_request():
    pricing = normalize_request(
        {"insuranceType": "Internal", "vehicleCode": 7, "category": "2", "classification": "1", "months": "6"}
    )

    assert pricing == InternalPricing("07", "02", "1", 6)


def test_normalizer_defaults_add_on_flags_to_false():
    pricing = normalize_request(INTERNAL_REQUEST)

    assert (pricing.electronic_card, pricing.premium_service, pricing.rescue_service) == (False, False, False)


def test_normalizer_canonicalizes_border_request():
    pricing = normalize_request({"insuranceType": "border", "borderVehicleType": " Bus ", "months": 6})

    assert pricing == BorderPricing("bus", 6)


@pytest.mark.parametrize(
    "payload, kind, field",
    [
        ({}, MISSING_FIELD, "insuranceType"),
        ([], MISSING_FIELD, "body"),
        ({"insuranceType": "marine"}, INVALID_ENUM, "insuranceType"),
        ({**INTERNAL_REQUEST, "vehicleCode": ""}, MISSING_FIELD, "vehicleCode"),
        ({**INTERNAL_REQUEST, "vehicleCode": "01a"}, INVALID_ENUM, "vehicleCode"),
        ({**INTERNAL_REQUEST, "vehicleCode": "²"}, INVALID_ENUM, "vehicleCode"),
        ({**INTERNAL_REQUEST, "category": "²"}, INVALID_ENUM, "category"),
        ({k: v for k, v in INTERNAL_REQUEST.items() if k != "category"}, MISSING_FIELD, "category"),
        ({**INTERNAL_REQUEST, "category": "05"}, INVALID_ENUM, "category"),
        ({**INTERNAL_REQUEST, "classification": None}, MISSING_FIELD, "classification"),
        ({**INTERNAL_REQUEST, "classification": "7"}, INVALID_ENUM, "classification"),
        ({**INTERNAL_REQUEST, "classification": "00"}, INVALID_ENUM, "classification"),
        ({k: v for k, v in INTERNAL_REQUEST.items() if k != "months"}, MISSING_FIELD, "months"),
        ({**INTERNAL_REQUEST, "months": "twelve"}, INVALID_DURATION, "months"),
        ({**INTERNAL_REQUEST, "months": True}, INVALID_DURATION, "months"),
        ({**INTERNAL_REQUEST, "months": "²"}, INVALID_DURATION, "months"),
        ({**INTERNAL_REQUEST, "months": "9" * 5000}, INVALID_DURATION, "months"),
        ({**INTERNAL_REQUEST, "electronicCard": "maybe"}, INVALID_ENUM, "electronicCard"),
        ({"insuranceType": "border", "months": 12}, MISSING_FIELD, "borderVehicleType"),
        ({"insuranceType": "border", "borderVehicleType": "truck", "months": 12}, INVALID_ENUM, "borderVehicleType"),
        ({"insuranceType": "border", "borderVehicleType": "tourist", "months": 1}, INVALID_DURATION, "months"),
        ({"insuranceType": "border", "borderVehicleType": "tourist", "months": 2}, INVALID_DURATION, "months"),
    ],
)
def test_normalizer_errors_name_the_offending_field(payload, kind, field):
    with pytest.raises(ValidationError) as exc:
        normalize_request(payload)

    assert exc.value.kind == kind
    assert exc.value.field == field
    assert exc.value.status_code == 400


def test_internal_months_are_configurable():
    assert normalize_request({**INTERNAL_REQUEST, "months": 1}).months == 1

    with pytest.raises(ValidationError):
        normalize_request({**INTERNAL_REQUEST, "months": 1}, internal_months=(3, 6, 12))


# ---------- Inconsistent tables ----------

def _corrupted_table(version_record):
    version_record["internal"]["1"] = make_row(10000, total=99999)
    return build_tariff_table(version_record)


def test_inconsistent_total_is_logged_and_recomputed(version_record, caplog):
    table = _corrupted_table(version_record)
    engine = PremiumEngine()

    with caplog.at_level(logging.WARNING, logger="motor_tariff.rules.premium_engine"):
        result = engine.calculate(INTERNAL_REQUEST, table)

    assert result.success
    assert result.breakdown.total == 11200
    assert result.warnings and "99999" in result.warnings[0]
    assert any("TariffInconsistencyWarning" in r.getMessage() for r in caplog.records)


def test_strict_mode_rejects_inconsistent_total(version_record):
    table = _corrupted_table(version_record)
    engine = PremiumEngine(strict_totals=True)

    with pytest.raises(TariffInconsistencyError):
        engine.quote(engine.normalize(INTERNAL_REQUEST), table)

    result = engine.calculate(INTERNAL_REQUEST, table)
    assert not result.success
    assert result.status_code == 500
    assert result.breakdown is None


# ---------- Structured results ----------

def test_calculate_success_response_shape(tariff_table):
    result = PremiumEngine().calculate(INTERNAL_REQUEST, TariffTableStore(tariff_table))

    response = result.to_response()
    assert result.status_code == 200
    assert response["success"] is True
    breakdown = response["data"]["breakdown"]
    assert response["data"]["total"] == breakdown["total"] == 11200
    for key in (
        "netPremium", "stampFee", "warEffort", "localAdministration", "reconstruction", "martyrFund",
        "electronicCardFee", "premiumServiceFee", "rescueServiceFee", "subtotal", "total",
    ):
        assert isinstance(breakdown[key], int)
    assert breakdown["tariffVersion"] == "test-1"


@pytest.mark.parametrize(
    "payload, status",
    [
        ({**INTERNAL_REQUEST, "months": 4}, 400),
        ({**INTERNAL_REQUEST, "months": "²"}, 400),
        ({**INTERNAL_REQUEST, "vehicleCode": "²"}, 400),
        ({**INTERNAL_REQUEST, "category": "²"}, 400),
        ({**INTERNAL_REQUEST, "months": "9" * 5000}, 400),
        ({**INTERNAL_REQUEST, "vehicleCode": "35"}, 422),
    ],
)
def test_calculate_maps_errors_to_statuses(tariff_table, payload, status):
    result = PremiumEngine().calculate(payload, tariff_table)

    assert not result.success
    assert result.status_code == status
    assert result.breakdown is None
    assert result.to_response()["success"] is False
    assert result.to_response()["message"]


def test_calculate_without_table_is_retryable():
    result = PremiumEngine().calculate(INTERNAL_REQUEST, TariffTableStore())

    assert result.status_code == 503
    assert result.to_response()["retryable"] is True


def test_unexpected_failure_becomes_internal_error(tariff_table, monkeypatch):
    engine = PremiumEngine()
    monkeypatch.setattr(engine, "_price", lambda pricing, table: 1 / 0)

    result = engine.calculate(INTERNAL_REQUEST, tariff_table)

    assert result.status_code == 500
    assert result.to_response() == {"success": False, "message": "premium calculation failed"}


def test_engine_reads_fees_and_durations_from_settings(monkeypatch, tariff_table):
    from motor_tariff.settings import Settings

    monkeypatch.setenv("ELECTRONIC_CARD_FEE", "200")
    monkeypatch.setenv("INTERNAL_ALLOWED_MONTHS", "[3, 6, 12]")
    monkeypatch.setenv("STRICT_TARIFF_TOTALS", "true")

    engine = PremiumEngine.from_settings(Settings())

    assert engine.add_on_fees == AddOnFees(electronic_card=200, premium_service=50, rescue_service=30)
    assert engine.internal_months == (3, 6, 12)
    assert engine.strict_totals is True
    assert engine.quote(engine.normalize({**INTERNAL_REQUEST, "electronicCard": True}), tariff_table).total == 11400
