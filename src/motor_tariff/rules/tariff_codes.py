"""Tariff code derivation for mandatory motor insurance.

The published tariff workbook numbers its rows with a single integer code:

  - Internal (Syrian-registered) vehicles: codes 1..34 cover the private
    category; the commercial, government and rental categories repeat the
    same 34 vehicle types at offsets of 34, 68 and 102 (codes 1..136).
  - Border (foreign/transit) vehicles: each vehicle type owns a block of
    three codes, one per duration of 3, 6 and 12 months
    (tourist 2-4, bus 6-8, other 10-12, motorcycle 14-16).

Duration is part of the border code; internal codes carry no duration.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from .errors import TariffNotFoundError

INTERNAL = "internal"
BORDER = "border"

BASE_TYPE_MIN = 1
BASE_TYPE_MAX = 34

# category code -> offset into the internal code space
CATEGORY_OFFSETS: Dict[str, int] = {
    "01": 0,
    "02": 34,
    "03": 68,
    "04": 102,
}

BORDER_BASE_CODES: Dict[str, int] = {
    "tourist": 2,
    "bus": 6,
    "other": 10,
    "motorcycle": 14,
}

BORDER_DURATION_INDEX: Dict[int, int] = {3: 0, 6: 1, 12: 2}

CLASSIFICATIONS: Tuple[str, ...] = ("0", "1", "2", "3")


@dataclass(frozen=True)
class TariffKey:
    """Identifies exactly one tariff row.

    ``variant`` is an optional finer discriminator (e.g. a fuel or engine-size
    split) that some tariff editions publish as extra rows next to the base
    code; it is kept separate from ``code`` rather than folded into it.
    """

    scheme: str
    code: int
    variant: Optional[str] = None

    @property
    def lookup(self) -> str:
        return row_key(self.code, self.variant)


def row_key(code: int | str, variant: Optional[str] = None) -> str:
    base = str(int(code))
    return f"{base}:{variant}" if variant else base


def internal_tariff_code(base_type: int, category: str) -> int:
    """Map a 1..34 vehicle type and a category code to the table code."""

    offset = CATEGORY_OFFSETS.get(category)
    if offset is None or not BASE_TYPE_MIN <= base_type <= BASE_TYPE_MAX:
        raise TariffNotFoundError(INTERNAL, f"{category}-{base_type:02d}")
    return base_type + offset


def border_tariff_code(border_type: str, months: int) -> int:
    base = BORDER_BASE_CODES.get(border_type)
    idx = BORDER_DURATION_INDEX.get(months)
    if base is None or idx is None:
        raise TariffNotFoundError(BORDER, f"{border_type}/{months}m")
    return base + idx


def split_internal_code(code: int) -> Tuple[str, int]:
    """Inverse of :func:`internal_tariff_code`: table code -> (category, base type)."""

    for category, offset in sorted(CATEGORY_OFFSETS.items(), key=lambda kv: kv[1], reverse=True):
        if code > offset:
            base = code - offset
            if base <= BASE_TYPE_MAX:
                return category, base
            break
    raise ValueError(f"internal tariff code {code} is outside 1..{BASE_TYPE_MAX * len(CATEGORY_OFFSETS)}")


# Every code the classification enumerations can produce; a table missing any of them is misconfigured.
REQUIRED_INTERNAL_CODES: FrozenSet[int] = frozenset(
    internal_tariff_code(base, cat)
    for cat in CATEGORY_OFFSETS
    for base in range(BASE_TYPE_MIN, BASE_TYPE_MAX + 1)
)
REQUIRED_BORDER_CODES: FrozenSet[int] = frozenset(
    border_tariff_code(t, m) for t in BORDER_BASE_CODES for m in BORDER_DURATION_INDEX
)


# ---------- Display catalogues ----------

CATEGORY_LABELS: Dict[str, str] = {
    "01": "خاصة (أفراد)",
    "02": "عامة (تجارية)",
    "03": "حكومية",
    "04": "تأجير",
}

CLASSIFICATION_LABELS: Dict[str, str] = {
    "0": "غير حكومية (عادي)",
    "1": "حكومية (خصم خاص)",
    "2": "تخفيض طابع",
    "3": "إعفاء طابع",
}

PERIOD_LABELS: Dict[int, str] = {
    12: "سنة كاملة (12 شهر)",
    6: "ستة أشهر",
    3: "ثلاثة أشهر",
}

BORDER_TYPE_LABELS: Dict[str, str] = {
    "tourist": "سيارات سياحية (حدودي)",
    "motorcycle": "دراجات نارية (حدودي)",
    "bus": "باصات نقل (حدودي)",
    "other": "بقية الفئات (حدودي)",
}

# Label prefixes are the published tariff group, which differs from the vehicle code.
INTERNAL_VEHICLE_TYPE_LABELS: Dict[str, str] = {
    "01": "01- سياحية قوة محرك حتى 20",
    "02": "01- نقل وركوب قوة محرك حتى 20",
    "03": "14- سياحية قوة محرك 21 وأكثر",
    "04": "14- نقل وركوب قوة محرك 21 وأكثر",
    "05": "15- ميكرو باص حتى 25 راكب",
    "06": "13- باص بولمان 26 راكب وأكثر",
    "07": "07- بيك آب حتى 3500 كغ قوة محرك 20",
    "08": "07- شاحنة براد قوة محرك حتى 20",
    "09": "07- شاحنة صهريج قوة محرك حتى 20",
    "10": "05- بيك آب حتى 3500 كغ قوة محرك 21 - 40",
    "11": "05- شاحنة فوق 3500 كغ قوة محرك 21 - 40",
    "12": "05- شاحنة صهريج قوة محرك 21 - 40",
    "13": "05- شاحنة براد قوة محرك 21 - 40",
    "14": "06- شاحنة قوة محرك 41 وأكثر",
    "15": "06- شاحنة صهريج قوة محرك 41 وأكثر",
    "16": "06- شاحنة براد قوة محرك 41 وأكثر",
    "17": "17- شاحنة + مقطورة",
    "18": "18- قاطرة ونصف مقطورة",
    "19": "18- قاطرة ونصف مقطورة براد",
    "20": "18- قاطرة ونصف مقطورة صهريج",
    "21": "03- آليات أشغال إسعاف إطفاء روافع قوة محرك 1 - 20",
    "22": "03- آليات أشغال جبالة مضخة تنظيف قوة محرك 1 - 20",
    "23": "03- آليات الأشغال الزراعية قوة محرك 1 - 20",
    "24": "02- آليات أشغال إسعاف إطفاء روافع قوة محرك 21 - 40",
    "25": "02- آليات أشغال جبالة مضخة تنظيف قوة محرك 21 - 40",
    "26": "02- آليات الأشغال الزراعية قوة محرك 21 - 40",
    "27": "04- آليات أشغال إسعاف إطفاء روافع قوة محرك41وأكثر",
    "28": "04- آليات أشغال جبالة مضخة تنظيف قوة محرك41وأكثر",
    "29": "04- آليات الأشغال الزراعية قوة محرك 41 وأكثر",
    "30": "08- جرار زراعي قوة محرك 1 - 30",
    "31": "09- جرار زراعي قوة محرك 31 وأكثر",
    "32": "12- دراجة آلية عجلتان",
    "33": "10- دراجة آلية 3 عجلات / عزاقة قوة محرك 1 - 20",
    "34": "11- دراجة آلية 3 عجلات / عزاقة قوة محرك 21 وأكثر",
}
