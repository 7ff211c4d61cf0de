"""
Field normalization for myehr pay detail records.

The pay detail endpoint returns loosely typed records whose field names vary
between portal screens (`bet01` vs `bet01Txt`, `paytyNm` vs `payTypeNm`, ...).
Each logical field is resolved from an ordered alias list; the first alias
holding a non-empty value wins.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, fields
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

DEFAULT_CATEGORY = "UNKNOWN"
DEFAULT_CURRENCY = "KRW"

MAX_MONEY_EXPONENT = 308
HALF = Decimal("0.5")

DATE_ALIASES = [
    "rqdatTxt",
    "rqdat",
    "rqDt",
    "payDate",
    "paydate",
    "payDt",
    "paydt",
    "payday",
    "payDay",
    "pdate",
    "payYmd",
]
PERIOD_END_DATE_ALIASES = ["fpend", "fpEnd", "fpendTxt"]
CATEGORY_ALIASES = ["paytyTxt", "paytyNm", "payTypeNm", "payType", "payName", "payNm", "category"]
GROUP_ALIASES = ["paygubun", "payGubun", "paygubunCd", "payGroup", "group"]
GROSS_ALIASES = ["bet01Txt", "bet01", "gross", "grossAmt", "totGross"]
DEDUCTION_ALIASES = ["bet07Txt", "bet07", "deductions", "deduction", "totDeduction"]
NET_ALIASES = ["bet08Txt", "bet08", "net", "netAmt", "totNet", "payAmt"]
CURRENCY_ALIASES = ["waers", "currency", "curr", "currCd"]
SEQNR_ALIASES = ["seqnr", "seqNo", "seq", "seqnrTxt", "seqno"]
FPBEG_ALIASES = ["fpbeg", "fpBeg", "fromDate", "begda", "fpbegTxt"]
FPEND_ALIASES = ["fpend", "fpEnd", "toDate", "endda", "fpendTxt"]

ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
NON_DIGIT_RE = re.compile(r"[^0-9]")
DATE_SEPARATOR_RE = re.compile(r"[./]")


@dataclass(frozen=True)
class Transaction:
    """One payroll line item for a (year, month) period."""

    year: int
    month: int
    date: str
    category: str
    group: str
    gross: int
    deductions: int
    net: int
    currency: str
    seqnr: str
    fpbeg: str
    fpend: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


TRANSACTION_FIELDS = [f.name for f in fields(Transaction)]


@dataclass(frozen=True)
class Summary:
    gross: int = 0
    deductions: int = 0
    net: int = 0
    count: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def first_present(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Return the value of the first key that is set and not an empty string."""
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_money(value: Any) -> int:
    """
    Parse a money value such as "1,234,567" or 1234.5 into an integer.

    Thousands separators are stripped and halves round toward positive infinity
    (-2.5 becomes -2). Empty, non-numeric, non-finite and out-of-range input
    yields 0.
    """
    if value is None:
        return 0
    stripped = str(value).replace(",", "").strip()
    if not stripped:
        return 0
    try:
        amount = Decimal(stripped)
    except InvalidOperation:
        return 0
    if not amount.is_finite():
        return 0
    # Beyond double range; the exponent alone would build a huge integer
    if amount.adjusted() > MAX_MONEY_EXPONENT:
        return 0
    return int((amount + HALF).to_integral_value(rounding=ROUND_FLOOR))


def normalize_date(value: Any) -> str:
    """
    Normalize a portal date to YYYY-MM-DD.

    Accepts "20240315", "2024-03-15", "2024.03.15" and "2024/03/15". Anything
    else is returned unchanged (trimmed).
    """
    if value is None:
        return ""
    raw = str(value).strip()
    if not raw:
        return ""

    digits = NON_DIGIT_RE.sub("", raw)
    if len(digits) == 8:
        return f"{digits[:4]}-{digits[4:6]}-{digits[6:]}"

    normalized = DATE_SEPARATOR_RE.sub("-", raw)
    return normalized if ISO_DATE_RE.fullmatch(normalized) else raw


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip() or default


def normalize_row(year: int, month: int, row: Mapping[str, Any]) -> Transaction:
    date = (
        normalize_date(first_present(row, DATE_ALIASES))
        or normalize_date(first_present(row, PERIOD_END_DATE_ALIASES))
        or f"{year}-{month:02d}-01"
    )

    return Transaction(
        year=year,
        month=month,
        date=date,
        category=_text(first_present(row, CATEGORY_ALIASES), DEFAULT_CATEGORY),
        group=_text(first_present(row, GROUP_ALIASES)),
        gross=parse_money(first_present(row, GROSS_ALIASES)),
        deductions=parse_money(first_present(row, DEDUCTION_ALIASES)),
        net=parse_money(first_present(row, NET_ALIASES)),
        currency=_text(first_present(row, CURRENCY_ALIASES), DEFAULT_CURRENCY),
        seqnr=_text(first_present(row, SEQNR_ALIASES)),
        fpbeg=normalize_date(first_present(row, FPBEG_ALIASES)),
        fpend=normalize_date(first_present(row, FPEND_ALIASES)),
    )


def normalize_rows(year: int, month: int, rows: Iterable[Any] | None) -> list[Transaction]:
    """Normalize raw pay detail records; entries that are not mappings are skipped."""
    if not rows:
        return []
    return [normalize_row(year, month, row) for row in rows if isinstance(row, Mapping)]


def compute_summary(transactions: Iterable[Transaction]) -> Summary:
    gross = deductions = net = count = 0
    for txn in transactions:
        gross += txn.gross
        deductions += txn.deductions
        net += txn.net
        count += 1
    return Summary(gross=gross, deductions=deductions, net=net, count=count)
