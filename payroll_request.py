"""
Scrape request model and caller-input handling.

Callers describe years and months either as lists or as range strings such as
"2023-2025" or "1-3,6,9-12"; both are expanded here before a job is created.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_YEARS = "2023-2025"
DEFAULT_MONTHS = "1-12"
DEFAULT_WAIT_AUTH_SECONDS = 60
DEFAULT_POLL_INTERVAL_SECONDS = 2


class InvalidRequestError(ValueError):
    """Caller input that cannot be turned into a scrape request."""


def _normalize_numbers(values: Iterable[int]) -> tuple[int, ...]:
    return tuple(sorted({int(v) for v in values}))


@dataclass(frozen=True)
class ScrapeRequest:
    """
    Immutable description of one payroll collection job.

    Years and months are stored de-duplicated and ascending; both must be
    non-empty.
    """

    username: str
    password: str = field(repr=False)
    pernr: str
    years: tuple[int, ...]
    months: tuple[int, ...]
    wait_auth_seconds: float = DEFAULT_WAIT_AUTH_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "years", _normalize_numbers(self.years))
        object.__setattr__(self, "months", _normalize_numbers(self.months))
        if not self.years:
            raise InvalidRequestError("At least one year is required.")
        if not self.months:
            raise InvalidRequestError("At least one month is required.")

    @property
    def total_months(self) -> int:
        return len(self.years) * len(self.months)

    def periods(self) -> list[tuple[int, int]]:
        """(year, month) pairs in year-then-month order."""
        return [(year, month) for year in self.years for month in self.months]


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _expand_part(part: str) -> list[int]:
    part = part.strip()
    if not part:
        return []
    if "-" in part:
        start_raw, end_raw = part.split("-", 1)
        start, end = _to_int(start_raw), _to_int(end_raw)
        if start is None or end is None:
            return []
        step = 1 if start <= end else -1
        return list(range(start, end + step, step))
    number = _to_int(part)
    return [] if number is None else [number]


def parse_range_input(value: Any) -> list[int]:
    """
    Expand a year/month selection into a list of integers.

    >>> parse_range_input("2023-2025")
    [2023, 2024, 2025]
    >>> parse_range_input("1-3,12")
    [1, 2, 3, 12]
    >>> parse_range_input([2024, "2025", "x"])
    [2024, 2025]

    Unparseable parts are dropped; None or an empty value yields [].
    """
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        numbers = (_to_int(item) for item in value)
        return [n for n in numbers if n is not None]
    if isinstance(value, int) and not isinstance(value, bool):
        return [value]

    result: list[int] = []
    for part in str(value).split(","):
        result.extend(_expand_part(part))
    return result


def _seconds(value: Any, default: float, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"{name} must be a number, got {value!r}") from e
    if seconds < 0:
        raise InvalidRequestError(f"{name} must not be negative")
    return seconds


def build_scrape_request(payload: Mapping[str, Any]) -> ScrapeRequest:
    """
    Validate caller input and build a ScrapeRequest.

    Recognized keys: username, password, pernr (defaults to username), years
    (default "2023-2025"), months (default "1-12"), wait_auth_seconds (default
    60) and poll_interval_seconds (default 2).

    Raises InvalidRequestError for missing credentials or an empty selection.
    """
    username = payload.get("username")
    password = payload.get("password")
    if not username or not password:
        raise InvalidRequestError("username and password are required.")

    pernr = payload.get("pernr") or username

    years = payload.get("years")
    months = payload.get("months")
    year_list = parse_range_input(DEFAULT_YEARS if years is None else years)
    month_list = parse_range_input(DEFAULT_MONTHS if months is None else months)
    if not year_list:
        raise InvalidRequestError("At least one year is required.")
    if not month_list:
        raise InvalidRequestError("At least one month is required.")

    return ScrapeRequest(
        username=str(username),
        password=str(password),
        pernr=str(pernr),
        years=tuple(year_list),
        months=tuple(month_list),
        wait_auth_seconds=_seconds(
            payload.get("wait_auth_seconds"), DEFAULT_WAIT_AUTH_SECONDS, "wait_auth_seconds"
        ),
        poll_interval_seconds=_seconds(
            payload.get("poll_interval_seconds"),
            DEFAULT_POLL_INTERVAL_SECONDS,
            "poll_interval_seconds",
        ),
    )
