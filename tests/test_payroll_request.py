from __future__ import annotations

import pytest

from payroll_request import InvalidRequestError, ScrapeRequest, build_scrape_request, parse_range_input


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023-2025", [2023, 2024, 2025]),
        ("1-3,12", [1, 2, 3, 12]),
        ("3-1", [3, 2, 1]),
        (" 2024 , 2025 ", [2024, 2025]),
        ("2024,abc,2025", [2024, 2025]),
        ("x-3", []),
        ([2024, "2025", "x", 2026.0], [2024, 2025, 2026]),
        (2024, [2024]),
        (None, []),
        ("", []),
        ([], []),
    ],
)
def test_parse_range_input(value, expected) -> None:
    assert parse_range_input(value) == expected


def test_defaults_are_applied() -> None:
    request = build_scrape_request({"username": "1234567", "password": "pw"})

    assert request.pernr == "1234567"
    assert request.years == (2023, 2024, 2025)
    assert request.months == tuple(range(1, 13))
    assert request.wait_auth_seconds == 60
    assert request.poll_interval_seconds == 2
    assert request.total_months == 36


def test_explicit_values() -> None:
    request = build_scrape_request(
        {
            "username": "1234567",
            "password": "pw",
            "pernr": "7654321",
            "years": "2025,2024,2024",
            "months": [3, 1],
            "wait_auth_seconds": "90",
            "poll_interval_seconds": 5,
        }
    )

    assert request.pernr == "7654321"
    assert request.years == (2024, 2025)
    assert request.months == (1, 3)
    assert request.wait_auth_seconds == 90
    assert request.poll_interval_seconds == 5


@pytest.mark.parametrize(
    "payload",
    [
        {"password": "pw"},
        {"username": "1234567"},
        {"username": "", "password": "pw"},
    ],
)
def test_missing_credentials_are_rejected(payload) -> None:
    with pytest.raises(InvalidRequestError):
        build_scrape_request(payload)


@pytest.mark.parametrize("field", ["years", "months"])
def test_empty_period_selection_is_rejected(field) -> None:
    with pytest.raises(InvalidRequestError):
        build_scrape_request({"username": "u", "password": "p", field: "abc"})


def test_negative_wait_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        build_scrape_request({"username": "u", "password": "p", "wait_auth_seconds": -1})


def test_request_normalizes_periods() -> None:
    request = ScrapeRequest(
        username="u",
        password="p",
        pernr="u",
        years=(2025, 2024, 2025),
        months=(2, 1, 2),
    )

    assert request.years == (2024, 2025)
    assert request.months == (1, 2)
    assert request.periods() == [(2024, 1), (2024, 2), (2025, 1), (2025, 2)]


def test_request_requires_non_empty_periods() -> None:
    with pytest.raises(InvalidRequestError):
        ScrapeRequest(username="u", password="p", pernr="u", years=(), months=(1,))


def test_password_is_not_in_repr() -> None:
    request = ScrapeRequest(username="u", password="hunter2", pernr="u", years=(2024,), months=(1,))

    assert "hunter2" not in repr(request)
