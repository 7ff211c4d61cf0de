"""
tests/test_payroll_cli.py

Command-line flow with the portal replaced by an in-process runner.
"""

from __future__ import annotations

import csv
import json

import pytest

import payroll_cli
from payroll_normalizer import TRANSACTION_FIELDS, Transaction, compute_summary

TXN = Transaction(
    year=2024,
    month=1,
    date="2024-01-25",
    category="급여",
    group="",
    gross=3000,
    deductions=500,
    net=2500,
    currency="KRW",
    seqnr="",
    fpbeg="",
    fpend="",
)


def completing_runner(registry, job_id, request, verbose=False) -> None:
    registry.update(
        job_id,
        status="completed",
        message="Done! Collected 1 transactions.",
        transactions=[TXN],
        summary=compute_summary([TXN]),
        processed_months=request.total_months,
    )


def failing_runner(registry, job_id, request, verbose=False) -> None:
    registry.fail(job_id, "Mobile approval timed out. Last status: poll: init=200 notice=200 success=200")


@pytest.fixture(autouse=True)
def cli_env(monkeypatch) -> None:
    monkeypatch.setattr(payroll_cli, "get_credentials", lambda verbose=True: ("1234567", "pw"))
    monkeypatch.setattr(payroll_cli, "STATUS_POLL_SECONDS", 0)
    monkeypatch.setattr(payroll_cli, "run_payroll_job", completing_runner)


def test_main_exports_results(tmp_path, capsys) -> None:
    code = payroll_cli.main(["--years", "2024", "--months", "1", "--output-dir", str(tmp_path)])

    assert code == 0
    [json_file] = tmp_path.glob("payroll_*.json")
    [csv_file] = tmp_path.glob("payroll_*.csv")

    exported = json.loads(json_file.read_text(encoding="utf-8"))
    assert exported["summary"] == {"gross": 3000, "deductions": 500, "net": 2500, "count": 1}
    assert exported["transactions"][0]["category"] == "급여"

    with open(csv_file, newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))
    assert rows[0]["net"] == "2500"
    assert "Net: 2,500" in capsys.readouterr().out


def test_no_export_writes_nothing(tmp_path) -> None:
    code = payroll_cli.main(["--years", "2024", "--no-export", "--output-dir", str(tmp_path)])

    assert code == 0
    assert list(tmp_path.iterdir()) == []


def test_invalid_years_exit_with_error(tmp_path, capsys) -> None:
    code = payroll_cli.main(["--years", "soon", "--output-dir", str(tmp_path)])

    assert code == 1
    assert "Invalid request" in capsys.readouterr().out


def test_failed_job_exit_with_error(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(payroll_cli, "run_payroll_job", failing_runner)

    code = payroll_cli.main(["--years", "2024", "--output-dir", str(tmp_path)])

    assert code == 1
    assert "init=200" in capsys.readouterr().out
    assert list(tmp_path.iterdir()) == []


def test_missing_credentials_exit_with_error(monkeypatch) -> None:
    def no_credentials(verbose=True):
        raise ValueError("ID and password are required")

    monkeypatch.setattr(payroll_cli, "get_credentials", no_credentials)

    assert payroll_cli.main(["--no-export"]) == 1


def test_parser_defaults() -> None:
    args = payroll_cli.build_parser().parse_args([])

    assert args.years == "2023-2025"
    assert args.months == "1-12"
    assert args.pernr is None
    assert not args.debug


def test_parser_reads_wait_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("MYEHR_WAIT_AUTH_SECONDS", "90")
    monkeypatch.setenv("MYEHR_POLL_INTERVAL_SECONDS", "3")

    args = payroll_cli.build_parser().parse_args([])

    assert (args.wait_auth, args.poll_interval) == (90.0, 3.0)
    # .env is loaded once, by ehr_credentials
    assert not hasattr(payroll_cli, "load_dotenv")


# ---------------------------------------------------------------------------
# Export helpers
# ---------------------------------------------------------------------------


def test_export_to_csv_header_order(tmp_path) -> None:
    path = tmp_path / "out.csv"

    payroll_cli.export_to_csv([TXN.to_dict()], path)

    raw = path.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    header = raw.decode("utf-8-sig").splitlines()[0]
    assert header.split(",") == TRANSACTION_FIELDS


def test_export_to_json_without_transactions(tmp_path) -> None:
    path = tmp_path / "out.json"

    payroll_cli.export_to_json({"summary": None}, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["transactions"] == []
    assert "exported_at" in data
