"""
Payroll Collection Loop

Fetches pay details for every requested (year, month) period from an
approved myehr session and normalizes them into Transactions.

A period whose response comes back as an HTML page (stale session) is
retried once after refreshing the CSRF token; if the retry is HTML as well
the period is skipped and the failure reported through the progress message.
"""

from __future__ import annotations

import json
import time
from typing import Any

from ehr_auth import CsrfToken, ProgressCallback, fetch_latest_csrf
from ehr_client import EHR_BASE_URL, PAY_DETAILS_URL, PAYSLIP_INIT_URL, EhrClient, debug_log
from ehr_pages import looks_like_html
from payroll_normalizer import Transaction, normalize_rows
from payroll_request import ScrapeRequest


class StaleSessionError(RuntimeError):
    """The portal kept answering with an HTML page instead of JSON."""


def extract_pay_details(payload: Any) -> list[Any]:
    """Return `result.payDetails.payDetails`, or [] when any level is missing."""
    node = payload
    for key in ("result", "payDetails", "payDetails"):
        if not isinstance(node, dict):
            return []
        node = node.get(key)
    return node if isinstance(node, list) else []


class PayrollCollector:
    """
    Collects pay details period by period for one job.

    Progress is reported before each fetch so the caller sees which period is
    in flight; a fixed delay between periods keeps the load on the portal low.
    """

    DETAIL_API = PAY_DETAILS_URL

    TOKEN_REFRESHED_MESSAGE = "Refreshed the session token. Continuing collection."

    def __init__(
        self,
        client: EhrClient,
        request: ScrapeRequest,
        csrf: CsrfToken,
        progress: ProgressCallback | None = None,
        delay_seconds: float = 0.2,
        verbose: bool = False,
    ) -> None:
        self.client = client
        self.request = request
        self.csrf = csrf
        self.progress = progress
        self.delay_seconds = delay_seconds
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def _report(self, **fields: Any) -> None:
        if self.progress:
            self.progress(**fields)

    def build_headers(self, csrf: CsrfToken) -> dict[str, str]:
        return {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "Origin": EHR_BASE_URL,
            "Referer": PAYSLIP_INIT_URL,
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
            csrf.header_name: csrf.value,
        }

    def build_form(self, year: int, month: int, csrf: CsrfToken) -> dict[str, str]:
        return {
            "coScnCd": "H",
            "yearPay": "N",
            "pernr": self.request.pernr,
            "loginPernr": self.request.pernr,
            "year": str(year),
            "month": f"{month:02d}",
            "_csrf": csrf.value,
        }

    def _post_period(self, year: int, month: int) -> str:
        response = self.client.post(
            self.DETAIL_API,
            headers=self.build_headers(self.csrf),
            data=self.build_form(year, month, self.csrf),
        )
        return response.text

    def fetch_period(self, year: int, month: int) -> list[Transaction]:
        """
        Fetch and normalize one period.

        Raises StaleSessionError if the portal answers with HTML even after a
        token refresh; json.JSONDecodeError if the body is not valid JSON.
        """
        debug_log.log_section(f"PAY DETAILS {year}-{month:02d}")
        body = self._post_period(year, month)

        if looks_like_html(body):
            self._log(f"    {year}-{month:02d}: got HTML, refreshing token and retrying")
            self.csrf = fetch_latest_csrf(self.client)
            self._report(message=self.TOKEN_REFRESHED_MESSAGE)
            body = self._post_period(year, month)
            if looks_like_html(body):
                raise StaleSessionError("Expected a JSON response but received HTML.")

        payload = json.loads(body)
        return normalize_rows(year, month, extract_pay_details(payload))

    def collect(self) -> list[Transaction]:
        """
        Main collection loop over all requested periods.

        A failure in one period is reported and the loop moves on; the
        returned list holds the transactions of every period that succeeded.
        """
        periods = self.request.periods()
        total = len(periods)
        transactions: list[Transaction] = []

        for processed, (year, month) in enumerate(periods, start=1):
            label = f"{year}-{month:02d}"
            self._report(
                processed_months=processed,
                total_months=total,
                message=f"Processing ({processed}/{total}) → {label}",
            )

            try:
                rows = self.fetch_period(year, month)
                transactions.extend(rows)
                self._log(f"  [{processed}/{total}] {label}: {len(rows)} rows")
            except Exception as e:
                self._report(message=f"Error ({processed}/{total}) → {label}: {e}")
                self._log(f"  [{processed}/{total}] {label}: FAILED: {e}")

            time.sleep(self.delay_seconds)

        return transactions
