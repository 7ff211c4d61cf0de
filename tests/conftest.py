"""
Shared fixtures for the myehr payroll tests.

FakePortal stands in for EhrClient: each (method, url) is scripted with a
sequence of responses that are served in order, the last one repeating.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any

import pytest

from ehr_auth import EhrAuthenticator
from ehr_client import PortalResponse
from payroll_request import ScrapeRequest


def csrf_page(token: str | None = None, header_name: str | None = None, body: str = "") -> str:
    metas = ""
    if token is not None:
        metas += f'<meta name="_csrf" content="{token}"/>'
    if header_name is not None:
        metas += f'<meta name="_csrf_header" content="{header_name}"/>'
    return f"<!DOCTYPE html><html><head>{metas}</head><body>{body}</body></html>"


def pay_details(rows: list[dict[str, Any]]) -> str:
    return json.dumps({"result": {"payDetails": {"payDetails": rows}}})


class FakePortal:
    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def script(self, method: str, url: str, *responses: Any) -> "FakePortal":
        self.routes[(method, url)] = list(responses)
        return self

    def get(self, url: str, headers: dict[str, str] | None = None) -> PortalResponse:
        return self._handle("GET", url, headers, None)

    def post(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> PortalResponse:
        return self._handle("POST", url, headers, data)

    def _handle(self, method, url, headers, data) -> PortalResponse:
        with self._lock:
            self.calls.append({"method": method, "url": url, "headers": headers or {}, "data": data})
            queue = self.routes.get((method, url))
            if not queue:
                return PortalResponse(status_code=404, text="", url=url)
            item = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(item, Exception):
            raise item
        if isinstance(item, PortalResponse):
            return item
        return PortalResponse(status_code=200, text=item, url=url)

    def calls_to(self, url: str, method: str | None = None) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["url"] == url and (method is None or c["method"] == method)]

    def close(self) -> None:
        self.closed = True


def make_request(**overrides: Any) -> ScrapeRequest:
    params: dict[str, Any] = {
        "username": "1234567",
        "password": "s3cret!",
        "pernr": "1234567",
        "years": (2024,),
        "months": (1, 2),
        "wait_auth_seconds": 5,
        "poll_interval_seconds": 0,
    }
    params.update(overrides)
    return ScrapeRequest(**params)


def wait_for_terminal(registry, job_id: str, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshot = registry.get(job_id)
        if snapshot and snapshot["status"] in ("completed", "error"):
            return snapshot
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish: {registry.get(job_id)}")


@pytest.fixture(autouse=True)
def no_poll_floor(monkeypatch) -> None:
    """Remove the minimum pause between approval probes."""
    monkeypatch.setattr(EhrAuthenticator, "MIN_POLL_INTERVAL_SECONDS", 0)


@pytest.fixture()
def portal() -> FakePortal:
    return FakePortal()
