"""
myehr Session Client

Thin wrapper around a requests.Session bound to a private cookie jar, with the
browser-like headers the myehr portal expects. Every job gets its own client;
nothing here is shared between jobs.

Usage:
    from ehr_client import EhrClient, LOGIN_PAGE_URL

    with EhrClient() as client:
        response = client.get(LOGIN_PAGE_URL)
        print(response.status_code, len(response.text))
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter

# myehr portal endpoints
EHR_BASE_URL = 'https://myehr.hmc.co.kr'
LOGIN_PAGE_URL = f'{EHR_BASE_URL}/login.do'
LOGIN_PROCESS_URL = f'{EHR_BASE_URL}/loginProcess.do'
LOGIN_SUCCESS_URL = f'{EHR_BASE_URL}/loginSuccess.do'
NOTICE_POPUP_URL = f'{EHR_BASE_URL}/symt/selectSystemNoticePopup.do'
PAYSLIP_INIT_URL = f'{EHR_BASE_URL}/saly/PayslipForYearHInitPage.do'
PAY_DETAILS_URL = f'{EHR_BASE_URL}/saly/selectPayDetailsH.do'

REQUEST_TIMEOUT_SECONDS = 30

USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 13_5_0) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/127.0 Safari/537.36'
)

# Debug log file - captures full request/response details
DEBUG_LOG_FILE = Path('payroll_debug.log')

# Form fields never written to the debug log in clear text
MASKED_FORM_FIELDS = {'user', 'pw', '_csrf'}


class DebugLogger:
    """Logs all HTTP request/response details to a file for debugging."""

    def __init__(self, filepath: Path = DEBUG_LOG_FILE):
        self.filepath = filepath
        self.enabled = False
        self._file = None
        self._lock = threading.Lock()

    def enable(self):
        with self._lock:
            self._file = open(self.filepath, 'w', encoding='utf-8')
            self.enabled = True
        self._write('=== myehr Payroll Debug Log ===')
        self._write(f'Started: {datetime.now().isoformat()}')
        self._write('')

    def disable(self):
        with self._lock:
            if self._file:
                self._file.close()
                self._file = None
            self.enabled = False

    def _write(self, text: str):
        with self._lock:
            if self._file:
                self._file.write(text + '\n')
                self._file.flush()

    def log_section(self, title: str):
        if not self.enabled:
            return
        self._write('')
        self._write('=' * 80)
        self._write(f'  {title}')
        self._write('=' * 80)

    def log_cookies(self, session: requests.Session, label: str = 'Current Cookies'):
        if not self.enabled:
            return
        lines = [f'\n--- {label} ---']
        for cookie in session.cookies:
            lines.append(f'  {cookie.name}: {cookie.value[:40]}{"..." if len(cookie.value) > 40 else ""}')
            lines.append(f'    domain: {cookie.domain}  path: {cookie.path}')
        self._write('\n'.join(lines))

    def log_request(self, method: str, url: str, headers: dict, body: dict | None = None):
        if not self.enabled:
            return
        lines = [f'\n>>> REQUEST: {method} {url}', '--- Request Headers ---']
        for k, v in headers.items():
            v_str = str(v)
            if len(v_str) > 200:
                v_str = v_str[:200] + '...'
            lines.append(f'  {k}: {v_str}')
        if body:
            lines.append('--- Form Body ---')
            for k, v in body.items():
                lines.append(f'  {k}: {"***MASKED***" if k in MASKED_FORM_FIELDS else v}')
        self._write('\n'.join(lines))

    def log_response(self, response: requests.Response):
        if not self.enabled:
            return
        lines = [
            f'\n<<< RESPONSE: {response.status_code} {response.reason}',
            f'    Final URL: {response.url}',
            '--- Response Headers ---',
        ]
        for k, v in response.headers.items():
            lines.append(f'  {k}: {v}')
        lines.append('--- Response Body ---')
        text = response.text or ''
        if 'html' in response.headers.get('Content-Type', ''):
            lines.append(f'[HTML Response - {len(text)} chars]')
        lines.append(text[:1000] if text else '[empty]')
        if len(text) > 1000:
            lines.append('... [truncated]')
        self._write('\n'.join(lines))


# Global debug logger instance
debug_log = DebugLogger()


@dataclass(frozen=True)
class PortalResponse:
    """Status, headers and decoded body of one portal response."""

    status_code: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ''


def create_session() -> requests.Session:
    """
    Create a requests session with connection pooling and browser headers.

    Automatic retries are off; the collection loop does its own
    single retry per period.
    """
    session = requests.Session()

    adapter = HTTPAdapter(
        max_retries=0,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)

    session.headers.update({
        'User-Agent': USER_AGENT,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'ko-KR,ko;q=0.9',
    })

    return session


class EhrClient:
    """
    HTTP client for one job's portal session.

    Cookies set by the portal accumulate in the session's jar and are sent on
    every later request through the same instance. Transport failures and
    timeouts raise requests.RequestException; HTTP error statuses are returned.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT_SECONDS) -> None:
        self.session = create_session()
        self.timeout = timeout

    def get(self, url: str, headers: dict[str, str] | None = None) -> PortalResponse:
        return self._send('GET', url, headers)

    def post(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> PortalResponse:
        return self._send('POST', url, headers, data)

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None,
        data: dict[str, str] | None = None,
    ) -> PortalResponse:
        debug_log.log_request(method, url, {**self.session.headers, **(headers or {})}, data)

        response = self.session.request(
            method,
            url,
            headers=headers,
            data=data,
            timeout=self.timeout,
            allow_redirects=True,
        )

        debug_log.log_response(response)
        debug_log.log_cookies(self.session, f'Cookies after {method} {url}')

        return PortalResponse(
            status_code=response.status_code,
            text=response.text or '',
            headers=dict(response.headers),
            url=response.url,
        )

    @property
    def cookies(self) -> requests.cookies.RequestsCookieJar:
        return self.session.cookies

    def close(self) -> None:
        """Discard the session and its cookie jar."""
        self.session.close()

    def __enter__(self) -> 'EhrClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
