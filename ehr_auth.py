"""
myehr Authentication Module

Logs in to the myehr portal with username/password and then waits for the
user to approve the login on their phone (FIDO). The approval itself happens
out of band; this module only detects that it has completed by probing
portal pages until one of them carries a fresh CSRF token.

Usage:
    from ehr_auth import EhrAuthenticator
    from ehr_client import EhrClient

    with EhrClient() as client:
        csrf = EhrAuthenticator(client, request, verbose=True).authenticate()
        # csrf.value / csrf.header_name are ready for pay detail requests
"""

from __future__ import annotations

import base64
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests

from ehr_client import (
    EHR_BASE_URL,
    LOGIN_PAGE_URL,
    LOGIN_PROCESS_URL,
    LOGIN_SUCCESS_URL,
    NOTICE_POPUP_URL,
    PAYSLIP_INIT_URL,
    EhrClient,
    debug_log,
)
from ehr_pages import extract_csrf_token, extract_csrf_token_and_header
from payroll_request import ScrapeRequest

# Header used for the CSRF token when the page does not declare one
DEFAULT_CSRF_HEADER = 'X-CSRF-TOKEN'

# Phrases the portal renders on the login page after a rejected login
LOGIN_FAILURE_PATTERNS = [
    re.compile(r'로그인[^<]{0,40}실패', re.IGNORECASE),
    re.compile(r'아이디[^<]{0,40}확인', re.IGNORECASE),
    re.compile(r'비밀번호[^<]{0,40}(다시|확인|일치하지)', re.IGNORECASE),
    re.compile(r'입력하신 정보가 올바르지', re.IGNORECASE),
]

ProgressCallback = Callable[..., None]


class AuthenticationError(RuntimeError):
    """Login could not be completed; the job cannot continue."""


class LoginFailedError(AuthenticationError):
    """The portal rejected the submitted credentials."""


class ApprovalTimeoutError(AuthenticationError):
    """Mobile approval was not detected before the deadline."""


@dataclass(frozen=True)
class CsrfToken:
    value: str
    header_name: str = DEFAULT_CSRF_HEADER


def _encode(value: str) -> str:
    return base64.b64encode(value.encode('utf-8')).decode('ascii')


def looks_like_login_failure(html: str | None) -> bool:
    """Check a login response body for one of the portal's failure messages."""
    normalized = re.sub(r'\s+', ' ', html or '')
    return any(pattern.search(normalized) for pattern in LOGIN_FAILURE_PATTERNS)


def token_from_page(html: str | None) -> CsrfToken | None:
    """Build a CsrfToken from a page, or None when the page carries no token."""
    token = extract_csrf_token(html)
    if not token:
        return None
    _, header_name = extract_csrf_token_and_header(html)
    return CsrfToken(value=token, header_name=header_name or DEFAULT_CSRF_HEADER)


def fetch_latest_csrf(client: EhrClient) -> CsrfToken:
    """
    Re-read the CSRF token from the payslip page of an approved session.

    Raises AuthenticationError when the page no longer carries a token, which
    means the session itself has been dropped by the portal.
    """
    debug_log.log_section('REFRESH CSRF TOKEN')
    response = client.get(PAYSLIP_INIT_URL, headers={'Referer': LOGIN_PAGE_URL})
    csrf = token_from_page(response.text)
    if csrf is None:
        raise AuthenticationError('Unable to extract _csrf token after approval.')
    return csrf


class EhrAuthenticator:
    """
    Runs the two login phases for one job.

    Phase 1 posts the credentials with the FIDO OTP descriptor. Phase 2 polls
    the payslip, notice-popup and login-success pages until one of them
    issues a token, or the approval window closes.
    """

    # Lower bound for the pause between probe cycles
    MIN_POLL_INTERVAL_SECONDS = 0.5

    APPROVAL_WAIT_MESSAGE = 'Credentials submitted. Please approve the login on your phone.'
    APPROVED_MESSAGE = 'Mobile approval confirmed. Collecting payroll data.'

    def __init__(
        self,
        client: EhrClient,
        request: ScrapeRequest,
        progress: ProgressCallback | None = None,
        verbose: bool = False,
    ) -> None:
        self.client = client
        self.request = request
        self.progress = progress
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def _report(self, **fields: Any) -> None:
        if self.progress:
            self.progress(**fields)

    def fetch_login_csrf(self) -> str:
        """Fetch the login page and return its initial CSRF token."""
        debug_log.log_section('GET LOGIN PAGE')
        response = self.client.get(LOGIN_PAGE_URL)
        token = extract_csrf_token(response.text)
        if not token:
            raise AuthenticationError(
                f'No _csrf token on the login page (HTTP {response.status_code}).'
            )
        return token

    def submit_login(self, csrf: str) -> None:
        """Post the credentials; raise LoginFailedError if the portal rejects them."""
        debug_log.log_section('SUBMIT LOGIN')
        form = {
            'user': _encode(self.request.username),
            'pw': _encode(self.request.password),
            'otpType': 'FIDO',
            'otpFlag': 'P',
            'otpPasscode': '',
            'ABLE_LANGUAGE_SELECTION_PARAM': 'ko_KR',
            'accessType': 'login',
            'osType': 'P',
            '_csrf': csrf,
        }
        headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Origin': EHR_BASE_URL,
            'Referer': LOGIN_PAGE_URL,
        }

        response = self.client.post(LOGIN_PROCESS_URL, headers=headers, data=form)

        if looks_like_login_failure(response.text):
            raise LoginFailedError('Login failed. Please check your ID and password.')

    def login(self) -> None:
        """Phase 1: fetch the login page token and submit credentials."""
        self._log('  Fetching login page...')
        csrf = self.fetch_login_csrf()

        self._report(status='auth_wait', message=self.APPROVAL_WAIT_MESSAGE)
        self._log('  Submitting credentials...')
        self.submit_login(csrf)

    def _probe(self) -> tuple[CsrfToken | None, str]:
        """
        Run one probe cycle over the three approval pages.

        Returns the first token found, or None with a status line describing
        what each page answered.
        """
        init_resp = self.client.get(PAYSLIP_INIT_URL, headers={'Referer': LOGIN_PAGE_URL})
        csrf = token_from_page(init_resp.text)
        if csrf:
            return csrf, ''

        notice_resp = self.client.post(
            NOTICE_POPUP_URL,
            headers={
                'X-Requested-With': 'XMLHttpRequest',
                'Origin': EHR_BASE_URL,
                'Referer': LOGIN_PAGE_URL,
            },
            data={'typeCd': '00'},
        )
        csrf = token_from_page(notice_resp.text)
        if csrf:
            return csrf, ''

        success_resp = self.client.get(LOGIN_SUCCESS_URL)
        csrf = token_from_page(success_resp.text)
        if csrf:
            return csrf, ''

        return None, (
            f'poll: init={init_resp.status_code} '
            f'notice={notice_resp.status_code} '
            f'success={success_resp.status_code}'
        )

    def wait_for_approval(self) -> CsrfToken:
        """
        Phase 2: poll until mobile approval is detected.

        Network errors during a probe are recorded and polling continues;
        only the deadline ends the wait without a token.
        """
        debug_log.log_section('WAIT FOR MOBILE APPROVAL')
        deadline = time.monotonic() + self.request.wait_auth_seconds
        interval = max(self.MIN_POLL_INTERVAL_SECONDS, self.request.poll_interval_seconds)
        last_error = 'no poll yet'

        self._log(f'  Waiting up to {self.request.wait_auth_seconds:g}s for mobile approval...')
        while time.monotonic() < deadline:
            try:
                csrf, status = self._probe()
                if csrf:
                    self._report(status='fetching', message=self.APPROVED_MESSAGE)
                    self._log('  Mobile approval confirmed!')
                    return csrf
                last_error = status
            except requests.RequestException as e:
                last_error = str(e) or type(e).__name__
            self._log(f'    still waiting ({last_error})')
            time.sleep(interval)

        raise ApprovalTimeoutError(f'Mobile approval timed out. Last status: {last_error}')

    def authenticate(self) -> CsrfToken:
        """Perform the full login and approval flow."""
        self._log('Authenticating to myehr...')
        self.login()
        return self.wait_for_approval()
