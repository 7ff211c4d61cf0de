"""
Page scanning helpers for myehr HTML responses.

The portal publishes its anti-forgery token in `<meta name="_csrf">` and the
header it expects the token echoed under in `<meta name="_csrf_header">`.
"""

from __future__ import annotations

from bs4 import BeautifulSoup

CSRF_META_NAME = '_csrf'
CSRF_HEADER_META_NAME = '_csrf_header'


def _meta_content(soup: BeautifulSoup, name: str) -> str | None:
    meta = soup.find('meta', attrs={'name': name})
    if meta is None:
        return None
    content = meta.get('content')
    if not isinstance(content, str):
        return None
    return content.strip() or None


def _parse(html: str | None) -> BeautifulSoup | None:
    if not html or not isinstance(html, str):
        return None
    return BeautifulSoup(html, 'html.parser')


def extract_csrf_token(html: str | None) -> str | None:
    """Return the `_csrf` meta token, or None when the page carries none."""
    soup = _parse(html)
    if soup is None:
        return None
    return _meta_content(soup, CSRF_META_NAME)


def extract_csrf_token_and_header(html: str | None) -> tuple[str | None, str | None]:
    """Return `(token, header_name)`; either may be None."""
    soup = _parse(html)
    if soup is None:
        return None, None
    return _meta_content(soup, CSRF_META_NAME), _meta_content(soup, CSRF_HEADER_META_NAME)


def looks_like_html(text: str | None) -> bool:
    """
    Check for an HTML page where JSON was expected.

    Only the first 50 characters are inspected; a login or error page served
    in place of the JSON payload always starts with the document preamble.
    """
    head = (text or '').strip()[:50].lower()
    return head.startswith('<!doctype html') or head.startswith('<html') or '<html' in head
