"""Web page fetching with SSRF protection, for ``webpage`` documents.

Only http(s) URLs are fetched. Every address the host resolves to, and every
redirect target, must be public. Responses must be text/html or text/plain and
at most 5 MB; requests time out after 30 s and follow at most 3 redirects.
robots.txt is honoured for the Lectern user agent; an unreadable robots.txt
counts as allowing everything.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
import urllib.robotparser
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from lectern.errors import ExtractionFailure

logger = logging.getLogger(__name__)

USER_AGENT = "LecternBot/0.1"
MAX_PAGE_BYTES = 5 * 1024 * 1024
FETCH_TIMEOUT = 30.0
MAX_REDIRECTS = 3
_SCHEMES = frozenset({"http", "https"})
_CONTENT_TYPES = frozenset({"text/html", "text/plain"})
_STRIPPED_TAGS = ["script", "style", "nav", "footer", "head", "aside"]


class SsrfError(ExtractionFailure):
    """The URL points at a non-public address."""


@dataclass
class WebPage:
    url: str
    title: str
    text: str


def fetch_page_text(url: str, *, check_robots: bool = True) -> WebPage:
    """Validate, fetch, and convert *url* to plain text.

    Raises:
        ExtractionFailure: On a disallowed scheme or address, a robots.txt
            disallow, a network error, an unsupported Content-Type, an
            oversized body, or a page with no readable text.
    """
    validate_scheme(url)
    check_ssrf(url)
    if check_robots and not is_scraping_allowed(url):
        raise ExtractionFailure(f"Scraping '{url}' is disallowed by robots.txt.")
    body, content_type = _fetch(url)
    title, text = html_to_text(body.decode("utf-8", errors="replace"), content_type)
    if not text.strip():
        raise ExtractionFailure(f"No text content found at '{url}'.")
    logger.debug("Fetched %d characters from %s", len(text), url)
    return WebPage(url=url, title=title or url, text=text)


def validate_scheme(url: str) -> None:
    scheme = urllib.parse.urlparse(url).scheme
    if scheme not in _SCHEMES:
        raise ExtractionFailure(
            f"Unsupported URL scheme '{scheme}' in '{url}'; use http or https."
        )


def check_ssrf(url: str) -> None:
    """Raise SsrfError unless every address *url*'s host resolves to is public."""
    hostname = urllib.parse.urlparse(url).hostname
    if not hostname:
        raise ExtractionFailure(f"URL has no hostname: {url}")

    try:
        resolved = {info[4][0] for info in socket.getaddrinfo(hostname, None)}
    except socket.gaierror as exc:
        raise ExtractionFailure(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for address in sorted(resolved):
        if _is_internal(address):
            raise SsrfError(
                f"Refusing to fetch '{url}': {hostname} resolves to internal address {address}."
            )


def _is_internal(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%")[0])
    except ValueError:
        return False
    return not ip.is_global or ip.is_multicast


def is_scraping_allowed(url: str) -> bool:
    """Return False only when the site's robots.txt disallows *url* for Lectern."""
    parsed = urllib.parse.urlparse(url)
    robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
    parser = urllib.robotparser.RobotFileParser(robots_url)
    try:
        parser.read()
    except (urllib.error.URLError, OSError, ValueError) as exc:
        logger.info("Could not read %s (%s); assuming scraping is allowed", robots_url, exc)
        return True
    return parser.can_fetch(USER_AGENT, url)


def html_to_text(markup: str, content_type: str = "text/html") -> tuple[str, str]:
    """Return ``(title, plain_text)`` for an HTML or plain-text body."""
    if content_type == "text/plain":
        return "", markup.strip()

    soup = BeautifulSoup(markup, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup.find_all(_STRIPPED_TAGS):
        tag.decompose()

    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.body_width = 0
    return title, converter.handle(str(soup)).strip()


def _fetch(url: str) -> tuple[bytes, str]:
    """Return the raw body and bare media type of *url*, enforcing the fetch limits."""
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=FETCH_TIMEOUT)
    except (urllib.error.URLError, TimeoutError) as exc:
        raise ExtractionFailure(f"Failed to fetch URL '{url}': {exc}") from exc

    with response:
        media_type = response.headers.get_content_type()
        if media_type not in _CONTENT_TYPES:
            accepted = " and ".join(sorted(_CONTENT_TYPES))
            raise ExtractionFailure(
                f"'{url}' returned {media_type}; only {accepted} pages can be ingested."
            )
        body = response.read(MAX_PAGE_BYTES + 1)

    if len(body) > MAX_PAGE_BYTES:
        raise ExtractionFailure(f"'{url}' is larger than {MAX_PAGE_BYTES // 2**20} MB.")
    return body, media_type


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Caps the redirect chain and re-checks each target against the SSRF guard."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._seen = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._seen += 1
        if self._seen > self._limit:
            raise ExtractionFailure(f"'{req.full_url}' redirected more than {self._limit} times.")
        check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
