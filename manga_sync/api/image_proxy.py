"""
Image proxy for MangaDex page and cover images.

At-home delivery nodes run on arbitrary hostnames, so requests are checked
against the MangaDex domain families and the at-home path layout before
any bytes are relayed.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional
from urllib.parse import urlsplit

import requests

from manga_sync.utils.logging import get_logger

logger = get_logger(__name__)

TRUSTED_HOSTS = ("mangadex.org",)
TRUSTED_SUFFIXES = (".mangadex.org", ".mangadex.network")
AT_HOME_PATH = re.compile(r"^/(data|data-saver)/[a-f0-9]{32}/[^/]+$")

PROXY_HEADERS = {
    "Referer": "https://mangadex.org",
    "User-Agent": "Mozilla/5.0 (compatible; MangaSync/1.0)",
}
CHUNK_SIZE = 64 * 1024


class ProxyDeniedError(Exception):
    """Raised when a URL fails the proxy policy."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Domain not allowed: {reason}")
        self.url = url
        self.reason = reason


class UpstreamFetchError(Exception):
    """Raised when the upstream image fetch fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


@dataclass
class ProxyDecision:
    allowed: bool
    reason: str


def is_trusted_host(hostname: str) -> bool:
    hostname = hostname.lower()
    return hostname in TRUSTED_HOSTS or hostname.endswith(TRUSTED_SUFFIXES)


def is_at_home_path(path: str) -> bool:
    return bool(AT_HOME_PATH.match(path))


class ImageProxyGate:
    """
    Decides whether an image URL may be fetched on a reader's behalf.

    HTTPS is always required. Hosts under mangadex.org / mangadex.network
    are trusted. Other hosts pass only when ``allow_volunteer_nodes`` is set
    and the path has the at-home layout ``/data(-saver)/<md5>/<file>``.

    The at-home path shape alone is not enough by default: any host can
    serve that layout, so admitting it unconditionally would relay
    arbitrary third-party servers. Operators whose readers see delivery
    nodes outside mangadex.network can opt in with ``allow_volunteer_nodes``.
    """

    def __init__(self, allow_volunteer_nodes: bool = False):
        self.allow_volunteer_nodes = allow_volunteer_nodes

    def evaluate(self, url: str) -> ProxyDecision:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname or ""
        except ValueError:
            return ProxyDecision(False, "invalid url")

        if parts.scheme != "https":
            return ProxyDecision(False, "https required")
        if not hostname:
            return ProxyDecision(False, "missing host")
        if is_trusted_host(hostname):
            return ProxyDecision(True, "mangadex domain")
        if self.allow_volunteer_nodes and is_at_home_path(parts.path):
            return ProxyDecision(True, "at-home node path")
        return ProxyDecision(False, "untrusted host")

    def is_allowed(self, url: str) -> bool:
        return self.evaluate(url).allowed

    def check(self, url: str) -> None:
        """
        Raises:
            ProxyDeniedError: If the URL fails the policy
        """
        decision = self.evaluate(url)
        if not decision.allowed:
            logger.warning("Proxy blocked", url=url, reason=decision.reason)
            raise ProxyDeniedError(url, decision.reason)


@dataclass
class ProxiedImage:
    """A relayed upstream image."""
    content_type: str
    chunks: Iterator[bytes]
    response: requests.Response

    def close(self) -> None:
        self.response.close()


class ImageProxy:
    """
    Relays image bytes from MangaDex after the gate allows the URL.
    """

    def __init__(
        self,
        gate: ImageProxyGate,
        timeout: int = 20,
        session: Optional[requests.Session] = None,
    ):
        self.gate = gate
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str) -> ProxiedImage:
        """
        Fetch an image as a stream of chunks.

        Raises:
            ProxyDeniedError: If the URL fails the gate
            UpstreamFetchError: If the upstream request fails
        """
        self.gate.check(url)

        logger.debug("Proxy fetching", url=url)
        try:
            response = self.session.get(url, headers=PROXY_HEADERS, timeout=self.timeout, stream=True)
        except requests.exceptions.Timeout as e:
            raise UpstreamFetchError(f"Upstream timeout: {e}", code="TIMEOUT")
        except requests.exceptions.ConnectionError as e:
            raise UpstreamFetchError(f"Upstream connection error: {e}", code="CONNECTION_ERROR")
        except requests.exceptions.RequestException as e:
            raise UpstreamFetchError(f"Upstream request failed: {e}", code="REQUEST_ERROR")

        if response.status_code >= 400:
            response.close()
            logger.error("Proxy upstream failed", url=url, status=response.status_code)
            raise UpstreamFetchError(
                f"Upstream returned {response.status_code}",
                status_code=response.status_code,
                code="UPSTREAM_STATUS",
            )

        return ProxiedImage(
            content_type=response.headers.get("Content-Type") or "image/jpeg",
            chunks=response.iter_content(chunk_size=CHUNK_SIZE),
            response=response,
        )

    def close(self) -> None:
        self.session.close()
