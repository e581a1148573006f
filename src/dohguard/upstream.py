from __future__ import annotations

import importlib.metadata
import logging
from typing import Dict, NamedTuple, Optional

import requests

from .errors import TransportError

logger = logging.getLogger(__name__)

try:
    DOHGUARD_VERSION = importlib.metadata.version("dohguard")
except importlib.metadata.PackageNotFoundError:
    # Running from a source tree without installed metadata.
    DOHGUARD_VERSION = "unknown"

DNS_MESSAGE_CT = "application/dns-message"
DEFAULT_UPSTREAM_URL = "https://cloudflare-dns.com/dns-query"
DEFAULT_TIMEOUT_MS = 5000


class UpstreamAnswer(NamedTuple):
    """Brief: Raw upstream response plus which endpoint produced it."""

    body: bytes
    fallback: bool = False


class UpstreamResolver:
    """
    Brief: Forward raw DNS queries to a DoH resolver with one fallback.

    Inputs (constructor):
    - url: Primary DoH endpoint, e.g. https://cloudflare-dns.com/dns-query
    - fallback_url: Optional secondary endpoint tried once when the primary
      fails
    - timeout_ms: Per-request timeout covering connect and read
    - verify: Verify TLS certificates
    - session: Optional requests.Session (tests inject a stub)

    Outputs:
    - UpstreamResolver whose resolve() returns UpstreamAnswer or raises
      TransportError.

    Example:
        >>> resolver = UpstreamResolver("https://dns.example/dns-query")
        >>> # resolver.resolve(query_bytes).body -> response bytes
    """

    def __init__(
        self,
        url: str = DEFAULT_UPSTREAM_URL,
        fallback_url: Optional[str] = None,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.fallback_url = fallback_url or None
        self.timeout = max(1, int(timeout_ms)) / 1000.0
        self.verify = bool(verify)
        self._session = session or requests.Session()
        self._headers: Dict[str, str] = {
            "Content-Type": DNS_MESSAGE_CT,
            "Accept": DNS_MESSAGE_CT,
            "User-Agent": f"dohguard/{DOHGUARD_VERSION}",
        }

    def query(self, url: str, raw: bytes) -> bytes:
        """
        Brief: POST one wire-format query to ``url``.

        Inputs:
        - url: DoH endpoint
        - raw: wire-format DNS query

        Outputs:
        - bytes: response body

        Raises:
        - TransportError on network/TLS errors, timeouts, non-2xx statuses or
          an empty body.
        """
        try:
            resp = self._session.post(
                url,
                data=raw,
                headers=self._headers,
                timeout=self.timeout,
                verify=self.verify,
            )
        except requests.Timeout as e:
            raise TransportError(f"Timeout contacting {url}: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Network error contacting {url}: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransportError(f"HTTP {resp.status_code} from {url}")
        body = resp.content
        if not body:
            raise TransportError(f"Empty response body from {url}")
        return body

    def resolve(self, raw: bytes) -> UpstreamAnswer:
        """
        Brief: Resolve via the primary endpoint, retrying the fallback once.

        Inputs:
        - raw: wire-format DNS query

        Outputs:
        - UpstreamAnswer(body, fallback) where fallback is True when the
          secondary endpoint answered.

        Raises:
        - TransportError when every configured endpoint failed.
        """
        try:
            return UpstreamAnswer(self.query(self.url, raw), False)
        except TransportError as primary_exc:
            if not self.fallback_url:
                raise
            logger.warning(
                "Primary upstream %s failed (%s); trying fallback %s",
                self.url,
                primary_exc,
                self.fallback_url,
            )
            try:
                return UpstreamAnswer(self.query(self.fallback_url, raw), True)
            except TransportError as fallback_exc:
                raise TransportError(
                    f"All upstreams failed: primary: {primary_exc}; "
                    f"fallback: {fallback_exc}"
                ) from fallback_exc

    def close(self) -> None:
        try:
            self._session.close()
        except Exception:  # pragma: no cover
            logger.debug("Error closing upstream session", exc_info=True)
