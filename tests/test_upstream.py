"""
Brief: Tests for dohguard.upstream.UpstreamResolver with a stub session.

Inputs:
  - None

Outputs:
  - None
"""

import pytest
import requests

from dohguard.upstream import (
    DNS_MESSAGE_CT,
    TransportError,
    UpstreamAnswer,
    UpstreamResolver,
)

PRIMARY = "https://primary.example/dns-query"
FALLBACK = "https://fallback.example/dns-query"


class _Resp:
    def __init__(self, status_code=200, content=b"answer"):
        self.status_code = status_code
        self.content = content


class StubSession:
    """
    Brief: requests.Session stand-in returning scripted results per URL.

    Inputs (constructor):
      - results: mapping url -> _Resp or exception instance
    """

    def __init__(self, results):
        self.results = results
        self.calls = []
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None, verify=None):
        self.calls.append(
            {
                "url": url,
                "data": data,
                "headers": headers,
                "timeout": timeout,
                "verify": verify,
            }
        )
        result = self.results[url]
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


def test_primary_success_posts_dns_message():
    """
    Brief: A successful primary answer is returned with fallback=False.

    Inputs:
      - primary returning 200 with body

    Outputs:
      - None: Asserts answer, headers, timeout and verify flag
    """
    session = StubSession({PRIMARY: _Resp(200, b"\x00\x01")})
    r = UpstreamResolver(PRIMARY, FALLBACK, timeout_ms=2500, session=session)
    assert r.resolve(b"query") == UpstreamAnswer(b"\x00\x01", False)
    call = session.calls[0]
    assert call["url"] == PRIMARY
    assert call["data"] == b"query"
    assert call["headers"]["Content-Type"] == DNS_MESSAGE_CT
    assert call["headers"]["Accept"] == DNS_MESSAGE_CT
    assert call["timeout"] == 2.5
    assert call["verify"] is True
    assert len(session.calls) == 1


@pytest.mark.parametrize(
    "primary",
    [
        _Resp(503, b""),
        _Resp(200, b""),
        requests.Timeout("slow"),
        requests.ConnectionError("refused"),
    ],
)
def test_fallback_used_once_when_primary_fails(primary):
    """
    Brief: Non-2xx, empty body, timeout and network errors try the fallback.

    Inputs:
      - primary: failing primary result

    Outputs:
      - None: Asserts fallback answer and exactly two calls
    """
    session = StubSession({PRIMARY: primary, FALLBACK: _Resp(200, b"fb")})
    r = UpstreamResolver(PRIMARY, FALLBACK, session=session)
    assert r.resolve(b"q") == UpstreamAnswer(b"fb", True)
    assert [c["url"] for c in session.calls] == [PRIMARY, FALLBACK]


def test_all_upstreams_failed_raises_transport_error():
    """
    Brief: Failure of both endpoints raises TransportError naming both.

    Outputs:
      - None: Asserts exception message
    """
    session = StubSession(
        {PRIMARY: _Resp(500), FALLBACK: requests.ConnectionError("down")}
    )
    r = UpstreamResolver(PRIMARY, FALLBACK, session=session)
    with pytest.raises(TransportError) as exc:
        r.resolve(b"q")
    assert "All upstreams failed" in str(exc.value)
    assert "HTTP 500" in str(exc.value)


def test_no_fallback_reraises_primary_error():
    """
    Brief: Without a fallback URL the primary error propagates directly.

    Outputs:
      - None: Asserts TransportError and a single call
    """
    session = StubSession({PRIMARY: _Resp(404)})
    r = UpstreamResolver(PRIMARY, "", session=session)
    with pytest.raises(TransportError, match="HTTP 404"):
        r.resolve(b"q")
    assert len(session.calls) == 1


def test_close_closes_session():
    """
    Brief: close() releases the underlying session.

    Outputs:
      - None: Asserts closed flag
    """
    session = StubSession({})
    UpstreamResolver(PRIMARY, session=session).close()
    assert session.closed
