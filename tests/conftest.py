"""
Brief: Global pytest configuration enforcing per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import base64
import logging
import signal
import os
import sys

import pytest

# Ensure 'src' is on sys.path so 'dohguard' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


def build_query(name: str, qtype: int = 1, txid: int = 0x1234) -> bytes:
    """
    Brief: Build an uncompressed wire-format query for ``name``.

    Inputs:
      - name: dotted domain name
      - qtype: numeric query type
      - txid: transaction ID

    Outputs:
      - bytes: header (RD=1, QDCOUNT=1) + question
    """
    header = txid.to_bytes(2, "big") + b"\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"
    qname = b"".join(
        len(label).to_bytes(1, "big") + label.encode("ascii")
        for label in name.strip(".").split(".")
        if label
    )
    return header + qname + b"\x00" + qtype.to_bytes(2, "big") + b"\x00\x01"


def b64url_encode(data: bytes) -> str:
    """
    Brief: Base64url-encode without padding, as DoH clients send ?dns=.

    Inputs:
      - data: wire-format query

    Outputs:
      - str: unpadded base64url text
    """
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def cached_keys(cache) -> list:
    """
    Brief: Keys currently held by a ResolutionCache, oldest first.

    Inputs:
      - cache: dohguard.cache.ResolutionCache

    Outputs:
      - list of cache keys
    """
    return list(cache._store.keys())


class FakeUpstream:
    """
    Brief: In-memory upstream recording queries and replaying canned answers.

    Inputs (constructor):
      - answer: bytes returned for every query, or a callable(raw) -> bytes
      - fail: when True every resolve() raises TransportError
      - fallback: mark answers as coming from the fallback endpoint
    """

    def __init__(self, answer=b"\x12\x34\x81\x80", fail=False, fallback=False):
        self.answer = answer
        self.fail = fail
        self.fallback = fallback
        self.calls = []

    def resolve(self, raw):
        from dohguard.upstream import TransportError, UpstreamAnswer

        self.calls.append(bytes(raw))
        if self.fail:
            raise TransportError("All upstreams failed: test")
        body = self.answer(raw) if callable(self.answer) else self.answer
        return UpstreamAnswer(body, self.fallback)

    def close(self):
        pass


@pytest.fixture
def fake_upstream():
    """
    Brief: Provide a FakeUpstream answering with a fixed 4-byte payload.

    Outputs:
      - FakeUpstream instance
    """
    return FakeUpstream()


@pytest.fixture
def context(fake_upstream):
    """
    Brief: FilterContext with doubleclick.net blocked and a fake upstream.

    Outputs:
      - dohguard.orchestrator.FilterContext
    """
    from dohguard.cache import ResolutionCache
    from dohguard.orchestrator import FilterContext
    from dohguard.rules import Classifier
    from dohguard.stats import StatsTracker

    return FilterContext(
        classifier=Classifier(blocked_domains=["doubleclick.net"]),
        cache=ResolutionCache(max_entries=100),
        stats=StatsTracker(),
        upstream=fake_upstream,
    )


@pytest.fixture(autouse=True)
def restore_root_logging():
    """
    Brief: Restore root logger handlers and level changed by init_logging.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield
