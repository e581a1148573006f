"""Per-request DNS query pipeline.

Brief:
  QueryOrchestrator ties the pieces together for each query:
  parse -> classify -> (block: synthesize + record) or
  (allow: cache check -> upstream fetch or cache hit -> cache store).

Notes:
  - All shared state lives in an explicit FilterContext created at startup
    and injected here; nothing in this module is process-global.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from dnslib import QTYPE, DNSError, DNSQuestion, DNSRecord
from dnslib.label import DNSLabelError

from .cache import DEFAULT_TTL_SECONDS, ResolutionCache, cache_key, json_cache_key
from .errors import TransportError
from .rules import Classifier, normalize_domain
from .stats import StatsTracker
from .synth import RCODE_NXDOMAIN, synthesize_blocked
from .upstream import DNS_MESSAGE_CT, UpstreamAnswer
from .wire import extract_question, is_valid_name

logger = logging.getLogger(__name__)

DNS_JSON_CT = "application/dns-json"

# Callable(func, *args) that schedules func(*args) after the response is sent,
# e.g. fastapi.BackgroundTasks.add_task.
DeferFn = Callable[..., Any]


class Upstream(Protocol):
    def resolve(self, raw: bytes) -> UpstreamAnswer: ...


@dataclass
class FilterContext:
    """Brief: Explicitly owned state shared by every request.

    Inputs:
      - classifier: Allow/block rule sets.
      - cache: Bounded response cache.
      - stats: Usage counters.
      - upstream: Transport collaborator with resolve(raw) -> UpstreamAnswer.
      - cache_ttl: TTL in seconds for stored upstream responses.
      - deny_response: "nxdomain" or "nodata" policy for blocked answers.
    """

    classifier: Classifier
    cache: ResolutionCache
    stats: StatsTracker
    upstream: Upstream
    cache_ttl: int = DEFAULT_TTL_SECONDS
    deny_response: str = "nxdomain"


@dataclass
class QueryResult:
    """Brief: Outcome of one query, ready to be wrapped by the HTTP layer.

    Fields:
      - body: Response payload (empty on upstream failure).
      - status: HTTP status to send (200, or 502 when every upstream failed).
      - outcome: One of "blocked", "hit", "miss", "fallback", "passthrough",
        "error".
      - headers: Extra informational headers (X-Cache / X-Blocked-Domain).
      - media_type: Content type of body.
    """

    body: bytes
    status: int = 200
    outcome: str = "miss"
    headers: Dict[str, str] = field(default_factory=dict)
    media_type: str = DNS_MESSAGE_CT


class QueryOrchestrator:
    """
    Brief: Run the classify/cache/forward pipeline for DNS queries.

    Inputs (constructor):
    - context: FilterContext holding rules, cache, stats and upstream

    Outputs:
    - QueryOrchestrator with handle() for wire-format queries and
      resolve_json() for the DNS-JSON variant.

    Example:
        >>> # orchestrator = QueryOrchestrator(context)
        >>> # result = orchestrator.handle(query_bytes)
        >>> # result.headers["X-Cache"] in {"HIT", "MISS", "FALLBACK"}
    """

    def __init__(self, context: FilterContext) -> None:
        self.context = context

    def handle(self, raw: bytes, defer: Optional[DeferFn] = None) -> QueryResult:
        """
        Brief: Process one wire-format DNS query.

        Inputs:
        - raw: query bytes as received (may be empty or malformed)
        - defer: optional scheduler for the cache write; when omitted the
          write happens before returning

        Outputs:
        - QueryResult
        """
        ctx = self.context
        ctx.stats.record_total()
        domain, qtype = extract_question(raw)

        if not domain:
            # Unparseable: never guess, forward untouched and skip the cache.
            logger.debug("Unparseable query (%d bytes); passing through", len(raw))
            ctx.stats.record_allowed()
            return self._forward(raw, key=None, defer=None)

        if ctx.classifier.is_blocked(domain):
            ctx.stats.record_blocked(domain)
            logger.debug("Blocked %s type %s", domain, _qtype_name(qtype))
            body = synthesize_blocked(raw, domain, ctx.deny_response)
            return QueryResult(
                body=body,
                outcome="blocked",
                headers={"X-Blocked-Domain": domain},
            )

        ctx.stats.record_allowed()
        key = cache_key(domain, qtype)
        cached = ctx.cache.get(key)
        if cached is not None:
            ctx.stats.record_cache_hit()
            return QueryResult(body=cached, outcome="hit", headers={"X-Cache": "HIT"})

        ctx.stats.record_cache_miss()
        return self._forward(raw, key=key, defer=defer)

    def _forward(
        self, raw: bytes, key: Optional[str], defer: Optional[DeferFn]
    ) -> QueryResult:
        """Fetch from upstream and optionally schedule a cache store under ``key``."""
        ctx = self.context
        try:
            answer = ctx.upstream.resolve(raw)
        except TransportError as e:
            ctx.stats.record_upstream_failure()
            logger.warning("Upstream resolution failed: %s", e)
            return QueryResult(body=b"", status=502, outcome="error")

        body = bytes(answer.body)
        if answer.fallback:
            ctx.stats.record_fallback_used()

        if key is not None:
            if defer is not None:
                defer(self._store, key, body)
            else:
                self._store(key, body)

        if answer.fallback:
            return QueryResult(
                body=body, outcome="fallback", headers={"X-Cache": "FALLBACK"}
            )
        return QueryResult(
            body=body,
            outcome="miss" if key is not None else "passthrough",
            headers={"X-Cache": "MISS"},
        )

    def _store(self, key: str, body: bytes) -> None:
        """Cache write that never propagates a failure to the caller."""
        try:
            self.context.cache.set(key, body, self.context.cache_ttl)
        except Exception:
            logger.warning("Deferred cache store failed for %s", key, exc_info=True)

    # DNS-JSON variant -------------------------------------------------------

    def resolve_json(
        self, name: str, qtype: str | int = "A", defer: Optional[DeferFn] = None
    ) -> QueryResult:
        """
        Brief: Resolve ``name`` and answer in the DNS-JSON format.

        Inputs:
        - name: domain name to query
        - qtype: record type name ("AAAA") or number (28)
        - defer: optional cache-write scheduler (see handle())

        Outputs:
        - QueryResult with a JSON body; status 400 for a name that is not a
          valid DNS name (empty label, label over 63 or name over 253
          characters) or an unknown type, 502 when every upstream failed.
        """
        ctx = self.context
        domain = normalize_domain(name)
        qtype_num = _qtype_number(qtype)
        if not is_valid_name(domain) or qtype_num is None:
            return _invalid_json_query()
        try:
            wire_query = DNSRecord(q=DNSQuestion(domain, qtype_num)).pack()
        except (UnicodeError, DNSLabelError) as e:
            logger.debug("Cannot encode JSON query name %r: %s", name, e)
            return _invalid_json_query()

        ctx.stats.record_total()
        question = [{"name": domain + ".", "type": qtype_num}]

        if ctx.classifier.is_blocked(domain):
            ctx.stats.record_blocked(domain)
            rcode = RCODE_NXDOMAIN if ctx.deny_response == "nxdomain" else 0
            doc = {"Status": rcode, "RD": True, "RA": True, "Question": question}
            doc["Answer"] = []
            result = _json_result(doc)
            result.outcome = "blocked"
            result.headers["X-Blocked-Domain"] = domain
            return result

        ctx.stats.record_allowed()
        key = json_cache_key(domain, qtype_num)
        cached = ctx.cache.get(key)
        if cached is not None:
            ctx.stats.record_cache_hit()
            return QueryResult(
                body=cached,
                outcome="hit",
                headers={"X-Cache": "HIT"},
                media_type=DNS_JSON_CT,
            )
        ctx.stats.record_cache_miss()

        try:
            answer = ctx.upstream.resolve(wire_query)
        except TransportError as e:
            ctx.stats.record_upstream_failure()
            logger.warning("Upstream resolution failed for %s: %s", domain, e)
            return _json_result({"Status": 2, "Question": question}, 502, "error")

        try:
            doc = dns_message_to_json(DNSRecord.parse(answer.body))
        except DNSError as e:
            ctx.stats.record_upstream_failure()
            logger.warning("Unparseable upstream answer for %s: %s", domain, e)
            return _json_result({"Status": 2, "Question": question}, 502, "error")

        body = json.dumps(doc).encode("utf-8")
        if defer is not None:
            defer(self._store, key, body)
        else:
            self._store(key, body)

        label = "FALLBACK" if answer.fallback else "MISS"
        if answer.fallback:
            ctx.stats.record_fallback_used()
        return QueryResult(
            body=body,
            outcome=label.lower(),
            headers={"X-Cache": label},
            media_type=DNS_JSON_CT,
        )


def dns_message_to_json(record: DNSRecord) -> Dict[str, Any]:
    """Brief: Render a parsed DNS message in the DNS-JSON layout.

    Inputs:
      - record: dnslib DNSRecord (usually an upstream response).

    Outputs:
      - dict with Status/TC/RD/RA/AD/CD flags, Question and Answer lists.
    """

    h = record.header
    return {
        "Status": int(h.rcode),
        "TC": bool(h.tc),
        "RD": bool(h.rd),
        "RA": bool(h.ra),
        "AD": bool(h.ad),
        "CD": bool(h.cd),
        "Question": [
            {"name": str(q.qname), "type": int(q.qtype)} for q in record.questions
        ],
        "Answer": [
            {
                "name": str(rr.rname),
                "type": int(rr.rtype),
                "TTL": int(rr.ttl),
                "data": str(rr.rdata),
            }
            for rr in record.rr
        ],
    }


def _invalid_json_query() -> QueryResult:
    return _json_result({"Status": 1, "Comment": "invalid name or type"}, 400)


def _json_result(doc: Dict[str, Any], status: int = 200, outcome: str = "miss"):
    return QueryResult(
        body=json.dumps(doc).encode("utf-8"),
        status=status,
        outcome=outcome,
        media_type=DNS_JSON_CT,
    )


def _qtype_name(qtype: int) -> str:
    return str(QTYPE.get(qtype, f"TYPE{qtype}"))


def _qtype_number(qtype: str | int) -> Optional[int]:
    """Map "AAAA" / "28" / 28 to 28; None when unknown or out of range."""
    if isinstance(qtype, int):
        num = qtype
    else:
        text = str(qtype).strip().upper()
        if text.isdigit():
            num = int(text)
        else:
            try:
                num = int(getattr(QTYPE, text))
            except (DNSError, ValueError):
                return None
    return num if 0 < num < 65536 else None
