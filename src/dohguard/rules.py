from __future__ import annotations

import enum
import json
import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Classification(str, enum.Enum):
    """Brief: Result of classifying a domain against the rule sets."""

    ALLOW = "allow"
    BLOCK = "block"


def normalize_domain(domain: str) -> str:
    """
    Normalize a domain name for rule storage and lookup.

    Inputs:
        domain: Raw domain name string (may have trailing dot, mixed case)

    Outputs:
        Normalized lowercase domain without surrounding whitespace or dots

    Example:
        >>> normalize_domain(" Ads.Example.COM. ")
        'ads.example.com'
    """
    return str(domain).strip().strip(".").lower()


def suffix_candidates(domain: str) -> List[str]:
    """Brief: Return the lookup keys for an exact-or-parent suffix match.

    Inputs:
      - domain: Normalized domain name.

    Outputs:
      - list[str]: The full name followed by each parent domain, stopping
        before the bare TLD. A single-label name yields just itself.

    Example:
      >>> suffix_candidates("a.ads.example.com")
      ['a.ads.example.com', 'ads.example.com', 'example.com']
      >>> suffix_candidates("com")
      ['com']
    """

    labels = domain.split(".")
    return [".".join(labels[i:]) for i in range(max(1, len(labels) - 1))]


class PatternMatcher:
    """Brief: Ordered sequence of case-insensitive regular expressions.

    Inputs (constructor):
      - patterns: Optional iterable of pattern strings or compiled patterns.

    Outputs:
      - PatternMatcher whose matches() reports whether any pattern matches.

    Notes:
      - Instances are immutable; with_pattern() returns a new matcher so a
        classifier can swap engines by reference assignment.
    """

    def __init__(self, patterns: Iterable[str | re.Pattern] = ()) -> None:
        compiled: List[re.Pattern] = []
        for p in patterns:
            compiled.append(self.compile(p))
        self._patterns: Tuple[re.Pattern, ...] = tuple(compiled)

    @staticmethod
    def compile(pattern: str | re.Pattern) -> re.Pattern:
        """Compile ``pattern`` with IGNORECASE; raise ValueError when invalid."""
        if isinstance(pattern, re.Pattern):
            if pattern.flags & re.IGNORECASE:
                return pattern
            pattern = pattern.pattern
        try:
            return re.compile(str(pattern), re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc

    def matches(self, text: str) -> bool:
        for patt in self._patterns:
            if patt.search(text):
                return True
        return False

    def with_pattern(self, pattern: str | re.Pattern) -> "PatternMatcher":
        clone = PatternMatcher()
        clone._patterns = self._patterns + (self.compile(pattern),)
        return clone

    @property
    def sources(self) -> List[str]:
        return [p.pattern for p in self._patterns]

    def __len__(self) -> int:
        return len(self._patterns)


@dataclass(frozen=True)
class _RuleSnapshot:
    """Immutable view of all rule collections.

    Replaced wholesale on every mutation so readers never observe a
    partially updated rule set.
    """

    allowed: frozenset
    blocked: frozenset
    patterns: PatternMatcher


class Classifier:
    """
    Allow/block classification engine with exact, suffix and pattern tiers.

    Inputs (constructor):
        allowed_domains: Optional initial allowlist entries
        blocked_domains: Optional initial blocklist entries
        blocked_patterns: Optional initial regex patterns
        matcher_factory: Callable building the pattern engine from a list of
            pattern strings (default PatternMatcher). The engine must offer
            matches(), with_pattern(), sources and len().

    Outputs:
        Classifier instance

    Precedence is allowlist > blocklist (exact or suffix) > patterns >
    default allow. Empty domains are always allowed.

    Example:
        >>> c = Classifier(blocked_domains=["ads.example.com"])
        >>> c.classify("sub.ads.example.com")
        <Classification.BLOCK: 'block'>
        >>> c.classify("otherads.example.com")
        <Classification.ALLOW: 'allow'>
    """

    def __init__(
        self,
        allowed_domains: Iterable[str] = (),
        blocked_domains: Iterable[str] = (),
        blocked_patterns: Iterable[str] = (),
        matcher_factory=PatternMatcher,
    ) -> None:
        self._write_lock = threading.Lock()
        self._state = _RuleSnapshot(
            allowed=frozenset(self._clean(allowed_domains)),
            blocked=frozenset(self._clean(blocked_domains)),
            patterns=matcher_factory(list(blocked_patterns)),
        )

    @staticmethod
    def _clean(domains: Iterable[str]) -> Iterator[str]:
        for d in domains:
            norm = normalize_domain(d)
            if norm:
                yield norm

    def classify(self, domain: str) -> Classification:
        """
        Classify ``domain`` as ALLOW or BLOCK.

        Inputs:
            domain: Normalized domain name ("" when the query failed to parse)

        Outputs:
            Classification.ALLOW or Classification.BLOCK
        """
        if not domain:
            return Classification.ALLOW

        state = self._state
        candidates = suffix_candidates(domain)

        for cand in candidates:
            if cand in state.allowed:
                return Classification.ALLOW
        for cand in candidates:
            if cand in state.blocked:
                return Classification.BLOCK
        if state.patterns.matches(domain):
            return Classification.BLOCK
        return Classification.ALLOW

    def is_blocked(self, domain: str) -> bool:
        return self.classify(domain) is Classification.BLOCK

    # Mutation -------------------------------------------------------------

    def add_blocked(self, domains: str | Iterable[str]) -> int:
        """Brief: Add one or more domains to the blocklist.

        Inputs:
          - domains: A domain string or an iterable of domains.

        Outputs:
          - int: Number of entries that were not already present.
        """
        new = set(self._clean([domains] if isinstance(domains, str) else domains))
        with self._write_lock:
            state = self._state
            added = new - state.blocked
            if added:
                self._state = replace(state, blocked=state.blocked | added)
        return len(added)

    def add_allowed(self, domains: str | Iterable[str]) -> int:
        """Brief: Add one or more domains to the allowlist (see add_blocked)."""
        new = set(self._clean([domains] if isinstance(domains, str) else domains))
        with self._write_lock:
            state = self._state
            added = new - state.allowed
            if added:
                self._state = replace(state, allowed=state.allowed | added)
        return len(added)

    def add_pattern(self, pattern: str) -> bool:
        """Brief: Append a regex to the pattern tier.

        Inputs:
          - pattern: Regular expression text, matched case-insensitively.

        Outputs:
          - bool: False when the pattern was already present.

        Raises:
          - ValueError: pattern does not compile.
        """
        text = str(pattern).strip()
        if not text:
            raise ValueError("pattern must be a non-empty string")
        with self._write_lock:
            state = self._state
            if text in state.patterns.sources:
                return False
            self._state = replace(state, patterns=state.patterns.with_pattern(text))
        return True

    # Read accessors for the admin API --------------------------------------

    @property
    def blocked_domains(self) -> List[str]:
        return sorted(self._state.blocked)

    @property
    def allowed_domains(self) -> List[str]:
        return sorted(self._state.allowed)

    @property
    def patterns(self) -> List[str]:
        return self._state.patterns.sources

    def counts(self) -> dict[str, int]:
        state = self._state
        return {
            "blocked_domains": len(state.blocked),
            "allowed_domains": len(state.allowed),
            "blocked_patterns": len(state.patterns),
        }

    # File loading -----------------------------------------------------------

    def load_domains_file(self, path: str, mode: str = "deny") -> int:
        """
        Load domains from a list file into the allow- or blocklist.

        Inputs:
            path: Path to the list file.
            mode: "deny" for the blocklist, "allow" for the allowlist.
        Outputs:
            Number of new entries added.

        Raises:
            ValueError: unknown mode.
            FileNotFoundError: path does not exist.
        """
        mode = mode.lower()
        if mode not in {"deny", "allow"}:
            raise ValueError("mode must be 'allow' or 'deny'")

        deny: List[str] = []
        allow: List[str] = []
        for ln, text in iter_noncomment_lines(path):
            eff_mode = mode
            if text.startswith("{"):
                try:
                    obj = json.loads(text)
                except json.JSONDecodeError as e:
                    logger.error("Invalid JSON domain line in %s:%d: %s", path, ln, e)
                    continue
                if not isinstance(obj, dict):
                    logger.error("JSON domain line not an object in %s:%d", path, ln)
                    continue
                domain = parse_list_token(str(obj.get("domain", "")))
                line_mode = obj.get("mode")
                if isinstance(line_mode, str) and line_mode.lower() in {
                    "allow",
                    "deny",
                }:
                    eff_mode = line_mode.lower()
            else:
                domain = parse_list_token(text)
            if not domain:
                continue
            (allow if eff_mode == "allow" else deny).append(domain)

        added = self.add_blocked(deny) + self.add_allowed(allow)
        logger.info("Loaded %d new %s entries from %s", added, mode, path)
        return added

    def load_patterns_file(self, path: str) -> int:
        """Load regex patterns from ``path``, one per line; invalid ones are skipped."""
        added = 0
        for ln, text in iter_noncomment_lines(path):
            try:
                if self.add_pattern(text):
                    added += 1
            except ValueError as e:
                logger.error("Invalid regex pattern in %s:%d: %s", path, ln, e)
        logger.info("Loaded %d patterns from %s", added, path)
        return added


def iter_noncomment_lines(path: str) -> Iterator[Tuple[int, str]]:
    """
    Yield non-empty, non-comment lines from a file with line numbers.

    Notes:
        Lines starting with '#', '!' or '[' are treated as comments so that
        AdGuard/Adblock-style list files parse cleanly.
    """
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        for idx, raw in enumerate(fh, start=1):
            line = raw.strip()
            if not line or line[0] in "#![":
                continue
            yield idx, line


_HOSTS_SINKS = {"0.0.0.0", "127.0.0.1", "::", "::1", "::0"}


def parse_list_token(line: str) -> Optional[str]:
    """
    Brief: Turn one list-file line into a normalized domain.

    Inputs:
      - line: Plain domain, hosts-style line or AdGuard '||domain^' token.

    Outputs:
      - Normalized domain, or None when the line carries no usable domain.

    Example:
      >>> parse_list_token("0.0.0.0 Tracker.Example.net  # comment")
      'tracker.example.net'
      >>> parse_list_token("||ads.example.com^")
      'ads.example.com'
      >>> parse_list_token("||ads.example.com^$third-party") is None
      True
    """
    t = line.split("#", 1)[0].strip()
    if not t:
        return None

    if t.startswith("||"):
        t = t[2:]
        caret_idx = t.find("^")
        if caret_idx != -1:
            if t[caret_idx + 1 :].strip():
                return None
            t = t[:caret_idx]

    parts = t.split()
    if len(parts) >= 2 and parts[0] in _HOSTS_SINKS:
        t = parts[1]
    elif len(parts) != 1 or parts[0] in _HOSTS_SINKS:
        return None

    domain = normalize_domain(t)
    if not domain or domain in {"localhost", "localhost.localdomain"}:
        return None
    return domain
