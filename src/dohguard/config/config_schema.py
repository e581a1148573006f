"""Typed configuration models for the dohguard YAML config.

Brief:
  Each top-level section of ``config.yaml`` maps onto one pydantic model;
  AppConfig ties them together and applies defaults for anything omitted.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from ..stats import DEFAULT_TOP_DOMAINS_CAP, DEFAULT_TOP_N
from ..synth import DENY_POLICIES
from ..upstream import DEFAULT_TIMEOUT_MS, DEFAULT_UPSTREAM_URL
from .logging_config import LEVELS

DEFAULT_BLOCKED_DOMAINS = ["doubleclick.net"]


class ServerConfig(BaseModel):
    """Brief: HTTP listener settings.

    Inputs:
      - host / port: Listen address for the DoH endpoint.
      - cert_file / key_file: Optional TLS material; plain HTTP when omitted.
      - path: Request path serving DoH (default "/dns-query").
    """

    host: str = "0.0.0.0"
    port: int = Field(default=8053, ge=1, le=65535)
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    path: str = "/dns-query"


class UpstreamConfig(BaseModel):
    """Brief: Upstream DoH resolver settings."""

    url: str = DEFAULT_UPSTREAM_URL
    fallback_url: Optional[str] = "https://dns.google/dns-query"
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    verify: bool = True

    @field_validator("url", "fallback_url", mode="before")
    @classmethod
    def _http_url(cls, v: object) -> object:
        if v is None or v == "":
            return None
        s = str(v).strip()
        if not s.startswith(("https://", "http://")):
            raise ValueError(f"upstream url must be http(s): {s!r}")
        return s


class CacheConfig(BaseModel):
    max_entries: int = Field(default=DEFAULT_MAX_ENTRIES, ge=1)
    ttl_seconds: int = Field(default=DEFAULT_TTL_SECONDS, ge=0)


class StatsConfig(BaseModel):
    top_domains_cap: int = Field(default=DEFAULT_TOP_DOMAINS_CAP, ge=1)
    top_n: int = Field(default=DEFAULT_TOP_N, ge=1)


class FilterConfig(BaseModel):
    """Brief: Rule sets and deny policy.

    Inputs:
      - deny_response: "nxdomain" (default) or "nodata".
      - blocked_domains / allowed_domains: Inline domain lists.
      - blocked_patterns: Inline regexes (case-insensitive).
      - *_files: List files loaded at startup.
    """

    deny_response: str = "nxdomain"
    blocked_domains: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_DOMAINS)
    )
    allowed_domains: List[str] = Field(default_factory=list)
    blocked_patterns: List[str] = Field(default_factory=list)
    blocked_domains_files: List[str] = Field(default_factory=list)
    allowed_domains_files: List[str] = Field(default_factory=list)
    blocked_patterns_files: List[str] = Field(default_factory=list)

    @field_validator("deny_response", mode="before")
    @classmethod
    def _known_policy(cls, v: object) -> str:
        s = str(v or "nxdomain").strip().lower()
        if s not in DENY_POLICIES:
            raise ValueError(
                f"deny_response must be one of {sorted(DENY_POLICIES)}, got {s!r}"
            )
        return s


class LoggingConfig(BaseModel):
    """Brief: Process logging sinks.

    Inputs:
      - level: debug, info, warn, error or crit.
      - stderr: Log to stderr.
      - file: Optional log file path (parent directories are created).
      - syslog: Also send records to the local syslog socket.
    """

    level: str = "info"
    stderr: bool = True
    file: Optional[str] = None
    syslog: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _known_level(cls, v: object) -> str:
        s = str(v or "info").strip().lower()
        if s not in LEVELS:
            raise ValueError(
                f"logging level must be one of {sorted(LEVELS)}, got {s!r}"
            )
        return s

    @field_validator("file", mode="before")
    @classmethod
    def _blank_file(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class AppConfig(BaseModel):
    """Brief: Root configuration model."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
