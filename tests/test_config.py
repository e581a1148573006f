"""Brief: Unit tests for dohguard.config loading and validation.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import pytest

from dohguard.config import AppConfig, ConfigError, load_config
from dohguard.config import config_parser as cp


def test_defaults_without_file(tmp_path) -> None:
    """Brief: A missing config file yields the built-in defaults.

    Inputs:
      - tmp_path: directory without a config file.

    Outputs:
      - None; asserts default values.
    """

    cfg = load_config(str(tmp_path / "absent.yaml"), environ={})
    assert cfg.server.port == 8053
    assert cfg.server.path == "/dns-query"
    assert cfg.upstream.url == "https://cloudflare-dns.com/dns-query"
    assert cfg.upstream.fallback_url == "https://dns.google/dns-query"
    assert cfg.cache.max_entries == 1000
    assert cfg.cache.ttl_seconds == 300
    assert cfg.stats.top_domains_cap == 100
    assert cfg.filter.blocked_domains == ["doubleclick.net"]
    assert cfg.filter.deny_response == "nxdomain"


def test_yaml_sections_are_applied(tmp_path) -> None:
    """Brief: Values from the YAML file override the defaults.

    Inputs:
      - tmp_path: directory for the config file.

    Outputs:
      - None; asserts parsed values.
    """

    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  port: 9443\n"
        "upstream:\n"
        "  url: https://dns.quad9.net/dns-query\n"
        "  fallback_url: ''\n"
        "  timeout_ms: 1500\n"
        "cache:\n"
        "  max_entries: 50\n"
        "filter:\n"
        "  deny_response: NODATA\n"
        "  blocked_domains: [ads.example.com]\n"
        "  blocked_patterns: ['^track']\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path), environ={})
    assert cfg.server.port == 9443
    assert cfg.upstream.url == "https://dns.quad9.net/dns-query"
    assert cfg.upstream.fallback_url is None
    assert cfg.upstream.timeout_ms == 1500
    assert cfg.cache.max_entries == 50
    assert cfg.filter.deny_response == "nodata"
    assert cfg.filter.blocked_domains == ["ads.example.com"]
    assert cfg.filter.blocked_patterns == ["^track"]


def test_env_overrides_win(tmp_path) -> None:
    """Brief: DOHGUARD_* environment variables override file values.

    Inputs:
      - tmp_path: directory for the config file.

    Outputs:
      - None; asserts overridden upstream and log level.
    """

    path = tmp_path / "config.yaml"
    path.write_text("upstream:\n  url: https://a.example/dns-query\n")
    env = {
        "DOHGUARD_UPSTREAM_URL": "https://b.example/dns-query",
        "DOHGUARD_LOG_LEVEL": "debug",
        "UNRELATED": "x",
    }
    cfg = load_config(str(path), environ=env)
    assert cfg.upstream.url == "https://b.example/dns-query"
    assert cfg.logging.level == "debug"


def test_apply_env_overrides_creates_sections() -> None:
    """Brief: Overrides create missing sections and replace non-mappings.

    Inputs:
      - None.

    Outputs:
      - None; asserts resulting mapping.
    """

    raw = {"upstream": "not-a-mapping"}
    out = cp.apply_env_overrides(
        raw,
        {"DOHGUARD_FALLBACK_URL": "https://f.example/dns-query"},
    )
    assert out is raw
    assert out == {"upstream": {"fallback_url": "https://f.example/dns-query"}}


@pytest.mark.parametrize(
    "body,match",
    [
        ("server: [unclosed\n", "Invalid YAML"),
        ("- just\n- a list\n", "must be a mapping"),
        ("upstream:\n  url: ftp://x.example\n", "Invalid configuration"),
        ("filter:\n  deny_response: refuse\n", "Invalid configuration"),
        ("cache:\n  max_entries: 0\n", "Invalid configuration"),
        ("server:\n  port: 70000\n", "Invalid configuration"),
    ],
)
def test_invalid_config_raises_config_error(tmp_path, body, match) -> None:
    """Brief: Malformed YAML and schema violations raise ConfigError.

    Inputs:
      - body: config text.
      - match: expected message fragment.

    Outputs:
      - None; asserts ConfigError.
    """

    path = tmp_path / "config.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError, match=match):
        load_config(str(path), environ={})


def test_empty_file_and_model_defaults(tmp_path) -> None:
    """Brief: An empty file is treated like an empty mapping.

    Inputs:
      - tmp_path: directory for the config file.

    Outputs:
      - None; asserts equality with AppConfig defaults.
    """

    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path), environ={}) == AppConfig()
