from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .cache import ResolutionCache
from .config import AppConfig, ConfigError, init_logging, load_config
from .config.logging_config import uvicorn_level
from .doh_api import create_doh_app
from .orchestrator import FilterContext, QueryOrchestrator
from .rules import Classifier
from .stats import StatsTracker
from .upstream import UpstreamResolver

logger = logging.getLogger("dohguard.main")


def build_classifier(cfg: AppConfig) -> Classifier:
    """
    Brief: Build the rule sets from inline config plus list files.

    Inputs:
      - cfg: validated AppConfig

    Outputs:
      - Classifier populated with allow/block domains and patterns

    Raises:
      - ValueError for an inline pattern that does not compile.
    """
    fcfg = cfg.filter
    classifier = Classifier(
        allowed_domains=fcfg.allowed_domains,
        blocked_domains=fcfg.blocked_domains,
        blocked_patterns=fcfg.blocked_patterns,
    )
    for path in fcfg.blocked_domains_files:
        _load_list(classifier.load_domains_file, path, "deny")
    for path in fcfg.allowed_domains_files:
        _load_list(classifier.load_domains_file, path, "allow")
    for path in fcfg.blocked_patterns_files:
        _load_list(lambda p, _mode: classifier.load_patterns_file(p), path, "deny")
    return classifier


def _load_list(loader, path: str, mode: str) -> None:
    try:
        loader(path, mode)
    except FileNotFoundError:
        logger.warning("List file not found: %s", path)
    except OSError as exc:
        logger.error("Failed to read list file %s: %s", path, exc)


def build_context(cfg: AppConfig) -> FilterContext:
    """
    Brief: Create the process-wide FilterContext from configuration.

    Inputs:
      - cfg: validated AppConfig

    Outputs:
      - FilterContext with fresh (empty) cache and stats
    """
    ucfg = cfg.upstream
    context = FilterContext(
        classifier=build_classifier(cfg),
        cache=ResolutionCache(max_entries=cfg.cache.max_entries),
        stats=StatsTracker(
            top_domains_cap=cfg.stats.top_domains_cap, top_n=cfg.stats.top_n
        ),
        upstream=UpstreamResolver(
            ucfg.url,
            ucfg.fallback_url,
            timeout_ms=ucfg.timeout_ms,
            verify=ucfg.verify,
        ),
        cache_ttl=cfg.cache.ttl_seconds,
        deny_response=cfg.filter.deny_response,
    )
    counts = context.classifier.counts()
    logger.info(
        "Rules loaded: %d blocked, %d allowed, %d patterns; upstream %s (fallback %s)",
        counts["blocked_domains"],
        counts["allowed_domains"],
        counts["blocked_patterns"],
        ucfg.url,
        ucfg.fallback_url or "none",
    )
    return context


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dohguard",
        description="DNS-over-HTTPS filtering forwarder",
    )
    parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to YAML config file"
    )
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Brief: CLI entry point: load config, build the context, serve DoH.

    Inputs:
      - argv: optional argument list (defaults to sys.argv[1:])

    Outputs:
      - int exit code (0 success, 1 configuration error)
    """
    args = _parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        init_logging(None)
        logger.error("%s", exc)
        return 1

    init_logging(cfg.logging)

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port

    try:
        context = build_context(cfg)
    except ValueError as exc:
        logger.error("Invalid filter configuration: %s", exc)
        return 1

    if args.check_config:
        logger.info("Configuration OK")
        return 0

    app = create_doh_app(QueryOrchestrator(context), path=cfg.server.path)

    import uvicorn

    server_cfg = cfg.server
    logger.info(
        "Starting DoH server on %s:%d%s",
        server_cfg.host,
        server_cfg.port,
        server_cfg.path,
    )
    try:
        uvicorn.run(
            app,
            host=server_cfg.host,
            port=server_cfg.port,
            log_level=uvicorn_level(cfg.logging.level),
            log_config=None,
            ssl_certfile=server_cfg.cert_file,
            ssl_keyfile=server_cfg.key_file,
        )
    finally:
        context.upstream.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
