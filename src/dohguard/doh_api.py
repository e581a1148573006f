from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import (
    BackgroundTasks,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .orchestrator import QueryOrchestrator, QueryResult
from .upstream import DNS_MESSAGE_CT
from .wire import b64url_decode_nopad

logger = logging.getLogger(__name__)

_CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


class DomainIn(BaseModel):
    domain: str


class PatternIn(BaseModel):
    pattern: str


def _to_response(result: QueryResult) -> Response:
    """
    Brief: Wrap a QueryResult in an HTTP response.

    Inputs:
    - result: orchestrator outcome

    Outputs:
    - Response carrying the DNS payload and informational headers

    Raises:
    - HTTPException(502) when every upstream failed.
    """
    if result.status >= 500:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="upstream resolution failed",
            headers=dict(_CORS_HEADERS),
        )
    headers = {**_CORS_HEADERS, **result.headers}
    return Response(
        content=result.body,
        status_code=result.status,
        media_type=result.media_type,
        headers=headers,
    )


def create_doh_app(
    orchestrator: QueryOrchestrator, path: str = "/dns-query"
) -> FastAPI:
    """
    Brief: Create the FastAPI app serving DoH plus the admin endpoints.

    Inputs:
    - orchestrator: QueryOrchestrator bound to the process FilterContext
    - path: request path for RFC 8484 GET/POST (default "/dns-query")

    Outputs:
    - FastAPI application

    Example:
      >>> # app = create_doh_app(QueryOrchestrator(context))
      >>> # uvicorn.run(app, host="127.0.0.1", port=8053)
    """

    ctx = orchestrator.context
    app = FastAPI(
        title="dohguard",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Cache", "X-Blocked-Domain"],
    )

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "DNS Ad Blocker Active"

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get(path)
    async def doh_get(request: Request, background: BackgroundTasks) -> Response:
        """
        Brief: Handle GET <path>?dns=<base64url>.

        Outputs:
        - Response with application/dns-message body. A malformed dns
          parameter decodes to an empty query and is forwarded as-is.
        """
        dns_param = request.query_params.get("dns")
        if dns_param is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST)
        qbytes = b64url_decode_nopad(dns_param)
        result = await run_in_threadpool(
            orchestrator.handle, qbytes, background.add_task
        )
        return _to_response(result)

    @app.post(path)
    async def doh_post(request: Request, background: BackgroundTasks) -> Response:
        """
        Brief: Handle POST <path> with Content-Type: application/dns-message.
        """
        ctype = request.headers.get("content-type", "")
        if DNS_MESSAGE_CT not in ctype:
            raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE)
        body = await request.body()
        result = await run_in_threadpool(orchestrator.handle, body, background.add_task)
        return _to_response(result)

    @app.get("/resolve")
    async def doh_json(
        name: str, background: BackgroundTasks, qtype: str = Query("A", alias="type")
    ) -> Response:
        """Brief: DNS-JSON variant, e.g. /resolve?name=example.com&type=AAAA."""
        result = await run_in_threadpool(
            orchestrator.resolve_json, name, qtype, background.add_task
        )
        if result.status == status.HTTP_400_BAD_REQUEST:
            return Response(
                content=result.body,
                status_code=result.status,
                media_type=result.media_type,
                headers=dict(_CORS_HEADERS),
            )
        return _to_response(result)

    # Admin endpoints ---------------------------------------------------------

    @app.get("/api/v1/stats")
    async def get_stats() -> Dict[str, Any]:
        payload: Dict[str, Any] = ctx.stats.snapshot().to_dict()
        payload["cache"] = ctx.cache.stats()
        payload["rules"] = ctx.classifier.counts()
        return payload

    @app.post("/api/v1/stats/reset")
    async def reset_stats() -> Dict[str, Any]:
        ctx.stats.reset()
        return {"status": "ok"}

    @app.get("/api/v1/blocklist")
    async def get_blocklist() -> Dict[str, Any]:
        domains = ctx.classifier.blocked_domains
        return {"count": len(domains), "domains": domains}

    @app.get("/api/v1/allowlist")
    async def get_allowlist() -> Dict[str, Any]:
        domains = ctx.classifier.allowed_domains
        return {"count": len(domains), "domains": domains}

    @app.get("/api/v1/patterns")
    async def get_patterns() -> Dict[str, Any]:
        patterns = ctx.classifier.patterns
        return {"count": len(patterns), "patterns": patterns}

    @app.post("/api/v1/blocklist")
    async def add_blocked(item: DomainIn) -> Dict[str, Any]:
        if not item.domain.strip(" ."):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST)
        added = ctx.classifier.add_blocked(item.domain)
        logger.info("Blocklist add %s (new=%s)", item.domain, bool(added))
        return {"status": "ok", "added": bool(added)}

    @app.post("/api/v1/allowlist")
    async def add_allowed(item: DomainIn) -> Dict[str, Any]:
        if not item.domain.strip(" ."):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST)
        added = ctx.classifier.add_allowed(item.domain)
        logger.info("Allowlist add %s (new=%s)", item.domain, bool(added))
        return {"status": "ok", "added": bool(added)}

    @app.post("/api/v1/patterns")
    async def add_pattern(item: PatternIn) -> Dict[str, Any]:
        try:
            added = ctx.classifier.add_pattern(item.pattern)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
            ) from exc
        logger.info("Pattern add %r (new=%s)", item.pattern, added)
        return {"status": "ok", "added": added}

    return app
