import asyncio
import logging
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import unquote, urljoin, urlparse

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from opentelemetry import trace

from app.browse import rewriter
from app.browse.canonicalizer import canonicalize
from app.browse.mime_policy import (
    effective_content_type,
    forwardable_headers,
    is_executable_or_rendered,
    media_type,
    mime_for_url,
)
from app.models import ProxyRoute, ResponseKind, UpstreamResponse
from app.utils import redact_url
from app.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from app.utils.traced_requests import traced_request
from app.vars import (
    DEFAULT_USER_AGENT,
    DISCONNECT_POLL_INTERVAL,
    INJECT_NAV_SHIM,
    PROXY_TIMEOUT,
    REWRITE_HTML,
    ROUTE_PREFIX,
)

router = APIRouter(prefix=ROUTE_PREFIX.rstrip("/"))
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Optional request headers copied upstream when the client sends them
FORWARDED_REQUEST_HEADERS = ("Origin", "Referer", "Cookie")

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}
HTML_MEDIA_TYPES = {"text/html", "application/xhtml+xml"}
TEXT_MEDIA_TYPES = {"application/json", "text/plain"}

# nginx convention; the client never reads it
CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    """The client went away before the upstream response arrived."""


def get_target_url(request: Request) -> str:
    """
    Decode the upstream URL carried in the request path.

    The encoded URL is taken from the raw request path and percent-decoded
    exactly once. The inbound query string, if any, is appended so native GET
    form submissions keep their fields.
    """
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else ""
    if path.startswith(ROUTE_PREFIX):
        try:
            target = unquote(path[len(ROUTE_PREFIX):], errors="strict")
        except UnicodeDecodeError:
            raise HTTPException(
                status_code=400,
                detail="Malformed target URL: invalid percent-encoding",
            )
    else:
        # Without raw_path the ASGI server has already decoded the path once
        target = request.scope.get("path", "")[len(ROUTE_PREFIX):]

    query = request.scope.get("query_string", b"").decode("latin-1")
    if query:
        target = f"{target}{'&' if '?' in target else '?'}{query}"

    try:
        parsed = urlparse(target)
        # Raises for an unbalanced IPv6 bracket or an out-of-range port
        parsed.port
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed target URL: {e}")
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        raise HTTPException(
            status_code=400,
            detail="Malformed target URL: expected an absolute http(s) URL",
        )
    return target


def prepare_headers(request: Request) -> Dict[str, str]:
    """Build the outbound request headers from the inbound request."""
    headers = {"User-Agent": request.headers.get("user-agent") or DEFAULT_USER_AGENT}
    for name in FORWARDED_REQUEST_HEADERS:
        value = request.headers.get(name.lower())
        if value:
            headers[name] = value
    return headers


async def fetch_upstream(target_url: str, headers: Dict[str, str]) -> UpstreamResponse:
    """Perform the single outbound GET; redirects are returned, not followed."""
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=False,  # Handle redirects manually for rewrapping
    ) as client:
        response = await client.get(target_url, headers=headers)
    return UpstreamResponse(
        status_code=response.status_code,
        headers=list(response.headers.multi_items()),
        body=response.content,
        declared_content_type=response.headers.get("content-type"),
        encoding=response.encoding,
    )


async def fetch_unless_disconnected(
    request: Request, target_url: str, headers: Dict[str, str]
) -> UpstreamResponse:
    """
    Run the upstream fetch while watching the inbound connection.

    Raises:
        ClientDisconnected: the client disconnected first; the fetch is cancelled
    """
    fetch_task = asyncio.create_task(fetch_upstream(target_url, headers))
    try:
        while True:
            done, _pending = await asyncio.wait(
                {fetch_task}, timeout=DISCONNECT_POLL_INTERVAL
            )
            if fetch_task in done:
                return fetch_task.result()
            if await request.is_disconnected():
                raise ClientDisconnected()
    finally:
        if not fetch_task.done():
            fetch_task.cancel()
            try:
                await fetch_task
            except asyncio.CancelledError:
                pass


def classify_response(
    upstream: UpstreamResponse, target_url: str
) -> Tuple[ResponseKind, Optional[str]]:
    """Return the response kind and the effective content type."""
    if upstream.status_code in REDIRECT_STATUS_CODES and upstream.header("location"):
        return ResponseKind.REDIRECT, None
    content_type = effective_content_type(target_url, upstream.declared_content_type)
    bare = media_type(content_type)
    if bare in HTML_MEDIA_TYPES:
        return ResponseKind.HTML, content_type
    if bare in TEXT_MEDIA_TYPES or bare.endswith("+json"):
        return ResponseKind.TEXT, content_type
    return ResponseKind.BINARY, content_type


def _append_headers(response: Response, headers: Iterable[Tuple[str, str]]) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    return response


def rewrap_redirect(
    upstream: UpstreamResponse, target_url: str, route: ProxyRoute
) -> str:
    """Resolve the upstream Location against the target and wrap it."""
    unproxyable = HTTPException(
        status_code=502,
        detail="Upstream redirected to a location that cannot be proxied",
    )
    location = upstream.header("location")
    try:
        absolute = urljoin(target_url, location.strip())
    except ValueError:
        raise unproxyable
    proxied = canonicalize(absolute, route.origin, route.route_prefix)
    if not proxied.startswith(route.route_prefix):
        raise unproxyable
    return proxied


def _redirect_response(
    upstream: UpstreamResponse, target_url: str, route: ProxyRoute, span
) -> Response:
    proxied = rewrap_redirect(upstream, target_url, route)
    span.set_attribute("proxy.rewritten_location", proxied)
    logger.info(
        f"[Proxy] Upstream {upstream.status_code} for {redact_url(target_url)} "
        f"rewrapped to {redact_url(proxied)}"
    )
    response = RedirectResponse(url=proxied, status_code=302)
    return _append_headers(
        response, forwardable_headers(upstream.headers, exclude=("location",))
    )


def _missing_asset_response(upstream: UpstreamResponse, target_url: str) -> Response:
    content_type = mime_for_url(target_url) or "application/javascript"
    logger.warning(
        f"[Proxy] Upstream 404 for {redact_url(target_url)}; "
        f"serving empty {content_type}"
    )
    response = Response(content=b"", status_code=200)
    response.headers["content-type"] = content_type
    return _append_headers(response, forwardable_headers(upstream.headers))


def _decode_body(upstream: UpstreamResponse) -> str:
    try:
        return upstream.body.decode(upstream.encoding or "utf-8", errors="replace")
    except LookupError:
        return upstream.body.decode("utf-8", errors="replace")


def _html_response(upstream: UpstreamResponse, route: ProxyRoute) -> Response:
    rewritten = rewriter.rewrite(
        _decode_body(upstream),
        route.origin,
        route.route_prefix,
        inject_shim=INJECT_NAV_SHIM,
    )
    response = Response(
        content=rewritten,
        status_code=upstream.status_code,
        media_type="text/html; charset=utf-8",
    )
    return _append_headers(response, forwardable_headers(upstream.headers))


def _passthrough_response(
    upstream: UpstreamResponse, content_type: Optional[str]
) -> Response:
    response = Response(content=upstream.body, status_code=upstream.status_code)
    if content_type:
        response.headers["content-type"] = content_type
    return _append_headers(response, forwardable_headers(upstream.headers))


async def forward_to_target(request: Request) -> Response:
    """
    Proxy one request to the upstream URL encoded in its path.

    - Redirects are rewrapped into the route prefix, never forwarded bare
    - HTML is rewritten and gets the navigation shim
    - JSON/text and binary bodies are forwarded verbatim with a corrected type
    - A 404 for a script, stylesheet, source map, wasm or font becomes an
      empty 200 of the right type
    """
    target_url = get_target_url(request)
    route = ProxyRoute.for_target(ROUTE_PREFIX, target_url)

    with traced_request(
        tracer,
        operation="proxy_request",
        target_url=target_url,
        start_message=f"[Proxy] {request.method}",
        extra_attrs={"proxy.method": request.method},
    ) as span:
        try:
            upstream = await fetch_unless_disconnected(
                request, target_url, prepare_headers(request)
            )
        except ClientDisconnected:
            logger.info(
                f"[Proxy] Client disconnected, cancelled fetch of {redact_url(target_url)}"
            )
            span.set_attribute("proxy.error", "client_disconnected")
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except httpx.TimeoutException as e:
            log_exception_with_details(
                logger, "[Proxy] Upstream timeout:", e, level=logging.WARNING
            )
            span.set_attribute("proxy.error", "timeout")
            raise HTTPException(status_code=504, detail="Gateway timeout")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log_exception_with_details(logger, "[Proxy] Upstream unreachable:", e)
            span.set_attribute("proxy.error", "upstream_unreachable")
            raise HTTPException(
                status_code=500,
                detail=f"Proxy error: {format_exception_message(e)}",
            )

        span.set_attribute("proxy.status_code", upstream.status_code)
        kind, content_type = classify_response(upstream, target_url)
        span.set_attribute("proxy.response_kind", kind.value)

        if kind == ResponseKind.REDIRECT:
            return _redirect_response(upstream, target_url, route, span)
        if upstream.status_code == 404 and is_executable_or_rendered(target_url):
            return _missing_asset_response(upstream, target_url)
        if kind == ResponseKind.HTML and REWRITE_HTML:
            return _html_response(upstream, route)
        return _passthrough_response(upstream, content_type)


@router.get("/{target:path}")
async def proxy_browse(request: Request, target: str):
    """Catch-all route that proxies the encoded upstream URL."""
    return await forward_to_target(request)
