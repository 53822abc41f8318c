import logging
import re
from urllib.parse import unquote, urlsplit

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.types import ASGIApp, Receive, Scope, Send

from destination_proxy.errors import TokenError
from destination_proxy.utils.exception_logging import log_exception_with_details
from destination_proxy.utils.traced_requests import traced_request
from destination_proxy.vars import FORWARDED_AUTH_HEADER, PROXY_PREFIX

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Recomputed for the upstream request: host from the target URL (change origin),
# content-length from the forwarded body
RECOMPUTED_REQUEST_HEADERS = {"host", "content-length"}

PROXIED_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

_REPEATED_SLASHES = re.compile(r"/{2,}")


def origin_form_scope(scope: Scope) -> Scope:
    """
    Rewrite an absolute-form request target into origin form.

    Clients using this process as their HTTP proxy send
    ``GET http://billing.dest/invoice/42 HTTP/1.1``. The request continues as
    ``GET /invoice/42`` with the target's authority as its Host header.
    """
    raw_target = scope.get("raw_path") or scope["path"].encode("utf-8")
    target = urlsplit(raw_target.decode("latin-1"))
    raw_path = target.path or "/"

    scope = dict(scope)
    scope["raw_path"] = raw_path.encode("latin-1")
    scope["path"] = unquote(raw_path)
    if target.query and not scope.get("query_string"):
        scope["query_string"] = target.query.encode("latin-1")
    authority = target.netloc.rsplit("@", 1)[-1]
    if authority:
        headers = [(k, v) for k, v in scope.get("headers", []) if k != b"host"]
        headers.append((b"host", authority.encode("latin-1")))
        scope["headers"] = headers
    return scope


class AbsoluteFormMiddleware:
    """Accept proxy-style absolute-form requests on the catch-all route."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] == "http" and not scope["path"].startswith("/"):
            scope = origin_form_scope(scope)
        await self.app(scope, receive, send)


def get_destination(host: str) -> str:
    """Destination name addressed by a Host header, e.g. ``billing.dest:8887`` -> ``billing``."""
    return host.split(":", 1)[0].split(".", 1)[0]


def rewrite_path(path: str, destination: str, query: str = "") -> str:
    """Prefix ``path`` with the destination route of the deployed proxy, keeping the query."""
    rewritten = _REPEATED_SLASHES.sub("/", f"{PROXY_PREFIX}/{destination}/{path}")
    if query:
        rewritten = f"{rewritten}?{query}"
    return rewritten


def _request_path(request: Request) -> str:
    # raw_path keeps the client's percent-encoding intact
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return request.url.path


def get_target_url(request: Request, target: str, destination: str) -> str:
    """Construct the upstream URL for a request addressed to ``destination``."""
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{target.rstrip('/')}{rewrite_path(_request_path(request), destination, query)}"


def prepare_headers(request: Request, token: str) -> httpx.Headers:
    """
    Prepare headers for forwarding to the deployed proxy.

    Removes hop-by-hop headers, keeps the caller's own authorization under
    the forwarded authorization header and authenticates with the proxy token.
    """
    headers = httpx.Headers()
    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in RECOMPUTED_REQUEST_HEADERS:
            continue
        if name_lower == "authorization":
            continue
        headers.add(name_lower, value)

    original_authorization = request.headers.get("authorization")
    if original_authorization:
        headers[FORWARDED_AUTH_HEADER] = original_authorization

    headers["authorization"] = f"Bearer {token}"
    return headers


def build_response(upstream: httpx.Response) -> StreamingResponse:
    """Relay the upstream status, headers and raw body without buffering."""
    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    for name, value in upstream.headers.multi_items():
        if name.lower() in HOP_BY_HOP_HEADERS:
            continue
        response.raw_headers.append(
            (name.lower().encode("latin-1"), value.encode("latin-1"))
        )
    return response


async def forward_to_target(request: Request) -> StreamingResponse:
    """
    Forward an incoming request to the deployed proxy on behalf of the destination
    named by the request's host.
    """
    state = request.app.state
    host = request.headers.get("host")
    if not host:
        raise HTTPException(status_code=400, detail="Missing Host header")

    destination = get_destination(host)
    target_url = get_target_url(request, state.config.target, destination)
    start_message = None
    if state.log_requests:
        start_message = f"Proxying {request.url.path} to destination {destination}"

    with traced_request(
        tracer,
        operation="proxy_request",
        destination=destination,
        method=request.method,
        start_message=start_message,
        extra_attrs={"proxy.target_url": target_url},
    ) as span:
        try:
            token = await state.token_cache.ensure_valid_token()
        except TokenError as e:
            log_exception_with_details(logger, "[Token]", e)
            span.set_attribute("proxy.error", "token")
            raise HTTPException(status_code=502, detail="Bad gateway - no valid proxy token")

        headers = prepare_headers(request, token)
        body = await request.body()

        try:
            upstream_request = state.http_client.build_request(
                request.method, target_url, headers=headers, content=body
            )
            upstream = await state.http_client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Proxy timeout for {target_url}: {e}")
            span.set_attribute("proxy.error", "timeout")
            raise HTTPException(status_code=504, detail="Gateway timeout")
        except httpx.HTTPError as e:
            log_exception_with_details(logger, f"[Proxy] {target_url}", e)
            span.set_attribute("proxy.error", "connection_failed")
            raise HTTPException(status_code=502, detail="Bad gateway - cannot reach target")

        span.set_attribute("proxy.status_code", upstream.status_code)
        return build_response(upstream)


@router.api_route("/{path:path}", methods=PROXIED_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies all requests to the deployed proxy."""
    return await forward_to_target(request)
