"""
The per-request proxy pipeline.

fetch upstream -> transform headers -> (HTML only) rewrite elements,
rewrite inline navigation, inject the spoofing script -> respond.

Nothing here outlives a request: settings, target and the upstream client
are all built for the request being served.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from rewriting_proxy.errors import UpstreamFetchError
from rewriting_proxy.proxy.fetcher import UpstreamResponse, fetch_upstream
from rewriting_proxy.proxy.headers import HeaderSet, transform_response_headers
from rewriting_proxy.proxy.url_codec import (
    TargetDescriptor,
    decode,
    describe_target,
    split_proxy_path,
)
from rewriting_proxy.rewrite.element_rewriter import rewrite_html
from rewriting_proxy.rewrite.env_spoofer import inject_spoof_script
from rewriting_proxy.rewrite.inline_script import rewrite_inline_navigation
from rewriting_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from rewriting_proxy.utils.traced_requests import traced_request
from rewriting_proxy.vars import DEFAULT_TARGET_URL, PROXY_TIMEOUT, PUBLIC_URL

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# The body of a rewritten HTML response no longer matches these
_STALE_BODY_HEADERS = {"content-length", "content-encoding"}


@dataclass(frozen=True)
class ProxySettings:
    """Configuration values scoped to one request."""

    default_target: str
    proxy_origin: str
    timeout: Optional[float] = None


def settings_for(request: Request) -> ProxySettings:
    """Build the request-scoped settings, deriving the proxy origin from the request."""
    if PUBLIC_URL:
        proxy_origin = PUBLIC_URL
    else:
        host = request.headers.get("host") or request.url.netloc
        proxy_origin = f"{request.url.scheme}://{host}"
    return ProxySettings(
        default_target=DEFAULT_TARGET_URL,
        proxy_origin=proxy_origin,
        timeout=PROXY_TIMEOUT,
    )


def inbound_path(request: Request) -> str:
    """
    The request path with its percent-escapes intact.

    The ASGI ``path`` is already unescaped, which would decode the embedded
    target URL twice, so ``raw_path`` is preferred when the server provides it.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("utf-8", errors="replace")
    return request.url.path


def is_html(content_type: str) -> bool:
    return "text/html" in (content_type or "").lower()


def has_body(method: str, status_code: int) -> bool:
    """Whether HTTP framing allows a body on this response at all."""
    if method.upper() == "HEAD":
        return False
    return status_code >= 200 and status_code not in (204, 304)


def rewrite_document(markup: str, target: TargetDescriptor, proxy_origin: str) -> str:
    """Run the HTML-only passes over a fully buffered document."""
    try:
        markup = rewrite_html(markup, target)
    except Exception as e:
        # A page the tokenizer gives up on is still served, just unrewritten
        log_exception_with_details(
            logger,
            f"[Rewrite] Element pass failed for {target.url}, keeping markup:",
            e,
            logging.WARNING,
        )
    markup = rewrite_inline_navigation(markup, target, proxy_origin)
    return inject_spoof_script(markup, target, proxy_origin)


def _apply_headers(response: Response, headers: HeaderSet) -> Response:
    for name, value in headers:
        response.headers.append(name, value)
    return response


def _passthrough_response(upstream: UpstreamResponse, headers: HeaderSet) -> Response:
    """Stream a non-HTML body through untouched, closing upstream afterwards."""
    response = StreamingResponse(
        upstream.response.aiter_raw(),
        status_code=upstream.response.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    return _apply_headers(response, headers)


async def _bodyless_response(upstream: UpstreamResponse, headers: HeaderSet) -> Response:
    """Answer with the transformed headers only, keeping the upstream's length."""
    await upstream.aclose()
    response = Response(status_code=upstream.response.status_code)
    if "content-length" in response.headers:
        del response.headers["content-length"]
    return _apply_headers(response, headers)


async def _rewritten_response(
    upstream: UpstreamResponse,
    headers: HeaderSet,
    target: TargetDescriptor,
    proxy_origin: str,
) -> Response:
    try:
        await upstream.response.aread()
    except httpx.HTTPError as e:
        log_exception_with_details(logger, f"[Proxy] Reading {target.url} failed:", e)
        raise UpstreamFetchError(str(e)) from e
    finally:
        await upstream.aclose()

    encoding = upstream.response.encoding or "utf-8"
    markup = rewrite_document(upstream.response.text, target, proxy_origin)

    response = Response(
        content=markup.encode(encoding, errors="xmlcharrefreplace"),
        status_code=upstream.response.status_code,
    )
    kept = [(n, v) for n, v in headers if n.lower() not in _STALE_BODY_HEADERS]
    return _apply_headers(response, kept)


async def proxy_request(request: Request) -> Response:
    """
    Serve one ``/proxy/<encoded-url>`` request.

    Raises:
        InvalidProxyPath: the path is not under ``/proxy/``.
        InvalidTargetURL: the embedded URL does not decode to a web URL.
        UpstreamFetchError: the target could not be reached.
    """
    path = inbound_path(request)
    encoded = split_proxy_path(path)
    settings = settings_for(request)
    target = describe_target(decode(encoded, settings.default_target))

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target_url=target.url,
        start_message=f"[Proxy] {request.method} {path} -> {target.url}",
    ) as span:
        try:
            upstream = await fetch_upstream(request, target, settings.timeout)
        except UpstreamFetchError as e:
            span.set_attribute("proxy.error", format_exception_message(e.__cause__ or e))
            raise

        status_code = upstream.response.status_code
        span.set_attribute("proxy.status_code", status_code)

        headers = transform_response_headers(
            upstream.response.headers.multi_items(), target, settings.proxy_origin
        )
        content_type = upstream.response.headers.get("content-type", "")

        if not is_html(content_type):
            span.set_attribute("proxy.rewritten", False)
            return _passthrough_response(upstream, headers)

        if not has_body(request.method, status_code):
            span.set_attribute("proxy.rewritten", False)
            return await _bodyless_response(upstream, headers)

        span.set_attribute("proxy.rewritten", True)
        try:
            response = await _rewritten_response(
                upstream, headers, target, settings.proxy_origin
            )
        except UpstreamFetchError as e:
            span.set_attribute("proxy.error", format_exception_message(e.__cause__ or e))
            raise
        logger.debug(f"[Proxy] Rewrote HTML from {target.url} ({status_code})")
        return response
