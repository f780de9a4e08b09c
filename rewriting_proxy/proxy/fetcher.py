import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx
from fastapi import Request

from rewriting_proxy.errors import UpstreamFetchError
from rewriting_proxy.proxy.headers import HOP_BY_HOP_HEADERS
from rewriting_proxy.proxy.url_codec import TargetDescriptor
from rewriting_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

BODYLESS_METHODS = {"GET", "HEAD"}

# Recomputed for the outbound request or narrowed below
_REPLACED_HEADERS = {"host", "content-length", "accept-encoding"}

# Codings httpx decodes without optional extras, so HTML can be rewritten
DECODABLE_ENCODINGS = {"gzip", "x-gzip", "deflate", "identity"}


@dataclass
class UpstreamResponse:
    """An open upstream response together with the client that owns it."""

    response: httpx.Response
    client: httpx.AsyncClient

    async def aclose(self) -> None:
        try:
            await self.response.aclose()
        finally:
            await self.client.aclose()


def build_target_url(target_url: str, query: str) -> str:
    """Append the inbound query string (e.g. from a GET form) to the target."""
    if not query:
        return target_url
    base, sep, fragment = target_url.partition("#")
    joiner = "&" if "?" in base else "?"
    return f"{base}{joiner}{query}{sep}{fragment}"


def narrow_accept_encoding(accept_encoding: Optional[str]) -> str:
    """
    Keep only the client's codings that can be decoded for rewriting.

    Without a usable coding the upstream is asked for ``identity``, so a
    client never receives a compression it did not ask for.
    """
    kept = [
        coding.strip()
        for coding in (accept_encoding or "").split(",")
        if coding.split(";", 1)[0].strip().lower() in DECODABLE_ENCODINGS
    ]
    return ", ".join(kept) or "identity"


def prepare_headers(request: Request, target: TargetDescriptor) -> List[Tuple[str, str]]:
    """
    Copy the inbound headers for the outbound request.
    Hop-by-hop headers are dropped and Host is forced to the target host.
    """
    headers = []
    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in _REPLACED_HEADERS:
            continue
        headers.append((name, value))

    headers.append(("host", target.host))
    accept_encoding = narrow_accept_encoding(request.headers.get("accept-encoding"))
    headers.append(("accept-encoding", accept_encoding))
    return headers


async def fetch_upstream(
    request: Request,
    target: TargetDescriptor,
    timeout: Optional[float] = None,
) -> UpstreamResponse:
    """
    Issue the outbound request for ``target`` and return the open response.

    Redirects are not followed so the Location header can be rewritten. The
    body is left unread; the caller must ``aclose()`` the result.

    Raises:
        UpstreamFetchError: on any transport level failure.
    """
    method = request.method.upper()
    url = build_target_url(target.url, str(request.url.query))
    headers = prepare_headers(request, target)
    body = None if method in BODYLESS_METHODS else await request.body()

    logger.debug(f"[Fetcher] {method} {url}")

    client = httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=False,
    )
    try:
        outbound = client.build_request(method, url, headers=headers, content=body)
        response = await client.send(outbound, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
        await client.aclose()
        log_exception_with_details(logger, f"[Fetcher] {method} {url} failed:", e)
        raise UpstreamFetchError(str(e)) from e

    return UpstreamResponse(response=response, client=client)
