import logging
import re
from typing import Iterable, List, Tuple

from rewriting_proxy.proxy.url_codec import (
    TargetDescriptor,
    proxied_url,
    resolve_reference,
)

logger = logging.getLogger("uvicorn.error")

HeaderSet = List[Tuple[str, str]]

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

# Evaluated against the upstream origin, these would block the page once it
# is served from the proxy's origin.
SECURITY_HEADERS = {
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
}

_COOKIE_DOMAIN = re.compile(r";\s*Domain=[^;]*", re.IGNORECASE)


def strip_cookie_domain(set_cookie: str) -> str:
    """
    Remove the Domain attribute from a Set-Cookie value.

    The cookie becomes host-only and therefore scoped to the proxy's origin.
    Every other attribute is kept verbatim.
    """
    return _COOKIE_DOMAIN.sub("", set_cookie)


def rewrite_location(location: str, target: TargetDescriptor, proxy_origin: str) -> str:
    """
    Rewrite a redirect target into an absolute proxy URL on the proxy origin.
    Relative locations are resolved against the target first; anything that
    does not resolve to an http(s) URL is passed through unchanged.
    """
    if not location:
        return location

    resolved = resolve_reference(location, target.url)
    if resolved is None:
        logger.warning(f"[Headers] Passing through unresolvable Location: {location}")
        return location
    return proxied_url(resolved, proxy_origin)


def transform_response_headers(
    headers: Iterable[Tuple[str, str]],
    target: TargetDescriptor,
    proxy_origin: str,
) -> HeaderSet:
    """
    Rewrite upstream response headers for delivery to the client.

    ``headers`` is a sequence of (name, value) pairs, e.g.
    ``httpx.Headers.multi_items()``, so repeated Set-Cookie entries are all
    kept.
    """
    result: HeaderSet = []
    for name, value in headers:
        name_lower = name.lower()

        if name_lower in HOP_BY_HOP_HEADERS or name_lower in SECURITY_HEADERS:
            continue

        if name_lower == "set-cookie":
            value = strip_cookie_domain(value)
        elif name_lower == "location":
            value = rewrite_location(value, target, proxy_origin)
            logger.debug(f"[Headers] Rewrote Location to {value}")

        result.append((name, value))
    return result
