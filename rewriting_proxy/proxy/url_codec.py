"""
Encoding of absolute URLs into the proxy's path namespace.

A proxied URL is the full absolute target URL, percent-encoded into a
single path segment after ``/proxy/``. Everything the proxy rewrites
(attributes, redirects, inline script literals) goes through here.
"""

import re
from dataclasses import dataclass
from urllib.parse import quote, unquote, urljoin, urlsplit

from rewriting_proxy.errors import InvalidProxyPath, InvalidTargetURL
from rewriting_proxy.vars import PROXY_PATH_SEGMENT

PROXY_PATH_PREFIX = f"/{PROXY_PATH_SEGMENT}/"

# Characters encodeURIComponent leaves alone on top of quote()'s own set,
# so in-page script can decode what we produce and vice versa.
_COMPONENT_SAFE = "!~*'()"

_WEB_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_WEB_SCHEMES = ("http", "https")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_FORBIDDEN_HOST_CHARS = set("#%/:<>?@[\\]^|")


@dataclass(frozen=True)
class TargetDescriptor:
    """The decoded target of one proxied request."""

    url: str
    scheme: str
    hostname: str
    host: str
    origin: str

    @property
    def protocol(self) -> str:
        """Scheme in the form browsers expose as ``location.protocol``."""
        return f"{self.scheme}:"


def encode(url: str) -> str:
    """Embed an absolute URL into a proxy path."""
    return PROXY_PATH_PREFIX + quote(url, safe=_COMPONENT_SAFE)


def proxied_url(url: str, proxy_origin: str) -> str:
    """Absolute proxy URL for ``url`` on the proxy's own origin."""
    return proxy_origin.rstrip("/") + encode(url)


def split_proxy_path(path: str) -> str:
    """
    Return the still-encoded target part of an inbound path.

    Raises:
        InvalidProxyPath: if the first path segment is not ``proxy``.
    """
    segments = path.split("/")
    if len(segments) < 2 or segments[1] != PROXY_PATH_SEGMENT:
        raise InvalidProxyPath(path)
    return "/".join(segments[2:])


def _validate(url: str) -> None:
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        # .port raises ValueError on a malformed port
        parts.port
    except ValueError as e:
        raise InvalidTargetURL(f"{url}: {e}") from e
    if parts.scheme.lower() not in _WEB_SCHEMES or not hostname:
        raise InvalidTargetURL(url)
    # IPv6 literals are the only hosts allowed to contain ":"
    forbidden = _FORBIDDEN_HOST_CHARS - {":"} if ":" in hostname else _FORBIDDEN_HOST_CHARS
    if any(ch in forbidden or ch.isspace() or not ch.isprintable() for ch in hostname):
        raise InvalidTargetURL(url)


def decode(encoded: str, default_target: str) -> str:
    """
    Decode the part of a proxy path that follows ``/proxy/``.

    An empty value selects ``default_target``. A value without an
    ``http(s)://`` scheme is treated as ``https://``.

    Raises:
        InvalidTargetURL: if the value cannot be decoded into a web URL.
    """
    if not encoded:
        url = default_target
    else:
        try:
            url = unquote(encoded, errors="strict")
        except UnicodeDecodeError as e:
            raise InvalidTargetURL(encoded) from e
        if not url:
            url = default_target
    if not _WEB_SCHEME.match(url):
        url = f"https://{url}"
    _validate(url)
    return url


def describe_target(url: str) -> TargetDescriptor:
    """Build the TargetDescriptor for an already validated target URL."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    hostname = parts.hostname or ""
    host = f"[{hostname}]" if ":" in hostname else hostname
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    return TargetDescriptor(
        url=url,
        scheme=scheme,
        hostname=hostname,
        host=host,
        origin=f"{scheme}://{host}",
    )


def resolve_reference(raw_value: str, base_url: str):
    """
    Resolve ``raw_value`` against ``base_url``.

    Returns the absolute URL, or None when it cannot be resolved or is not
    an http(s) URL.
    """
    try:
        resolved = urljoin(base_url, raw_value.strip())
        parts = urlsplit(resolved)
    except ValueError:
        return None
    if parts.scheme.lower() not in _WEB_SCHEMES or not parts.netloc:
        return None
    return resolved


def rewrite_reference(raw_value: str, target: TargetDescriptor) -> str:
    """
    Rewrite a URL found in the page into a proxy path.

    Relative, protocol-relative, query-only and fragment-only references are
    resolved against the target first. Values that do not resolve to an
    http(s) URL (``mailto:``, ``javascript:``, ``data:``...) come back
    unchanged.
    """
    resolved = resolve_reference(raw_value, target.url)
    if resolved is None:
        return raw_value
    return encode(resolved)
