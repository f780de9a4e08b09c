"""
Best-effort rewriting of navigation literals in inline script text.

This is plain pattern matching over the page text, not a JavaScript parser.
Only four call shapes with a single- or double-quoted literal are matched;
computed URLs, concatenations and template literals are left alone.
"""

import re
from typing import Pattern, Tuple
from urllib.parse import urljoin

from rewriting_proxy.proxy.url_codec import TargetDescriptor, proxied_url

NAVIGATION_CALLS: Tuple[str, ...] = (
    r"window\.location\s*=\s*",
    r"location\.href\s*=\s*",
    r"window\.open\s*\(\s*",
    r"document\.location\s*=\s*",
)

ABSOLUTE_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(rf"({call})(['\"])(https?://[^'\"]+)", re.IGNORECASE)
    for call in NAVIGATION_CALLS
)

RELATIVE_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(rf"({call})(['\"])(/[^'\"]+)", re.IGNORECASE)
    for call in NAVIGATION_CALLS
)


def rewrite_inline_navigation(text: str, target: TargetDescriptor, proxy_origin: str) -> str:
    """
    Point quoted navigation literals in ``text`` at the proxy.

    Absolute ``http(s)://`` literals are encoded as they are; root-relative
    ``/...`` literals are resolved against the target first.
    """

    def absolute(match: re.Match) -> str:
        prefix, quote, url = match.groups()
        return f"{prefix}{quote}{proxied_url(url, proxy_origin)}"

    def relative(match: re.Match) -> str:
        prefix, quote, path = match.groups()
        try:
            url = urljoin(target.url, path)
        except ValueError:
            return match.group(0)
        return f"{prefix}{quote}{proxied_url(url, proxy_origin)}"

    for pattern in ABSOLUTE_PATTERNS:
        text = pattern.sub(absolute, text)
    for pattern in RELATIVE_PATTERNS:
        text = pattern.sub(relative, text)
    return text
