"""
Error kinds that map to a distinct HTTP status.

Everything else that can go wrong while rewriting a page degrades to
"leave the original value" and is never raised.
"""


class ProxyError(Exception):
    status_code = 500
    message = "Proxy error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.message)
        self.detail = detail


class InvalidProxyPath(ProxyError):
    """The first path segment is not ``proxy``."""

    status_code = 501
    message = "Invalid path, expected /proxy/<encoded-url>"


class InvalidTargetURL(ProxyError):
    """The URL embedded in the proxy path does not decode to a valid URL."""

    status_code = 400
    message = "Invalid URL"


class UpstreamFetchError(ProxyError):
    """The outbound request to the target failed at the transport level."""

    status_code = 500
    message = "Error fetching the target site."
