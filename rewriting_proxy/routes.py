import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from rewriting_proxy.errors import ProxyError
from rewriting_proxy.proxy.handler import proxy_request

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

# The core HTTP methods plus PATCH; extension methods such as WebDAV get 405
PROXIED_METHODS = [
    "GET", "HEAD", "POST", "PUT", "DELETE", "CONNECT", "OPTIONS", "TRACE", "PATCH",
]


def error_response(error: ProxyError) -> Response:
    return PlainTextResponse(error.message, status_code=error.status_code)


# Catch-all: anything outside /proxy/ is rejected inside proxy_request
@router.api_route("/{path:path}", methods=PROXIED_METHODS)
async def proxy_all(request: Request, path: str):
    """Route every request through the rewriting proxy pipeline."""
    try:
        return await proxy_request(request)
    except ProxyError as e:
        logger.info(
            f"[Proxy] {request.method} {request.url.path} rejected with "
            f"{e.status_code}: {e.detail or e.message}"
        )
        return error_response(e)
