# Ensure tests import modules from this project directory first, so
# `import rewriting_proxy.*` works without an installed copy.
import os
import sys
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi import Request

PROJECT_ROOT = os.path.dirname(__file__)

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


class AsyncChunks(httpx.AsyncByteStream):
    """Upstream body that has not been read yet, delivered in chunks."""

    def __init__(self, chunks):
        self._chunks = list(chunks)

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


@pytest.fixture
def mock_request():
    """Create a mock FastAPI Request for GET /proxy/https%3A%2F%2Fexample.com%2F."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.scope = {"raw_path": b"/proxy/https%3A%2F%2Fexample.com%2F"}
    request.url.path = "/proxy/https://example.com/"
    request.url.query = ""
    request.url.scheme = "http"
    request.url.netloc = "proxy.local"
    request.headers = {"host": "proxy.local", "user-agent": "test-agent"}
    request.body = AsyncMock(return_value=b"")
    return request


@pytest.fixture
def upstream_response():
    """
    Build real httpx responses as the upstream would return them.

    With ``stream_chunks`` the body is left unread, like a response opened
    with ``stream=True``.
    """

    def _create_response(status_code=200, headers=None, content=b"", stream_chunks=None):
        if stream_chunks is not None:
            return httpx.Response(
                status_code, headers=headers or [], stream=AsyncChunks(stream_chunks)
            )
        return httpx.Response(status_code, headers=headers or [], content=content)

    return _create_response
