from unittest.mock import AsyncMock, Mock
from urllib.parse import quote, unquote

import httpx
import pytest
from fastapi import Request

from app.vars import ROUTE_PREFIX

TEST_ORIGIN = "https://example.com"


@pytest.fixture
def make_request():
    """Build a mock inbound proxy request for an upstream URL."""

    def _make(target=f"{TEST_ORIGIN}/page", query="", headers=None, encode=True):
        path = ROUTE_PREFIX + (quote(target, safe="") if encode else target)
        request = Mock(spec=Request)
        request.method = "GET"
        request.scope = {
            "type": "http",
            "path": unquote(path),
            "raw_path": path.encode("latin-1"),
            "query_string": query.encode("latin-1"),
        }
        request.headers = (
            headers if headers is not None else {"user-agent": "test-agent"}
        )
        request.is_disconnected = AsyncMock(return_value=False)
        return request

    return _make


@pytest.fixture
def upstream_response():
    """Create a real httpx Response as the upstream would return it."""

    def _create(status_code=200, headers=None, content=b""):
        return httpx.Response(status_code, headers=headers or [], content=content)

    return _create
