"""Tests for the HTTP digest composer."""

import uuid

import httpx
import pytest

from courier.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from courier.services.composer import HttpComposer, NullComposer

pytestmark = pytest.mark.asyncio

COMPOSER_URL = "https://composer.internal/digest"


def _composer(handler) -> HttpComposer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpComposer(COMPOSER_URL, api_key="composer-key", client=client)


class TestHttpComposer:
    """Tests for HttpComposer.compose."""

    async def test_returns_content(self):
        """A 200 with a valid body becomes DigestContent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = request.content
            return httpx.Response(200, json={"subject": "Morning", "html": "<p>Hi</p>"})

        user_id = uuid.uuid4()
        content = await _composer(handler).compose(user_id)

        assert content.subject == "Morning"
        assert content.html == "<p>Hi</p>"
        assert seen["auth"] == "Bearer composer-key"
        assert str(user_id).encode() in seen["body"]

    async def test_no_content(self):
        """204 means nothing to send today."""
        content = await _composer(lambda request: httpx.Response(204)).compose(uuid.uuid4())
        assert content is None

    async def test_unknown_user_is_permanent(self):
        with pytest.raises(PermanentDeliveryError):
            await _composer(lambda request: httpx.Response(404)).compose(uuid.uuid4())

    async def test_server_error_is_transient(self):
        with pytest.raises(TransientDeliveryError):
            await _composer(lambda request: httpx.Response(503)).compose(uuid.uuid4())

    async def test_throttled_is_transient(self):
        with pytest.raises(TransientDeliveryError):
            await _composer(lambda request: httpx.Response(429)).compose(uuid.uuid4())

    async def test_bad_request_is_permanent(self):
        with pytest.raises(PermanentDeliveryError):
            await _composer(lambda request: httpx.Response(400, text="bad user id")).compose(uuid.uuid4())

    async def test_malformed_body_is_permanent(self):
        """A 200 that is not a digest is a permanent failure."""
        with pytest.raises(PermanentDeliveryError):
            await _composer(lambda request: httpx.Response(200, json={"subject": ""})).compose(uuid.uuid4())

    async def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientDeliveryError):
            await _composer(handler).compose(uuid.uuid4())


async def test_null_composer_has_nothing():
    assert await NullComposer().compose(uuid.uuid4()) is None
