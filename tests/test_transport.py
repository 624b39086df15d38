"""Tests for the httpx-based STS transport."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from aws_auth_payload.errors import TransportError, VerificationTimeoutError
from aws_auth_payload.transport import HttpxTransport, TransportResponse


class TestTransportResponse:
    """Tests for TransportResponse."""

    @pytest.mark.parametrize("status,ok", [(200, True), (204, True), (302, False), (403, False), (500, False)])
    def test_ok(self, status, ok):
        assert TransportResponse(status_code=status).ok is ok

    def test_content_type_case_insensitive(self):
        response = TransportResponse(200, b"", {"content-type": "text/xml"})

        assert response.content_type == "text/xml"
        assert TransportResponse(200).content_type == ""


class TestHttpxTransport:
    """Tests for HttpxTransport."""

    @pytest.mark.asyncio
    async def test_sends_request_verbatim(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = dict(request.headers)
            seen["body"] = request.content
            return httpx.Response(200, content=b"<ok/>", headers={"Content-Type": "text/xml"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HttpxTransport(client)
            response = await transport.send(
                "POST",
                "https://sts.amazonaws.com/",
                {"Host": "sts.amazonaws.com", "X-Amz-Date": "20240115T120000Z"},
                b"Action=GetCallerIdentity&Version=2011-06-15",
                5.0,
            )

        assert response.status_code == 200
        assert response.body == b"<ok/>"
        assert response.content_type == "text/xml"
        assert seen["method"] == "POST"
        assert seen["url"] == "https://sts.amazonaws.com/"
        assert seen["headers"]["x-amz-date"] == "20240115T120000Z"
        assert seen["body"] == b"Action=GetCallerIdentity&Version=2011-06-15"

    @pytest.mark.asyncio
    async def test_error_status_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, content=b"<ErrorResponse/>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await HttpxTransport(client).send("GET", "https://sts.amazonaws.com/", {}, b"", 5.0)

        assert response.status_code == 403
        assert not response.ok

    @pytest.mark.asyncio
    async def test_timeout_mapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(VerificationTimeoutError) as exc_info:
                await HttpxTransport(client).send("GET", "https://sts.amazonaws.com/", {}, b"", 2.5)

        assert exc_info.value.timeout == 2.5
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_network_error_mapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="connection refused"):
                await HttpxTransport(client).send("GET", "https://sts.amazonaws.com/", {}, b"", 2.5)

    @pytest.mark.asyncio
    async def test_short_lived_client_without_redirects(self):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.content = b"<ok/>"
        mock_response.headers = {"content-type": "text/xml"}

        with patch("aws_auth_payload.transport.httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.request.return_value = mock_response
            mock_client.return_value.__aenter__.return_value = mock_instance

            response = await HttpxTransport().send("GET", "https://sts.amazonaws.com/", {}, b"", 5.0)

            mock_client.assert_called_once_with(follow_redirects=False)
            mock_instance.request.assert_awaited_once()

        assert response.status_code == 200
        assert response.body == b"<ok/>"
