import httpx
import pytest

from app.web_proxy.errors import UpstreamFetchError
from app.web_proxy.upstream import (
    build_http_client,
    fetch_upstream,
    lookup_app_version,
    request_has_body,
)

ORIGIN = "http://proxy.local"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def text_response(status: int, body: bytes = b"", headers=None) -> httpx.Response:
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


class TestLookupAppVersion:
    @pytest.mark.asyncio
    async def test_reads_and_strips_version(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return text_response(200, b" 1.4.2\n")

        async with mock_client(handler) as client:
            assert await lookup_app_version(client, ORIGIN) == "1.4.2"
        assert seen == ["http://proxy.local/VERSION"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, body", [(404, b"not found"), (500, b"1.0"), (200, b"  ")])
    async def test_unusable_answer_falls_back(self, status, body):
        async with mock_client(lambda request: text_response(status, body)) as client:
            assert await lookup_app_version(client, ORIGIN) == "0.0.0"

    @pytest.mark.asyncio
    async def test_unreachable_falls_back(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            assert await lookup_app_version(client, ORIGIN) == "0.0.0"


class TestFetchUpstream:
    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        def handler(request):
            if request.url.path == "/old":
                return text_response(302, headers={"location": "/new"})
            return text_response(200, b"moved here")

        async with mock_client(handler) as client:
            request, response = await fetch_upstream(
                client, "https://example.com/old", "GET", httpx.Headers()
            )
            body = await response.aread()
            await response.aclose()

        assert str(request.url) == "https://example.com/old"
        assert str(response.url) == "https://example.com/new"
        assert response.status_code == 200
        assert body == b"moved here"

    @pytest.mark.asyncio
    async def test_response_is_not_preloaded(self):
        async with mock_client(lambda request: text_response(200, b"abc")) as client:
            _, response = await fetch_upstream(
                client, "https://example.com/", "GET", httpx.Headers()
            )
            chunks = [chunk async for chunk in response.aiter_raw()]
            await response.aclose()

        assert b"".join(chunks) == b"abc"

    @pytest.mark.asyncio
    async def test_method_headers_and_body_forwarded(self):
        captured = {}

        async def handler(request):
            captured["method"] = request.method
            captured["headers"] = request.headers
            captured["body"] = request.content
            return text_response(201)

        async def body():
            yield b"name="
            yield b"value"

        headers = httpx.Headers([("x-trace", "a"), ("x-trace", "b")])
        async with mock_client(handler) as client:
            _, response = await fetch_upstream(
                client, "https://example.com/form", "POST", headers, body()
            )
            await response.aclose()

        assert response.status_code == 201
        assert captured["method"] == "POST"
        assert captured["headers"].get_list("x-trace") == ["a", "b"]
        assert captured["body"] == b"name=value"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(UpstreamFetchError) as exc_info:
                await fetch_upstream(
                    client, "https://unreachable.invalid/", "GET", httpx.Headers()
                )

        assert str(exc_info.value) == "ConnectError: connection refused"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_redirect_loop(self):
        def handler(request):
            return text_response(302, headers={"location": request.url.path})

        async with mock_client(handler) as client:
            client.max_redirects = 3
            with pytest.raises(UpstreamFetchError) as exc_info:
                await fetch_upstream(
                    client, "https://example.com/loop", "GET", httpx.Headers()
                )

        assert str(exc_info.value).startswith("TooManyRedirects")


class TestRequestHasBody:
    @pytest.mark.parametrize(
        "headers, expected",
        [
            ({}, False),
            ({"content-length": "0"}, False),
            ({"content-length": "12"}, True),
            ({"content-length": "nope"}, False),
            ({"transfer-encoding": "chunked"}, True),
        ],
    )
    def test_detection(self, headers, expected):
        assert request_has_body(httpx.Headers(headers)) is expected


@pytest.mark.asyncio
async def test_build_http_client_uses_configuration():
    client = build_http_client()
    try:
        assert client.max_redirects == 20
        assert client.timeout.read == 60
    finally:
        await client.aclose()
