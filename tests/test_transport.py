"""
Tests for the httpx transport and the Pillow image preprocessor.
"""

import asyncio
import io

import httpx
import pytest
from PIL import Image

from scoresnap_guard.core.errors import ErrorKind, InferenceError
from scoresnap_guard.sdk.imaging import PillowImagePreprocessor, detect_media_type
from scoresnap_guard.sdk.transport import HttpxTransport, InferenceRequest

URL = "https://api.anthropic.com/v1/messages"


def make_request():
    return InferenceRequest(
        url=URL,
        body=b'{"model": "test"}',
        headers={"x-api-key": "sk-ant-api03-secret", "content-type": "application/json"}
    )


def send(handler):
    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with HttpxTransport(client) as transport:
            response = await transport.send(make_request(), timeout=5.0)
        await client.aclose()
        return response
    return asyncio.run(run())


class TestHttpxTransport:
    """Test request forwarding and error mapping."""

    def test_forwards_request(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-api-key"]
            seen["body"] = request.content
            return httpx.Response(200, content=b'{"ok": true}')

        response = send(handler)

        assert response.status_code == 200
        assert response.body == b'{"ok": true}'
        assert seen == {
            "method": "POST",
            "url": URL,
            "key": "sk-ant-api03-secret",
            "body": b'{"model": "test"}'
        }

    def test_error_status_is_returned_not_raised(self):
        response = send(lambda request: httpx.Response(503, content=b"overloaded"))
        assert response.status_code == 503
        assert response.body == b"overloaded"

    def test_connect_error_maps_to_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(InferenceError) as excinfo:
            send(handler)
        assert excinfo.value.kind == ErrorKind.NETWORK_FAILURE
        assert excinfo.value.retryable is True

    def test_timeout_maps_to_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(InferenceError) as excinfo:
            send(handler)
        assert excinfo.value.kind == ErrorKind.TIMEOUT
        assert excinfo.value.retryable is False

    def test_request_repr_hides_headers(self):
        assert "sk-ant-api03-secret" not in repr(make_request())

    def test_injected_client_is_not_closed(self):
        async def run():
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200))
            )
            transport = HttpxTransport(client)
            await transport.aclose()
            closed = client.is_closed
            await client.aclose()
            return closed

        assert asyncio.run(run()) is False


def encode(size, fmt="JPEG", mode="RGB"):
    output = io.BytesIO()
    Image.new(mode, size, color=0).save(output, fmt)
    return output.getvalue()


class TestImagePreprocessing:
    """Test resizing and media type detection."""

    def setup_method(self):
        self.preprocessor = PillowImagePreprocessor()

    def test_small_image_is_untouched(self):
        data = encode((640, 480))
        assert self.preprocessor.resize(data, 1024) is data

    def test_large_image_keeps_aspect_ratio(self):
        data = encode((4000, 2000))

        resized = self.preprocessor.resize(data, 1024)

        with Image.open(io.BytesIO(resized)) as img:
            assert img.size == (1024, 512)
            assert img.format == "JPEG"

    def test_png_stays_png(self):
        data = encode((1500, 3000), fmt="PNG", mode="RGBA")

        resized = self.preprocessor.resize(data, 1024)

        assert detect_media_type(resized) == "image/png"
        with Image.open(io.BytesIO(resized)) as img:
            assert max(img.size) == 1024

    def test_undecodable_image(self):
        with pytest.raises(InferenceError) as excinfo:
            self.preprocessor.resize(b"definitely not an image", 1024)
        assert excinfo.value.kind == ErrorKind.IMAGE_PROCESSING_FAILED

    def test_empty_image(self):
        with pytest.raises(InferenceError) as excinfo:
            self.preprocessor.resize(b"", 1024)
        assert excinfo.value.kind == ErrorKind.IMAGE_PROCESSING_FAILED

    @pytest.mark.parametrize("header, expected", [
        (b"\x89PNG\r\n\x1a\n", "image/png"),
        (b"GIF89a", "image/gif"),
        (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        (b"\xff\xd8\xff\xe0", "image/jpeg"),
        (b"", "image/jpeg"),
    ])
    def test_detect_media_type(self, header, expected):
        assert detect_media_type(header) == expected
