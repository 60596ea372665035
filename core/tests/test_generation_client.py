"""Tests for the HTTP generation client."""

import json

import httpx
import pytest

from nodebanana.errors import PersistenceFailureError, RequestFailureError
from nodebanana.generation.client import TIMEOUT_MESSAGE, HttpGenerationClient, save_payload


def make_client(handler):
    return HttpGenerationClient("http://engine.test/", timeout=5.0, transport=httpx.MockTransport(handler))


class TestGenerate:
    @pytest.mark.asyncio
    async def test_synchronous_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "output": "https://cdn.test/x.png"})

        async with make_client(handler) as client:
            response = await client.generate({"model": "m", "prompt": "p", "images": []})

        assert seen == {"path": "/api/generate", "body": {"model": "m", "prompt": "p", "images": []}}
        assert response.success is True
        assert response.primary_output == "https://cdn.test/x.png"
        assert response.operation_id is None

    @pytest.mark.asyncio
    async def test_job_handle(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "operationId": "op-1"})

        async with make_client(handler) as client:
            response = await client.generate({})

        assert response.operation_id == "op-1"

    @pytest.mark.asyncio
    async def test_error_body_is_preferred(self):
        def handler(request):
            return httpx.Response(500, json={"success": False, "error": "Model overloaded"})

        async with make_client(handler) as client:
            with pytest.raises(RequestFailureError) as exc_info:
                await client.generate({})

        assert exc_info.value.message == "Model overloaded"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_non_json_error_is_summarised(self):
        def handler(request):
            return httpx.Response(502, text="upstream down " + "x" * 500)

        async with make_client(handler) as client:
            with pytest.raises(RequestFailureError) as exc_info:
                await client.generate({})

        message = exc_info.value.message
        assert message.startswith("HTTP 502: Bad Gateway - upstream down")
        assert len(message) == len("HTTP 502: Bad Gateway - ") + 200

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RequestFailureError, match="Request timed out"):
                await client.generate({})
        assert TIMEOUT_MESSAGE.startswith("Request timed out")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RequestFailureError, match="Network error"):
                await client.generate({})


class TestOperations:
    @pytest.mark.asyncio
    async def test_status_query(self):
        def handler(request):
            assert request.url.path == "/api/operations"
            assert request.url.params["id"] == "op-1"
            return httpx.Response(200, json={"done": True, "medias": [{"url": "https://cdn.test/v.mp4"}]})

        async with make_client(handler) as client:
            status = await client.get_operation("op-1")

        assert status.done is True
        assert [a.url for a in status.artifacts()] == ["https://cdn.test/v.mp4"]

    @pytest.mark.asyncio
    async def test_non_ok_status_is_none(self):
        def handler(request):
            return httpx.Response(503, text="busy")

        async with make_client(handler) as client:
            assert await client.get_operation("op-1") is None


class TestSaveGeneration:
    def test_payload_by_url_or_inline_image(self):
        assert save_payload("/gen", "https://cdn.test/x.png", "cat") == {
            "directoryPath": "/gen",
            "prompt": "cat",
            "url": "https://cdn.test/x.png",
        }
        assert save_payload("/gen", "data:image/png;base64,AAAA", "cat")["image"] == "data:image/png;base64,AAAA"

    @pytest.mark.asyncio
    async def test_saved(self):
        def handler(request):
            assert request.url.path == "/api/save-generation"
            return httpx.Response(200, json={"success": True, "filePath": "/gen/a.png", "filename": "a.png"})

        async with make_client(handler) as client:
            result = await client.save_generation("/gen", "https://cdn.test/x.png", "cat")

        assert result.file_path == "/gen/a.png"

    @pytest.mark.asyncio
    async def test_failure_is_a_persistence_error(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "error": "Directory does not exist"})

        async with make_client(handler) as client:
            with pytest.raises(PersistenceFailureError, match="Directory does not exist"):
                await client.save_generation("/missing", "https://cdn.test/x.png", "cat")

    @pytest.mark.asyncio
    async def test_network_failure_is_a_persistence_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(PersistenceFailureError):
                await client.save_generation("/gen", "https://cdn.test/x.png", "cat")


class TestModelsAndMedia:
    @pytest.mark.asyncio
    async def test_list_models(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "models": [{"name": "vertexai/imagen-3.0"}]})

        async with make_client(handler) as client:
            assert await client.list_models() == [{"name": "vertexai/imagen-3.0"}]

    @pytest.mark.asyncio
    async def test_unreadable_model_list(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        async with make_client(handler) as client:
            with pytest.raises(RequestFailureError, match="Invalid response from model catalog"):
                await client.list_models()

    @pytest.mark.asyncio
    async def test_fetch_remote_media(self):
        def handler(request):
            return httpx.Response(200, content=b"\x00\x01", headers={"content-type": "video/mp4"})

        async with make_client(handler) as client:
            assert await client.fetch_media("https://cdn.test/v.mp4") == ("video/mp4", b"\x00\x01")

    @pytest.mark.asyncio
    async def test_data_urls_are_decoded_locally(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with make_client(handler) as client:
            assert await client.fetch_media("data:image/png;base64,aGk=") == ("image/png", b"hi")
