"""
Tests for the Heroku Platform API client.

The API is stubbed with ``httpx.MockTransport`` so the error mapping can be
checked against real responses.
"""

import json

import httpx
import pytest

from staging_deployer.config import HerokuConfig
from staging_deployer.exceptions import (
    ConfigurationError,
    InvalidArtifactError,
    PlatformAPIError,
    PlatformUnavailableError,
)
from staging_deployer.heroku_client import HEROKU_ACCEPT, HerokuClient
from staging_deployer.models import BuildSource


def make_client(handler) -> HerokuClient:
    config = HerokuConfig(api_token="secret-token", team="docs-team")
    return HerokuClient(config, transport=httpx.MockTransport(handler))


class TestHerokuClient:
    """Test the HerokuClient request and error handling."""

    @pytest.mark.asyncio
    async def test_create_source(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["accept"] = request.headers["Accept"]
            return httpx.Response(
                201,
                json={
                    "source_blob": {
                        "put_url": "https://s3.example.com/put",
                        "get_url": "https://s3.example.com/get",
                    }
                },
            )

        async with make_client(handler) as client:
            source = await client.create_source()

        assert source == BuildSource(
            upload_url="https://s3.example.com/put",
            download_url="https://s3.example.com/get",
        )
        assert seen == {
            "method": "POST",
            "path": "/sources",
            "auth": "Bearer secret-token",
            "accept": HEROKU_ACCEPT,
        }

    @pytest.mark.asyncio
    async def test_create_source_when_heroku_is_down(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"id": "unavailable"})

        async with make_client(handler) as client:
            with pytest.raises(PlatformUnavailableError) as exc_info:
                await client.create_source()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_upload_source_sends_raw_bytes_without_token(self, tmp_path):
        tarball = tmp_path / "app.tar.gz"
        tarball.write_bytes(b"tarball-bytes")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["content"] = request.content
            seen["authorization"] = request.headers.get("Authorization")
            seen["content_type"] = request.headers.get("Content-Type")
            seen["content_length"] = request.headers.get("Content-Length")
            seen["headers"] = request.headers
            return httpx.Response(200)

        source = BuildSource(
            upload_url="https://s3.example.com/put", download_url="https://get"
        )
        async with make_client(handler) as client:
            size = await client.upload_source(source, tarball)

        assert size == len(b"tarball-bytes")
        assert seen["method"] == "PUT"
        assert seen["content"] == b"tarball-bytes"
        assert seen["authorization"] is None
        assert seen["content_type"] == ""
        assert seen["content_length"] == str(len(b"tarball-bytes"))
        assert "Transfer-Encoding" not in seen["headers"]

    @pytest.mark.asyncio
    async def test_upload_source_missing_artifact(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        source = BuildSource(upload_url="https://put", download_url="https://get")
        async with make_client(handler) as client:
            with pytest.raises(ConfigurationError, match="Cannot read artifact"):
                await client.upload_source(source, tmp_path / "missing.tar.gz")

    @pytest.mark.asyncio
    async def test_html_success_page_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                text="<html><body>Down for maintenance</body></html>",
                headers={"Content-Type": "text/html"},
            )

        async with make_client(handler) as client:
            with pytest.raises(PlatformUnavailableError, match="undecodable body"):
                await client.get_build("gha-docs-1-x", "build-1")

    @pytest.mark.asyncio
    async def test_get_app_returns_none_when_missing(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"id": "not_found", "message": "nope"})

        async with make_client(handler) as client:
            assert await client.get_app("gha-docs-1-x") is None

    @pytest.mark.asyncio
    async def test_get_app_raises_on_forbidden(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"id": "forbidden", "message": "no"})

        async with make_client(handler) as client:
            with pytest.raises(PlatformAPIError) as exc_info:
                await client.get_app("gha-docs-1-x")

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_create_build_rejected_artifact(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422, json={"id": "invalid_params", "message": "bad source blob"}
            )

        async with make_client(handler) as client:
            with pytest.raises(InvalidArtifactError, match="bad source blob"):
                await client.create_build("gha-docs-1-x", "https://blob")

    @pytest.mark.asyncio
    async def test_create_build_server_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        async with make_client(handler) as client:
            with pytest.raises(PlatformUnavailableError):
                await client.create_build("gha-docs-1-x", "https://blob")

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"id": "rate_limit"})

        async with make_client(handler) as client:
            with pytest.raises(PlatformUnavailableError):
                await client.get_build("gha-docs-1-x", "build-1")

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(PlatformUnavailableError, match="connection refused"):
                await client.get_release("gha-docs-1-x", "release-1")

    @pytest.mark.asyncio
    async def test_create_app_setup_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "setup-1", "status": "pending"})

        async with make_client(handler) as client:
            setup = await client.create_app_setup(
                "gha-docs-1-x", "https://blob", env={"RUN_ID": "7"}
            )

        assert setup["id"] == "setup-1"
        assert seen["path"] == "/app-setups"
        assert seen["body"] == {
            "app": {
                "name": "gha-docs-1-x",
                "organization": "docs-team",
                "region": "us",
            },
            "source_blob": {"url": "https://blob"},
            "overrides": {"env": {"RUN_ID": "7"}},
        }

    @pytest.mark.asyncio
    async def test_get_dynos(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/apps/gha-docs-1-x/dynos"
            return httpx.Response(200, json=[{"type": "web", "state": "up"}])

        async with make_client(handler) as client:
            dynos = await client.get_dynos("gha-docs-1-x")

        assert dynos == [{"type": "web", "state": "up"}]
