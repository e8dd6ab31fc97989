"""
Heroku Platform API client for the staging deployer.

This module wraps the handful of Platform API endpoints a staging deploy
needs and maps HTTP failures onto the deployer's error taxonomy: network
errors, 429 and 5xx are transient, 4xx on a source blob is an invalid artifact.
"""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx
import structlog

from .config import HerokuConfig
from .exceptions import (
    ConfigurationError,
    InvalidArtifactError,
    PlatformAPIError,
    PlatformUnavailableError,
)
from .models import BuildSource

logger = structlog.get_logger(__name__)

HEROKU_ACCEPT = "application/vnd.heroku+json; version=3"
HEROKU_STATUS_PAGE = "https://status.heroku.com/"
UPLOAD_CHUNK_SIZE = 1024 * 1024


class HerokuClient:
    """
    Async Heroku Platform API client.

    Use as an async context manager, or call ``aclose`` when done.
    """

    def __init__(
        self,
        config: HerokuConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the platform client.

        Args:
            config: Platform API configuration
            transport: Optional transport, used to stub the API in tests
        """
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.api_url,
            headers={
                "Accept": HEROKU_ACCEPT,
                "Authorization": f"Bearer {config.api_token}",
            },
            timeout=config.http_timeout,
            transport=transport,
        )
        # Presigned upload URLs must not receive the API token
        self._upload_client = httpx.AsyncClient(
            timeout=config.http_timeout, transport=transport
        )

    async def __aenter__(self) -> "HerokuClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._upload_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        artifact: bool = False,
    ) -> Any:
        """
        Send a request and decode the JSON response.

        Args:
            method: HTTP method
            path: API path
            json: Optional request body
            artifact: Whether a 4xx means the source blob was rejected
        """
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise PlatformUnavailableError(
                f"{method} {path} failed: {e}", context={"path": path}
            ) from e

        _raise_for_status(response, method, path, artifact)
        try:
            return response.json()
        except ValueError as e:
            # Maintenance pages and proxies answer 2xx with HTML
            raise PlatformUnavailableError(
                f"{method} {path} returned an undecodable body: "
                f"{response.text[:200]!r}",
                status_code=response.status_code,
                context={"path": path},
            ) from e

    async def create_source(self) -> BuildSource:
        """
        Create a build source to upload a tarball to.

        Returns:
            Upload and download URLs of the new source blob
        """
        try:
            data = await self._request("POST", "/sources")
        except PlatformUnavailableError as e:
            if e.status_code == 503:
                logger.error(
                    "Heroku may be down, check its status page",
                    status_page=HEROKU_STATUS_PAGE,
                )
            raise

        source_blob = data["source_blob"]
        build_source = BuildSource(
            upload_url=source_blob["put_url"], download_url=source_blob["get_url"]
        )
        logger.info("Build source created")
        return build_source

    async def upload_source(self, build_source: BuildSource, path: str | Path) -> int:
        """
        Upload a tarball to a build source.

        Returns:
            Number of bytes uploaded
        """
        artifact = Path(path)
        try:
            size = artifact.stat().st_size
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read artifact {artifact}: {e}",
                context={"artifact_path": str(artifact)},
            ) from e

        try:
            # The presigned URL is signed without a content type and rejects
            # chunked bodies
            response = await self._upload_client.put(
                build_source.upload_url,
                content=_read_chunks(artifact),
                headers={"Content-Type": "", "Content-Length": str(size)},
            )
        except httpx.HTTPError as e:
            raise PlatformUnavailableError(f"Upload failed: {e}") from e

        _raise_for_status(response, "PUT", "<upload_url>", artifact=True)
        logger.info("Build source uploaded", path=str(path), size_bytes=size)
        return size

    async def get_app(self, app_name: str) -> dict[str, Any] | None:
        """Get an app, or None if it does not exist."""
        try:
            app: dict[str, Any] = await self._request("GET", f"/apps/{app_name}")
            return app
        except PlatformAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def create_app_setup(
        self,
        app_name: str,
        source_blob_url: str,
        env: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create an app and build it from a source blob in one call."""
        app: dict[str, Any] = {"name": app_name}
        if self.config.team:
            app["organization"] = self.config.team
        if self.config.region:
            app["region"] = self.config.region
        if self.config.stack:
            app["stack"] = self.config.stack

        body: dict[str, Any] = {"app": app, "source_blob": {"url": source_blob_url}}
        if env:
            body["overrides"] = {"env": env}

        setup: dict[str, Any] = await self._request(
            "POST", "/app-setups", json=body, artifact=True
        )
        logger.info("App setup created", app=app_name, app_setup_id=setup.get("id"))
        return setup

    async def get_app_setup(self, setup_id: str) -> dict[str, Any]:
        setup: dict[str, Any] = await self._request("GET", f"/app-setups/{setup_id}")
        return setup

    async def create_build(self, app_name: str, source_blob_url: str) -> dict[str, Any]:
        """Start a build of an existing app from a source blob."""
        build: dict[str, Any] = await self._request(
            "POST",
            f"/apps/{app_name}/builds",
            json={"source_blob": {"url": source_blob_url}},
            artifact=True,
        )
        logger.info("Build created", app=app_name, build_id=build.get("id"))
        return build

    async def get_build(self, app_name: str, build_id: str) -> dict[str, Any]:
        build: dict[str, Any] = await self._request(
            "GET", f"/apps/{app_name}/builds/{build_id}"
        )
        return build

    async def get_release(self, app_name: str, release_id: str) -> dict[str, Any]:
        release: dict[str, Any] = await self._request(
            "GET", f"/apps/{app_name}/releases/{release_id}"
        )
        return release

    async def get_dynos(self, app_name: str) -> list[dict[str, Any]]:
        dynos: list[dict[str, Any]] = await self._request(
            "GET", f"/apps/{app_name}/dynos"
        )
        return dynos


async def _read_chunks(path: Path) -> AsyncIterator[bytes]:
    with path.open("rb") as f:
        while True:
            chunk = f.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def _raise_for_status(
    response: httpx.Response, method: str, path: str, artifact: bool
) -> None:
    """Translate an error response into the deployer's exceptions."""
    status = response.status_code
    if status < 400:
        return

    message = f"{method} {path} returned {status}: {_error_message(response)}"
    context = {"path": path, "status_code": status}

    if status >= 500 or status == 429:
        raise PlatformUnavailableError(message, status_code=status, context=context)
    if artifact and status in (400, 404, 410, 422):
        raise InvalidArtifactError(message, status_code=status, context=context)
    raise PlatformAPIError(message, status_code=status, context=context)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("id") or data)
    return str(data)
