"""
Fire-and-forget deploy events for the Hydro telemetry endpoint.

Events are posted as a signed JSON batch: the body is signed with
HMAC-SHA256 using the shared secret and sent as ``Authorization: Hydro <hex>``.
"""

import hashlib
import hmac
import json
from typing import Any

import httpx
import structlog

from .config import HydroConfig

logger = structlog.get_logger(__name__)

HYDRO_CLUSTER = "potomac"


class HydroClient:
    """Sends deploy events; never raises."""

    def __init__(
        self,
        config: HydroConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.config = config
        self.transport = transport
        self.timeout = timeout

    def sign(self, body: bytes) -> str:
        return hmac.new(
            self.config.secret.encode("utf-8"), body, hashlib.sha256
        ).hexdigest()

    def build_body(self, value: dict[str, Any]) -> bytes:
        payload = {
            "events": [
                {
                    "schema": self.config.schema_name,
                    "value": json.dumps(value, default=str),
                    "cluster": HYDRO_CLUSTER,
                }
            ]
        }
        return json.dumps(payload).encode("utf-8")

    async def publish(self, value: dict[str, Any]) -> bool:
        """
        Publish one event.

        Returns:
            True if the endpoint accepted the event
        """
        if not self.config.enabled:
            logger.debug("Hydro not configured, skipping event")
            return False

        body = self.build_body(value)
        headers = {
            "Authorization": f"Hydro {self.sign(body)}",
            "Content-Type": "application/json",
            "X-Hydro-App": self.config.app,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self.config.endpoint, content=body, headers=headers
                )
            if response.status_code >= 300:
                logger.warning(
                    "Hydro rejected event",
                    status_code=response.status_code,
                    code="REPORTING_ERROR",
                )
                return False
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to send Hydro event", error=str(e), code="REPORTING_ERROR"
            )
            return False

        logger.info("Hydro event sent", schema=self.config.schema_name)
        return True
