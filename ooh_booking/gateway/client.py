"""Workflow gateway HTTP client.

Every booking step is a JSON POST to one webhook URL; the ``workflowtype``
field routes it inside the automation service.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from ..constants.timing import Timeouts
from ..constants.workflows import RequestType, WorkflowType
from ..core.config.settings import BookingSettings, get_settings
from ..core.exceptions import ConfigurationError, GatewayError, GatewayTimeoutError
from .normalizer import parse_body

logger = logging.getLogger(__name__)

USER_AGENT = "ooh-booking/1.0 (+aiohttp)"


class WorkflowGatewayClient:
    """
    Async client for the workflow automation webhook.

    Use as an async context manager so the underlying aiohttp session is
    closed::

        async with WorkflowGatewayClient() as gateway:
            body = await gateway.post_json({"workflowtype": "lookups"})
    """

    def __init__(self, settings: Optional[BookingSettings] = None):
        """
        Initialize gateway client.

        Args:
            settings: Booking settings (defaults to the process-wide singleton)
        """
        self.settings = settings or get_settings()
        self.url = self.settings.webhook_url
        self.timeout = self.settings.request_timeout_seconds
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._init_http_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _init_http_session(self) -> None:
        """Initialize HTTP session with auth headers and timeout."""
        if self._http_session is None:
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json, text/plain, */*",
                "User-Agent": USER_AGENT,
            }
            token = self.settings.gateway_auth_token.get_secret_value()
            if token:
                headers["Authorization"] = token
            elif self.settings.is_production():
                raise ConfigurationError("GATEWAY_AUTH_TOKEN must be set in production")

            timeout = aiohttp.ClientTimeout(
                total=self.timeout,
                connect=min(self.timeout, Timeouts.GATEWAY_CONNECT_SECONDS),
            )
            self._http_session = aiohttp.ClientSession(headers=headers, timeout=timeout)
            logger.info(f"Workflow gateway session initialized for {self.url}")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    @property
    def _session(self) -> aiohttp.ClientSession:
        """Get HTTP session, raising error if not initialized."""
        if self._http_session is None:
            raise RuntimeError("HTTP session not initialized. Call _init_http_session() first.")
        return self._http_session

    def build_request_body(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Wrap a workflow payload in the common request envelope.

        Args:
            payload: Workflow-specific fields (must include ``workflowtype``)

        Returns:
            Payload plus timestamp, source and environment
        """
        return {
            **payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "userAgent": USER_AGENT,
            "source": self.settings.request_source,
            "environment": self.settings.env,
        }

    async def post(self, payload: Dict[str, Any]) -> str:
        """
        POST a workflow payload and return the raw body text.

        Args:
            payload: Workflow-specific fields

        Returns:
            Response body text (may be empty)

        Raises:
            GatewayTimeoutError: If no answer arrived within the timeout
            GatewayError: On network failure or non-2xx status
        """
        await self._init_http_session()
        workflow_type = payload.get("workflowtype")
        body = self.build_request_body(payload)

        logger.debug(f"Posting workflow request: {workflow_type}")
        try:
            async with self._session.post(self.url, json=body) as response:
                text = await response.text()
                if response.status < 200 or response.status >= 300:
                    logger.error(f"Workflow {workflow_type} failed: HTTP {response.status}")
                    logger.debug(f"Error details: {text[:200]}...")
                    raise GatewayError(
                        f"Webhook request failed: {response.status} {response.reason or ''}".strip(),
                        status=response.status,
                        workflow_type=workflow_type,
                    )
                return text
        except asyncio.TimeoutError as e:
            logger.error(f"Workflow {workflow_type} timed out after {self.timeout}s")
            raise GatewayTimeoutError(self.timeout, workflow_type=workflow_type) from e
        except aiohttp.ClientError as e:
            logger.error(f"Workflow {workflow_type} network error: {e}")
            raise GatewayError(
                f"Network error calling workflow gateway: {e}", workflow_type=workflow_type
            ) from e

    async def post_json(self, payload: Dict[str, Any]) -> Any:
        """
        POST a workflow payload and parse the body.

        Returns:
            Parsed JSON, or None for an empty body

        Raises:
            GatewayError: On transport failure
            MalformedResponse: If the body is not JSON even after repair
        """
        text = await self.post(payload)
        return parse_body(text)

    async def ping(self) -> bool:
        """
        Check that the workflow gateway answers.

        Returns:
            True if the gateway responded with a 2xx status
        """
        try:
            await self.post({"workflowtype": WorkflowType.TEST_CONNECTION, "type": RequestType.PING})
        except GatewayError as e:
            logger.warning(f"Workflow gateway ping failed: {e}")
            return False
        logger.info("Workflow gateway ping succeeded")
        return True
