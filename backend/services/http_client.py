# services/http_client.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - OUTBOUND HTTP BASE
# ============================================================================
# One httpx.AsyncClient per call, with the integration's own timeout.
# Transport errors, timeouts and non-2xx responses surface as
# IntegrationError so step boundaries catch a single type.
# ============================================================================

from typing import Any, Optional

import httpx
import structlog

from pipeline.errors import IntegrationError


class IntegrationClient:
    """Base for the downstream integration clients"""

    name: str = "integration"

    def __init__(
        self,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._logger = structlog.get_logger(component=f"{self.name}_client")

    def _client(self, **kwargs) -> httpx.AsyncClient:
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(timeout=self.timeout_seconds, **kwargs)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.Response:
        try:
            async with self._client(auth=auth) as client:
                response = await client.request(method, url, headers=headers, json=json, params=params)
        except httpx.TimeoutException as e:
            self._logger.error("integration_timeout", url=url, timeout=self.timeout_seconds)
            raise IntegrationError(f"{self.name} request timed out", integration=self.name) from e
        except httpx.HTTPError as e:
            self._logger.error("integration_transport_error", url=url, error=str(e))
            raise IntegrationError(f"{self.name} request failed: {e}", integration=self.name) from e

        if response.status_code >= 400:
            self._logger.error(
                "integration_http_error",
                url=url,
                status=response.status_code,
                body=response.text[:200],
            )
            raise IntegrationError(
                f"{self.name} returned HTTP {response.status_code}",
                integration=self.name,
                status=response.status_code,
                body=response.text,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
