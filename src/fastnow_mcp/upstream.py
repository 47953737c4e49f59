"""Upstream HTTP client.

Issues resolved ``OutboundCall`` objects against the backend that owns
the business endpoints and normalizes every failure into
``UpstreamError``. Tool calls are sent once: writes are not idempotent,
so nothing here retries.
"""

from typing import Any, Optional, Protocol

import httpx

from shared.logging import get_logger
from shared.models import DataResource, OutboundCall, TokenGrant
from fastnow_mcp.errors import UpstreamError
from fastnow_mcp.resolver import EndpointResolver

logger = get_logger(__name__)


def _decode(response: httpx.Response) -> tuple[bool, Any]:
    """Return (decoded, payload); an empty body decodes to {}."""
    if not response.content:
        return True, {}
    try:
        return True, response.json()
    except ValueError:
        return False, response.text


class UpstreamClient:
    """Thin async wrapper over one shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, call: OutboundCall) -> Any:
        """
        Send one request and return the decoded JSON payload.

        Raises:
            UpstreamError: non-2xx status, timeout, transport failure, or a
                success response whose body is not JSON
        """
        logger.info("Proxying to upstream", method=call.method.value, url=call.url)

        try:
            response = await self._client.request(
                call.method.value,
                call.url,
                params=call.params or None,
                json=call.body,
                headers=call.headers,
            )
        except httpx.TimeoutException as e:
            logger.error("Upstream timed out", method=call.method.value, url=call.url)
            raise UpstreamError("Upstream request timed out", timed_out=True) from e
        except httpx.HTTPError as e:
            logger.error("Upstream request failed", url=call.url, error=str(e))
            raise UpstreamError(f"Upstream request failed: {e}") from e

        decoded, payload = _decode(response)

        if not response.is_success:
            logger.warning(
                "Upstream returned an error",
                url=call.url,
                status=response.status_code,
            )
            raise UpstreamError(
                f"Upstream function error (HTTP {response.status_code})",
                status=response.status_code,
                payload=payload if response.content else None,
            )

        if not decoded:
            raise UpstreamError(
                "Upstream returned a non-JSON response",
                status=response.status_code,
                payload=payload,
            )
        return payload

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DataSource(Protocol):
    """Computes the payload of a data resource for one user."""

    async def fetch(self, resource: DataResource, grant: TokenGrant, token: str) -> Any:
        ...


class UpstreamDataSource:
    """Data resources computed by the upstream endpoint each one names."""

    def __init__(self, resolver: EndpointResolver, client: UpstreamClient) -> None:
        self.resolver = resolver
        self.client = client

    async def fetch(self, resource: DataResource, grant: TokenGrant, token: str) -> Any:
        logger.debug("Fetching data resource", uri=resource.uri, user=grant.user_id)
        return await self.client.send(self.resolver.resolve_resource(resource, token))
