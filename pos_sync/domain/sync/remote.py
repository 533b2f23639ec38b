"""HTTP client for the remote POS API.

Every entity kind lives under its own collection path (`/api/products`,
`/api/customers`, ...). Create and update return the server's copy of the
entity, list returns the whole collection for a company. Transport errors
and non-2xx responses surface as `RemoteError`.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from pos_sync.core.errors import RemoteError, RemoteTimeoutError
from pos_sync.domain.entities.schemas import EntityKind

logger = logging.getLogger(__name__)

COLLECTION_PATHS = {
    EntityKind.PRODUCT: "/api/products",
    EntityKind.CUSTOMER: "/api/customers",
    EntityKind.EMPLOYEE: "/api/employees",
    EntityKind.TRANSACTION: "/api/transactions",
}


class RemoteApi:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            body = response.text[:500]
            msg = f"{method} {path} -> http {response.status_code}"
            if body:
                msg = f"{msg}: {body}"
            raise RemoteError(msg, status_code=response.status_code)
        return response

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/health")
        except RemoteError as e:
            logger.debug("health check failed: %s", e)
            return False
        return True

    async def create(self, kind: EntityKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in payload.items() if k != "id"}
        # the temporary id lets the server drop a create it already applied
        body["client_ref"] = payload.get("id")
        response = await self._request("POST", COLLECTION_PATHS[kind], json=body)
        return response.json()

    async def update(self, kind: EntityKind, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("PATCH", f"{COLLECTION_PATHS[kind]}/{entity_id}", json=patch)
        return response.json()

    async def delete(self, kind: EntityKind, entity_id: str) -> bool:
        try:
            await self._request("DELETE", f"{COLLECTION_PATHS[kind]}/{entity_id}")
        except RemoteError as e:
            # already gone on the server
            if e.status_code == 404:
                return True
            raise
        return True

    async def list(self, kind: EntityKind, scope_id: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", COLLECTION_PATHS[kind], params={"company_id": scope_id})
        return response.json()
