"""
HTTP Persistence API - Talks to a REST backend through httpx.

Endpoints:
- PUT   /contexts/{context_id}             {"context": "<json>"}
- PATCH /execution-nodes/{id}              {"state": "<json>", "complete": bool}
- POST  /executions/{execution_id}/steps   {"workflow_node_id": "..."}

Calls are fire-and-forget from the execution core's point of view: HTTP
failures are logged here and never raised.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpPersistenceAPI:
    """PersistenceAPI implementation over an httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._api_key = api_key

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def set_context(self, context_id: str, context: str) -> None:
        await self._request("PUT", f"/contexts/{context_id}", {"context": context})

    async def update_execution_node(
        self,
        id: str,
        state: str,
        complete: bool | None = None,
    ) -> None:
        payload: dict[str, Any] = {"state": state}
        if complete is not None:
            payload["complete"] = complete
        await self._request("PATCH", f"/execution-nodes/{id}", payload)

    async def trigger_workflow_execution_step(
        self,
        execution_id: str,
        workflow_node_id: str,
    ) -> None:
        await self._request(
            "POST",
            f"/executions/{execution_id}/steps",
            {"workflow_node_id": workflow_node_id},
        )

    async def _request(self, method: str, path: str, payload: dict[str, Any]) -> None:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{method} {path} failed (HTTP {e.response.status_code}): {e.response.text}"
            )
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpPersistenceAPI":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
