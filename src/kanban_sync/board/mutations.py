"""Mutation calls against the authoritative board store.

Every call is request/response with success or failure only; there is no
partial-success contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from loguru import logger

from ..constants import DEFAULT_HTTP_TIMEOUT
from .model import TaskStatus


class MutationError(Exception):
    """A mutation call was rejected or never reached the store."""

    def __init__(self, operation: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message
        self.status_code = status_code


class MutationClient(ABC):
    @abstractmethod
    async def move_task(self, task_id: str, target_status: TaskStatus) -> None:
        raise NotImplementedError

    @abstractmethod
    async def reorder_task(self, task_id: str, status: TaskStatus, new_index: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def add_dependency(self, task_id: str, depends_on_id: str) -> Optional[str]:
        """Create the edge; returns the store's edge id when it reports one."""
        raise NotImplementedError

    @abstractmethod
    async def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        raise NotImplementedError


class HttpMutationClient(MutationClient):
    """Issue mutations through the board's HTTP API.

    Usage::

        async with HttpMutationClient("http://localhost:3000", "proj-1") as client:
            await client.move_task("task-abc", TaskStatus.READY)
    """

    def __init__(
        self,
        base_url: str,
        project_id: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.project_id = project_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def __aenter__(self) -> "HttpMutationClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("{} request error: {}", operation, exc)
            raise MutationError(operation, f"{exc.__class__.__name__}: {exc}") from exc

        data: dict[str, Any] = {}
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                data = body

        if resp.is_error:
            message = str(data.get("error") or resp.reason_phrase or "request failed")
            logger.warning("{} rejected ({}): {}", operation, resp.status_code, message)
            raise MutationError(operation, message, status_code=resp.status_code)
        return data

    async def move_task(self, task_id: str, target_status: TaskStatus) -> None:
        await self._request(
            "move_task", "PATCH", f"/api/tasks/{task_id}",
            json={"status": TaskStatus.coerce(target_status).value},
        )

    async def reorder_task(self, task_id: str, status: TaskStatus, new_index: int) -> None:
        await self._request(
            "reorder_task", "POST", "/api/tasks/reorder",
            json={
                "project_id": self.project_id,
                "status": TaskStatus.coerce(status).value,
                "task_id": task_id,
                "new_index": new_index,
            },
        )

    async def add_dependency(self, task_id: str, depends_on_id: str) -> Optional[str]:
        data = await self._request(
            "add_dependency", "POST", f"/api/tasks/{task_id}/dependencies",
            json={"depends_on_id": depends_on_id},
        )
        dependency = data.get("dependency")
        if isinstance(dependency, dict) and dependency.get("id"):
            return str(dependency["id"])
        return None

    async def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        await self._request(
            "remove_dependency", "DELETE", f"/api/tasks/{task_id}/dependencies/{depends_on_id}",
        )
