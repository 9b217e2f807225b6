"""Task store for a hosted PostgREST backend (Supabase REST API, httpx async)."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from taskstreak.config import get_settings
from taskstreak.schemas.task import TaskCreate, TaskResponse, TaskUpdate
from taskstreak.services.errors import TaskStoreError

logger = logging.getLogger(__name__)

TASKS_PATH = "/rest/v1/tasks"


class RestTaskStore:
    """TaskStore speaking PostgREST. Row-level security on the server does
    the ownership check; the owner filter is sent on every write as well.

    There is no change feed behind this store, so synchronizers using it stay
    in polling mode.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or settings.SUPABASE_ANON_KEY
        self.access_token = access_token
        self.timeout = timeout
        self._client = client

    def _headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _request(
        self,
        method: str,
        params: dict[str, str],
        json: Optional[Any] = None,
        prefer: Optional[str] = None,
    ) -> list[dict]:
        url = f"{self.base_url}{TASKS_PATH}"
        try:
            async with self._session() as client:
                resp = await client.request(
                    method, url, params=params, json=json, headers=self._headers(prefer)
                )
                resp.raise_for_status()
                return resp.json() if resp.content else []
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            try:
                detail = exc.response.json().get("message", detail)
            except ValueError:
                pass
            logger.error("%s %s failed (%s): %s", method, url, exc.response.status_code, detail)
            raise TaskStoreError(f"{detail} (HTTP {exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise TaskStoreError(f"Task backend unreachable: {exc}") from exc
        except ValueError as exc:
            logger.error("%s %s returned a body that is not JSON: %s", method, url, exc)
            raise TaskStoreError(f"Malformed response from task backend: {exc}") from exc

    async def list_tasks(self, user_id: str) -> list[TaskResponse]:
        rows = await self._request(
            "GET",
            {"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )
        return [TaskResponse.model_validate(row) for row in rows]

    async def insert(self, user_id: str, data: TaskCreate) -> TaskResponse:
        body = {
            "user_id": user_id,
            **data.model_dump(mode="json"),
            "status": "todo",
            "completed_at": None,
        }
        rows = await self._request("POST", {"select": "*"}, json=body, prefer="return=representation")
        if not rows:
            raise TaskStoreError("Failed to add task")
        return TaskResponse.model_validate(rows[0])

    async def update(self, task_id: str, user_id: str, changes: TaskUpdate) -> None:
        rows = await self._request(
            "PATCH",
            {"id": f"eq.{task_id}", "user_id": f"eq.{user_id}"},
            json=changes.model_dump(mode="json", exclude_unset=True),
            prefer="return=representation",
        )
        if not rows:
            raise TaskStoreError(f"Task {task_id} not found")

    async def delete(self, task_id: str, user_id: str) -> None:
        rows = await self._request(
            "DELETE",
            {"id": f"eq.{task_id}", "user_id": f"eq.{user_id}"},
            prefer="return=representation",
        )
        if not rows:
            raise TaskStoreError(f"Task {task_id} not found")
