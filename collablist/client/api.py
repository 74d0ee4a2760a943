"""HTTP access to the task endpoints for the reconciliation cache.

`HttpTaskApi` wraps an `httpx.Client` (FastAPI's `TestClient` is one, so the
same code drives the real service and the test app). Failures are split into
`ConnectionLost` (no answer at all: stay offline, keep the action queued) and
`ApiError` with the HTTP status, where 4xx responses are permanent.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

# 408/429 are client-side statuses that still deserve a retry
_RETRYABLE_4XX = (408, 429)


class ApiError(Exception):
    def __init__(self, status: Optional[int], message: str = "", code: str = ""):
        self.status = status
        self.message = message or f"HTTP {status}"
        self.code = code
        super().__init__(self.message)

    @property
    def permanent(self) -> bool:
        """Replaying the same request can never succeed."""
        return self.status is not None and 400 <= self.status < 500 and self.status not in _RETRYABLE_4XX


class ConnectionLost(ApiError):
    def __init__(self, message: str = "connection lost"):
        super().__init__(None, message, "ConnectionLost")


class TaskApi(Protocol):
    def list_tasks(self, list_id: int) -> List[Dict[str, Any]]: ...

    def create_task(self, list_id: int, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    def update_task(self, list_id: int, task_id: int, changes: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete_task(self, list_id: int, task_id: int) -> None: ...

    def reorder_tasks(
        self, list_id: int, ordered_ids: Sequence[int], recurring: Optional[bool] = None
    ) -> List[Dict[str, Any]]: ...


class HttpTaskApi:
    def __init__(self, client: httpx.Client, token: Optional[str] = None, prefix: str = ""):
        self.client = client
        self.token = token
        self.prefix = prefix.rstrip("/")

    @classmethod
    def connect(cls, base_url: str, token: str, timeout: float = 10.0) -> "HttpTaskApi":
        return cls(httpx.Client(base_url=base_url, timeout=timeout), token)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers.setdefault("Authorization", f"Bearer {self.token}")
        try:
            response = self.client.request(method, self.prefix + path, headers=headers, **kwargs)
        except httpx.TransportError as err:
            raise ConnectionLost(str(err)) from err
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise ApiError(response.status_code, body.get("error", ""), body.get("code", ""))
        return response

    def list_tasks(self, list_id: int) -> List[Dict[str, Any]]:
        return self._request("GET", f"/lists/{list_id}/tasks").json()

    def create_task(self, list_id: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/lists/{list_id}/tasks", json=fields).json()

    def update_task(self, list_id: int, task_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/lists/{list_id}/tasks/{task_id}", json=changes).json()

    def delete_task(self, list_id: int, task_id: int) -> None:
        self._request("DELETE", f"/lists/{list_id}/tasks/{task_id}")

    def reorder_tasks(
        self, list_id: int, ordered_ids: Sequence[int], recurring: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {"orderedIds": list(ordered_ids)}
        if recurring is not None:
            body["recurring"] = recurring
        return self._request("PUT", f"/lists/{list_id}/tasks/reorder", json=body).json()
