"""
Remote Task Gateway - stateless CRUD calls against the task API.

One HTTP round trip per operation. Transport and HTTP failures are classified
into the sync client error taxonomy so callers can decide between queueing,
falling back to cache, and surfacing the error.
"""

import logging
from typing import Dict, Any, List, Optional

import requests

from sync_client.errors import (
    SyncClientError,
    NetworkError,
    ServerError,
    AuthenticationError,
    OwnershipError,
    TaskNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _require_title(payload: Dict[str, Any], required: bool):
    if not isinstance(payload, dict):
        raise ValidationError("Task payload must be an object")
    if required or 'title' in payload:
        title = payload.get('title')
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title is required")


def _require_task_id(task_id: str):
    if not isinstance(task_id, str) or not task_id:
        raise ValidationError("Invalid task id")


class RemoteTaskGateway:
    """
    HTTP client for /api/tasks.

    Args:
        base_url: Server root, e.g. http://localhost:5000
        token: Bearer token
        session: requests.Session (or a compatible object exposing request())
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        session=None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def set_token(self, token: Optional[str]):
        """Use a fresh credential for subsequent calls (after re-login)."""
        self.token = token

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/api/tasks{path}"
        headers = {'Accept': 'application/json'}
        token = self.token
        if token:
            headers['Authorization'] = f"Bearer {token}"

        try:
            response = self.session.request(method, url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request timed out: {e}")
        except requests.RequestException as e:
            raise NetworkError(f"Unable to reach server: {e}")

        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None

        if status >= 400 or not isinstance(body, dict):
            raise self._classify(status, body)
        return body

    @staticmethod
    def _classify(status: int, body: Optional[Dict[str, Any]]) -> SyncClientError:
        """Map an HTTP failure onto the error taxonomy."""
        message = None
        code = None
        if isinstance(body, dict):
            message = body.get('message')
            code = body.get('code')

        if status == 401:
            return AuthenticationError(message or "Authentication required", status, code)
        if status == 403:
            return OwnershipError(message or "You do not have access to this task", status, code)
        if status == 404:
            return TaskNotFoundError(message or "Task not found", status, code)
        if status in (400, 422):
            return ValidationError(message or "Invalid request", status, code)
        if status < 400:
            return ServerError("Unreadable response from server", status, code)
        return ServerError(message or f"Server error ({status})", status, code)

    def list_tasks(self) -> List[Dict[str, Any]]:
        body = self._request('GET', '')
        return list(body.get('tasks') or [])

    def get_task(self, task_id: str) -> Dict[str, Any]:
        _require_task_id(task_id)
        return self._request('GET', f'/{task_id}')['task']

    def create_task(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        _require_title(payload, required=True)
        return self._request('POST', '', payload)['task']

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        _require_task_id(task_id)
        _require_title(changes, required=False)
        return self._request('PUT', f'/{task_id}', changes)['task']

    def delete_task(self, task_id: str) -> str:
        """Returns the deleted task id."""
        _require_task_id(task_id)
        return self._request('DELETE', f'/{task_id}').get('task_id', task_id)
