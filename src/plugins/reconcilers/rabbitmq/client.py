"""
RabbitMQ management HTTP API client.

A thin async wrapper over the ``/api`` endpoints the convergence engine
needs. Reads raise ``ManagementAPIError`` on any non-2xx status so callers
can branch on 404; writes return the raw status so callers can check it
against the status codes they expect.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import aiohttp

from errors import DependencyError, ManagementAPIError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds, per request


@dataclass
class AdminResponse:
    """Status and parsed body of a mutating management API call."""

    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def expect_status(response: AdminResponse, expected: Iterable[int], action: str) -> None:
    """
    Fail unless the response status is one of ``expected``.

    Raises:
        DependencyError: Carrying the action description and response body.
    """
    expected = set(expected)
    if response.status not in expected:
        raise DependencyError(
            f"error {action}: got response code {response.status} "
            f"(expected {', '.join(str(s) for s in sorted(expected))}): {response.body}"
        )


def _segment(value: str) -> str:
    # Vhost names such as "/" must travel as a single path segment
    return quote(value, safe="")


class AdminClient:
    """
    Client for one broker's management API.

    A new client is built for every convergence pass; it holds credentials
    only, and each request runs in its own HTTP session.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        verify_ssl: bool = True,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self._password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"AdminClient({self.base_url!r}, user={self.username!r})"

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> AdminResponse:
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        auth = aiohttp.BasicAuth(self.username, self._password)

        try:
            async with aiohttp.ClientSession(auth=auth, timeout=timeout) as session:
                async with session.request(
                    method, url, json=payload, ssl=self.verify_ssl
                ) as resp:
                    text = await resp.text()
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DependencyError(f"error calling {method} {path}: {e}") from e

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except json.JSONDecodeError:
                body = text

        logger.debug(f"{method} {path} -> {status}")
        return AdminResponse(status=status, body=body)

    async def _get(self, path: str) -> Any:
        response = await self._request("GET", path)
        if not response.ok:
            message = response.body
            if isinstance(message, dict):
                message = message.get("reason") or message.get("error") or message
            raise ManagementAPIError(
                response.status, f"GET {path}: {message}", response.body
            )
        return response.body

    # ==================== Vhosts ====================

    async def list_vhosts(self) -> List[Dict[str, Any]]:
        return await self._get("/api/vhosts") or []

    async def get_vhost(self, name: str) -> Dict[str, Any]:
        return await self._get(f"/api/vhosts/{_segment(name)}")

    async def put_vhost(self, name: str) -> AdminResponse:
        return await self._request("PUT", f"/api/vhosts/{_segment(name)}", {})

    async def delete_vhost(self, name: str) -> AdminResponse:
        return await self._request("DELETE", f"/api/vhosts/{_segment(name)}")

    # ==================== Users ====================

    async def list_users(self) -> List[Dict[str, Any]]:
        return await self._get("/api/users") or []

    async def get_user(self, username: str) -> Dict[str, Any]:
        return await self._get(f"/api/users/{_segment(username)}")

    async def put_user(
        self, username: str, password_hash: str, hashing_algorithm: str, tags: str
    ) -> AdminResponse:
        payload = {
            "password_hash": password_hash,
            "hashing_algorithm": hashing_algorithm,
            "tags": tags,
        }
        return await self._request("PUT", f"/api/users/{_segment(username)}", payload)

    async def delete_user(self, username: str) -> AdminResponse:
        return await self._request("DELETE", f"/api/users/{_segment(username)}")

    # ==================== Permissions ====================

    async def list_permissions_of(self, username: str) -> List[Dict[str, Any]]:
        return await self._get(f"/api/users/{_segment(username)}/permissions") or []

    async def update_permissions_in(
        self, vhost: str, username: str, configure: str, write: str, read: str
    ) -> AdminResponse:
        payload = {"configure": configure, "write": write, "read": read}
        return await self._request(
            "PUT", f"/api/permissions/{_segment(vhost)}/{_segment(username)}", payload
        )

    async def clear_permissions_in(self, vhost: str, username: str) -> AdminResponse:
        return await self._request(
            "DELETE", f"/api/permissions/{_segment(vhost)}/{_segment(username)}"
        )

    # ==================== Policies ====================

    async def list_policies_in(self, vhost: str) -> List[Dict[str, Any]]:
        return await self._get(f"/api/policies/{_segment(vhost)}") or []

    async def put_policy(
        self,
        vhost: str,
        name: str,
        pattern: str,
        definition: Dict[str, Any],
        priority: int = 0,
        apply_to: str = "all",
    ) -> AdminResponse:
        payload = {
            "pattern": pattern,
            "definition": definition,
            "priority": priority,
            "apply-to": apply_to,
        }
        return await self._request(
            "PUT", f"/api/policies/{_segment(vhost)}/{_segment(name)}", payload
        )

    async def delete_policy(self, vhost: str, name: str) -> AdminResponse:
        return await self._request(
            "DELETE", f"/api/policies/{_segment(vhost)}/{_segment(name)}"
        )

    # ==================== Queues ====================

    async def list_queues(self, vhost: Optional[str] = None) -> List[Dict[str, Any]]:
        path = "/api/queues" if vhost is None else f"/api/queues/{_segment(vhost)}"
        return await self._get(path) or []

    async def get_queue(self, vhost: str, name: str) -> Dict[str, Any]:
        return await self._get(f"/api/queues/{_segment(vhost)}/{_segment(name)}")

    async def declare_queue(
        self,
        vhost: str,
        name: str,
        durable: bool = False,
        auto_delete: bool = False,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> AdminResponse:
        payload = {
            "durable": durable,
            "auto_delete": auto_delete,
            "arguments": arguments or {},
        }
        return await self._request(
            "PUT", f"/api/queues/{_segment(vhost)}/{_segment(name)}", payload
        )

    async def delete_queue(self, vhost: str, name: str) -> AdminResponse:
        return await self._request(
            "DELETE", f"/api/queues/{_segment(vhost)}/{_segment(name)}"
        )
