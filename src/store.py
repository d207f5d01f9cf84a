"""
Resource Store - Async client for the remote declarative resource store.

Talks to a Kubernetes-style REST API over aiohttp. Namespaced custom
resources live under /apis/{group}/{version}/namespaces/{ns}/{plural}.
"""

import logging
import ssl
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from config import StoreConfig

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Non-success response from the resource store."""

    def __init__(self, status: int, message: str, reason: str = ""):
        super().__init__(f"{status} {reason}: {message}".strip())
        self.status = status
        self.message = message
        self.reason = reason


class NotFoundError(StoreError):
    """The requested resource does not exist."""


class AlreadyExistsError(StoreError):
    """A resource with the same name already exists."""


class ConflictError(StoreError):
    """The update was based on a stale resourceVersion."""


@dataclass(frozen=True)
class GroupVersionResource:
    """Identifies a resource collection in the store."""

    group: str
    version: str
    resource: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def path(self, namespace: str, name: Optional[str] = None) -> str:
        path = f"/apis/{self.group}/{self.version}/namespaces/{namespace}/{self.resource}"
        if name:
            path = f"{path}/{name}"
        return path


class ResourceStore:
    """CRUD operations over namespaced, versioned resources."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        ca_file: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.ca_file = ca_file
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: StoreConfig) -> "ResourceStore":
        return cls(
            base_url=config.api_url,
            token=config.load_token(),
            ca_file=config.ca_file,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
        )

    async def connect(self) -> None:
        """Open the HTTP session."""
        ssl_option: Any = True
        if not self.verify_ssl:
            ssl_option = False
        elif self.ca_file:
            ssl_option = ssl.create_default_context(cafile=self.ca_file)

        self.session = aiohttp.ClientSession(
            base_url=self.base_url,
            headers=self._get_headers(),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(ssl=ssl_option),
        )
        logger.info(f"Connected to resource store at {self.base_url}")

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Closed resource store session")

    async def __aenter__(self) -> "ResourceStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _ensure_connected(self) -> aiohttp.ClientSession:
        if self.session is None:
            raise RuntimeError(
                "Resource store not connected. Call connect() before performing "
                "operations."
            )
        return self.session

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        session = self._ensure_connected()
        logger.debug(f"{method} {path}")

        async with session.request(method, path, json=body) as response:
            if response.status < 300:
                return await response.json()

            text = await response.text()
            reason = ""
            message = text
            if response.content_type == "application/json":
                try:
                    payload = await response.json()
                    reason = payload.get("reason", "")
                    message = payload.get("message", text)
                except (ValueError, aiohttp.ContentTypeError):
                    pass

            if response.status == 404:
                raise NotFoundError(response.status, message, reason or "NotFound")
            if response.status == 409:
                if reason == "AlreadyExists" or (not reason and method == "POST"):
                    raise AlreadyExistsError(response.status, message, "AlreadyExists")
                raise ConflictError(response.status, message, reason or "Conflict")
            logger.error(f"{method} {path} failed: {response.status} - {text}")
            raise StoreError(response.status, message, reason)

    async def get(
        self, gvr: GroupVersionResource, namespace: str, name: str
    ) -> Dict[str, Any]:
        """
        Fetch one resource.

        Raises:
            NotFoundError: If the resource does not exist
        """
        return await self._request("GET", gvr.path(namespace, name))

    async def list(
        self, gvr: GroupVersionResource, namespace: str
    ) -> List[Dict[str, Any]]:
        """List all resources of a kind in a namespace."""
        result = await self._request("GET", gvr.path(namespace))
        return result.get("items") or []

    async def create(
        self, gvr: GroupVersionResource, namespace: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Create a resource.

        Raises:
            AlreadyExistsError: If a resource with the same name exists
        """
        return await self._request("POST", gvr.path(namespace), body)

    async def update(
        self, gvr: GroupVersionResource, namespace: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Replace a resource. The name is taken from body.metadata.name.

        Raises:
            NotFoundError: If the resource does not exist
            ConflictError: If body.metadata.resourceVersion is stale
        """
        name = (body.get("metadata") or {}).get("name")
        if not name:
            raise ValueError("Resource body must carry metadata.name")
        return await self._request("PUT", gvr.path(namespace, name), body)

    async def delete(
        self, gvr: GroupVersionResource, namespace: str, name: str
    ) -> Dict[str, Any]:
        """
        Delete a resource.

        Raises:
            NotFoundError: If the resource does not exist
        """
        return await self._request("DELETE", gvr.path(namespace, name))
