"""Async client for the Podman libpod REST API.

The Docker-compatible API has no notion of pods, so pod creation, pod start,
pod listing and pod-aware container creation go through the libpod endpoints
served on the same socket.

Usage:
    client = LibpodClient("unix:///run/user/1000/podman/podman.sock")
    try:
        pod_id = await client.create_pod("pod-mydb", [{"container_port": 5432, ...}])
        await client.start_pod(pod_id)
    finally:
        await client.close()
"""

from __future__ import annotations

from typing import Any

import httpx

from dbservices.core.exceptions import ContainerEngineError
from dbservices.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)


class LibpodClient:
    """Thin async wrapper over the libpod REST endpoints used for provisioning.

    Attributes:
        API_VERSION: libpod API version prefix
        _url: Engine API URL this client was built for
        _client: Underlying httpx.AsyncClient
    """

    API_VERSION = "v4.0.0"

    def __init__(self, url: str, timeout: float = 60.0) -> None:
        """Initialize the client.

        Args:
            url: Engine API URL (unix:///path/to/podman.sock, tcp://host:port
                 or http(s)://host:port)
            timeout: Request timeout in seconds
        """
        self._url = url
        transport: httpx.AsyncHTTPTransport | None = None
        if url.startswith("unix://"):
            transport = httpx.AsyncHTTPTransport(uds=url.removeprefix("unix://"))
            base_url = "http://d"
        elif url.startswith("tcp://"):
            base_url = "http://" + url.removeprefix("tcp://")
        else:
            base_url = url.rstrip("/")

        self._client = httpx.AsyncClient(
            base_url=f"{base_url}/{self.API_VERSION}/libpod",
            transport=transport,
            timeout=timeout,
        )

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(
                f"libpod {operation} request failed: {sanitize_error(e)}",
                extra={"operation": operation, "url": self._url},
            )
            raise ContainerEngineError(str(e), operation=operation) from e

        if response.is_error:
            message = _error_message(response)
            logger.error(
                f"libpod {operation} returned {response.status_code}: {message}",
                extra={"operation": operation, "status": response.status_code},
            )
            raise ContainerEngineError(
                f"{operation} failed ({response.status_code}): {message}",
                operation=operation,
            )

        if not response.content:
            return None
        return response.json()

    async def create_pod(self, name: str, portmappings: list[dict[str, Any]]) -> str:
        """Create a pod publishing the given port mappings.

        Args:
            name: Pod name
            portmappings: libpod port mappings
                          (``container_port``, ``host_port``, ``host_ip``)

        Returns:
            ID of the created pod.
        """
        body = {"name": name, "portmappings": portmappings}
        result = await self._request("POST", "/pods/create", "create_pod", json=body)
        pod_id: str = result["Id"]
        logger.info(f"Created pod {name}", extra={"pod_id": pod_id, "pod_name": name})
        return pod_id

    async def start_pod(self, pod_id: str) -> None:
        """Start a pod and its member containers."""
        await self._request("POST", f"/pods/{pod_id}/start", "start_pod")
        logger.info(f"Started pod {pod_id}", extra={"pod_id": pod_id})

    async def list_pods(self) -> list[dict[str, Any]]:
        """List pods with their member containers."""
        result = await self._request("GET", "/pods/json", "list_pods")
        return result or []

    async def create_container(self, spec: dict[str, Any]) -> str:
        """Create a container from a libpod spec generator body.

        Returns:
            ID of the created container.
        """
        result = await self._request("POST", "/containers/create", "create_container", json=spec)
        container_id: str = result["Id"]
        for warning in result.get("Warnings") or []:
            logger.warning(f"Engine warning while creating container: {warning}")
        return container_id

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("cause") or payload)
    return str(payload)
