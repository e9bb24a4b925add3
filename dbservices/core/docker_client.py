"""Docker API wrapper for the Docker-compatible endpoints of the engine.

This module provides an async wrapper around docker-py for the container and
image operations the service manager needs. Podman serves the Docker API on
its socket, so the same client talks to both. Blocking docker-py calls run in
a thread pool via asyncio.to_thread().

Features:
- Async wrapper around docker-py for non-blocking container operations
- Event stream bridged from docker-py's blocking generator into asyncio
- DockerException / NotFound translated into ContainerEngineError /
  ContainerNotFoundError after logging
- Context manager support for automatic cleanup

Usage:
    async with DockerClient("unix:///run/user/1000/podman/podman.sock") as client:
        containers = await client.list_containers()
        details = await client.inspect_container(containers[0]["Id"])
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import Any

from docker import DockerClient as BaseDockerClient  # type: ignore[attr-defined]
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from dbservices.core.exceptions import ContainerEngineError, ContainerNotFoundError
from dbservices.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)


class DockerClient:
    """Async wrapper around docker-py.

    Read-side helpers return the raw API dictionaries (``Id``, ``Names``,
    ``Image``, ``Labels``, ``Ports``, ``State``...); translating them into
    engine-neutral values is the adapter's job.

    Attributes:
        _docker_host: The engine API URL (e.g., unix:///run/podman/podman.sock)
        _client: The underlying docker-py client instance
    """

    def __init__(self, docker_host: str | None = None) -> None:
        """Initialize Docker client.

        Args:
            docker_host: Engine API URL (unix:///path/to/socket or
                        tcp://host:port). If None, uses DOCKER_HOST or the
                        standard socket.
        """
        self._docker_host = docker_host
        self._client: BaseDockerClient | None

        if docker_host:
            self._client = BaseDockerClient(base_url=docker_host)
        else:
            self._client = BaseDockerClient.from_env()

    async def __aenter__(self) -> DockerClient:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    def _require_client(self, operation: str) -> BaseDockerClient:
        if self._client is None:
            raise ContainerEngineError("Docker client not initialized", operation=operation)
        return self._client

    async def connect(self) -> bool:
        """Test connection to the engine.

        Returns:
            True if the engine answered a ping, False otherwise.
        """
        if self._client is None:
            logger.warning("Docker client not initialized")
            return False

        try:
            await asyncio.to_thread(self._client.ping)
            return True
        except (DockerException, OSError) as e:
            logger.debug(
                f"Engine ping failed: {e}",
                extra={"docker_host": self._docker_host or "default", "error": str(e)},
            )
            return False

    async def list_containers(self, all: bool = True) -> list[dict[str, Any]]:
        """List containers (running and stopped if all=True).

        Args:
            all: If True, include stopped containers. If False, only running.

        Returns:
            Raw container summaries from the engine.

        Raises:
            ContainerEngineError: If the engine call fails
        """
        client = self._require_client("list_containers")
        try:
            containers: list[dict[str, Any]] = await asyncio.to_thread(
                client.api.containers, all=all
            )
        except (DockerException, APIError) as e:
            logger.warning(
                f"Failed to list containers: {sanitize_error(e)}",
                extra={"include_all": all},
            )
            raise ContainerEngineError(str(e), operation="list_containers") from e

        logger.debug(
            f"Listed {len(containers)} containers",
            extra={"count": len(containers), "include_all": all},
        )
        return containers

    async def inspect_container(self, container_id: str) -> dict[str, Any]:
        """Inspect a container.

        Args:
            container_id: Container ID (full or short form).

        Returns:
            Raw inspection dictionary (``Config``, ``State``...).

        Raises:
            ContainerNotFoundError: If the container no longer exists
            ContainerEngineError: If the engine call fails
        """
        client = self._require_client("inspect_container")
        try:
            details: dict[str, Any] = await asyncio.to_thread(
                client.api.inspect_container, container_id
            )
            return details
        except NotFound as e:
            logger.debug(
                f"Container not found: {container_id}",
                extra={"container_id": container_id},
            )
            raise ContainerNotFoundError(container_id, operation="inspect_container") from e
        except (DockerException, APIError) as e:
            logger.warning(
                f"Error inspecting container {container_id}: {sanitize_error(e)}",
                extra={"container_id": container_id},
            )
            raise ContainerEngineError(str(e), operation="inspect_container") from e

    async def pull_image(self, image: str) -> None:
        """Pull an image.

        Args:
            image: Image reference, with or without tag.

        Raises:
            ContainerEngineError: If the pull fails
        """
        client = self._require_client("pull_image")
        repository, tag = parse_repository_tag(image)
        try:
            await asyncio.to_thread(client.images.pull, repository, tag=tag or "latest")
        except (DockerException, APIError, ImageNotFound) as e:
            logger.error(
                f"Failed to pull image {image}: {sanitize_error(e)}",
                extra={"image": image},
            )
            raise ContainerEngineError(str(e), operation="pull_image") from e
        logger.info(f"Pulled image {image}", extra={"image": image})

    async def build_image(
        self,
        context_dir: str,
        tag: str,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Build an image from a directory containing a Containerfile.

        Args:
            context_dir: Build context directory
            tag: Tag applied to the built image
            labels: Labels set on the built image

        Returns:
            ID of the built image.

        Raises:
            ContainerEngineError: If the build fails
        """
        client = self._require_client("build_image")
        try:
            image, _logs = await asyncio.to_thread(
                client.images.build,
                path=context_dir,
                dockerfile="Containerfile",
                tag=tag,
                labels=labels or {},
                rm=True,
            )
        except (DockerException, APIError) as e:
            logger.error(
                f"Failed to build image {tag}: {sanitize_error(e)}",
                extra={"tag": tag},
            )
            raise ContainerEngineError(str(e), operation="build_image") from e

        image_id: str = image.id
        logger.info(f"Built image {tag}", extra={"tag": tag, "image_id": image_id})
        return image_id

    async def start_container(self, container_id: str) -> None:
        """Start a created or stopped container.

        Args:
            container_id: Container ID to start.

        Raises:
            ContainerNotFoundError: If the container does not exist
            ContainerEngineError: If the start fails
        """
        client = self._require_client("start_container")
        try:
            await asyncio.to_thread(client.api.start, container_id)
        except NotFound as e:
            logger.warning(
                f"Cannot start container - not found: {container_id}",
                extra={"container_id": container_id},
            )
            raise ContainerNotFoundError(container_id, operation="start_container") from e
        except (DockerException, APIError) as e:
            logger.error(
                f"Failed to start container {container_id}: {sanitize_error(e)}",
                extra={"container_id": container_id},
            )
            raise ContainerEngineError(str(e), operation="start_container") from e
        logger.info(f"Started container {container_id}", extra={"container_id": container_id})

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Stream decoded engine events.

        docker-py exposes events as a blocking generator; it is drained in a
        worker thread and handed over to the event loop through a queue. The
        stream ends when the engine closes the connection or the consumer
        stops iterating.

        Raises:
            ContainerEngineError: If the stream cannot be opened
        """
        client = self._require_client("events")
        try:
            stream = await asyncio.to_thread(client.events, decode=True)
        except (DockerException, APIError) as e:
            raise ContainerEngineError(str(e), operation="events") from e

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

        def _hand_over(item: dict[str, Any] | None) -> None:
            with contextlib.suppress(RuntimeError):  # loop already closed
                loop.call_soon_threadsafe(queue.put_nowait, item)

        def _drain() -> None:
            try:
                for event in stream:
                    _hand_over(event)
            except Exception as e:
                logger.debug(f"Event stream ended: {e}")
            finally:
                _hand_over(None)

        reader = asyncio.create_task(asyncio.to_thread(_drain))
        try:
            while (event := await queue.get()) is not None:
                yield event
        finally:
            with contextlib.suppress(Exception):
                stream.close()
            reader.cancel()

    async def close(self) -> None:
        """Close the client connection.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                logger.debug("Docker client connection closed")
            except Exception as e:
                logger.debug(f"Error closing Docker client: {e}")
            finally:
                self._client = None
