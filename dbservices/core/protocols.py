"""Protocol definitions for the collaborators the service manager depends on.

This module defines Protocol classes for structural subtyping. The manager is
written against these interfaces only; the Podman adapter and the WebSocket
publisher implement them structurally, and tests substitute in-memory fakes.

Protocol Definitions:
    - ContainerEngineProtocol: Container/pod CRUD, inspection, events, images
    - StatePublisherProtocol: Push of the tracked-services state to the UI

See Also:
    - dbservices/services/engine/podman.py - Implements ContainerEngineProtocol
    - dbservices/services/state_publisher.py - Implements StatePublisherProtocol
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

    from dbservices.services.engine.models import (
        ContainerCreateOptions,
        ContainerInfo,
        ContainerInspect,
        EngineEvent,
        EngineInfo,
        PodHandle,
        PortMapping,
        ProviderConnection,
        ProviderEvent,
    )


@runtime_checkable
class ContainerEngineProtocol(Protocol):
    """Protocol for the host container engine.

    Every call may fail with ``ContainerEngineError``; the callers decide
    whether to propagate or log. Containers are addressed by
    ``(engine_id, container_id)`` because several engines can be connected.
    """

    async def list_containers(self) -> list[ContainerInfo]:
        """List containers of every started engine, stopped ones included."""
        ...

    async def inspect_container(self, engine_id: str, container_id: str) -> ContainerInspect:
        """Inspect a container (env vars, labels, running state)."""
        ...

    def events(self) -> AsyncIterator[EngineEvent]:
        """Stream container lifecycle events from every started engine."""
        ...

    def provider_events(self) -> AsyncIterator[ProviderEvent]:
        """Stream provider register/unregister/start/stop transitions."""
        ...

    def list_provider_connections(self) -> list[ProviderConnection]:
        """Return the known provider connections with their current status."""
        ...

    async def list_engines(self, connection: ProviderConnection) -> list[EngineInfo]:
        """Return the engines reachable through a provider connection."""
        ...

    async def pull_image(self, connection: ProviderConnection, image: str) -> None:
        """Pull an image through a provider connection."""
        ...

    async def build_image(
        self,
        connection: ProviderConnection,
        context_dir: Path,
        tag: str,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Build an image from a build context containing a Containerfile."""
        ...

    async def create_container(self, engine_id: str, options: ContainerCreateOptions) -> str:
        """Create (without starting) a container and return its ID."""
        ...

    async def start_container(self, engine_id: str, container_id: str) -> None:
        """Start a created or stopped container."""
        ...

    async def create_pod(
        self,
        connection: ProviderConnection,
        name: str,
        port_mappings: list[PortMapping],
    ) -> PodHandle:
        """Create a pod that publishes the given ports."""
        ...

    async def start_pod(self, engine_id: str, pod_id: str) -> None:
        """Start a pod and all of its member containers."""
        ...


@runtime_checkable
class StatePublisherProtocol(Protocol):
    """Protocol for pushing messages to the UI.

    Example Implementation:
        class MyPublisher:
            async def publish(self, message: dict[str, Any]) -> int:
                # Deliver to every connected client
                return delivered_count
    """

    async def publish(self, message: dict[str, Any]) -> int:
        """Deliver a message to every connected UI client.

        Args:
            message: JSON-serializable message

        Returns:
            Number of clients that received the message
        """
        ...
