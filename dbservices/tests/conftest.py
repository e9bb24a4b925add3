"""Pytest configuration and shared fixtures.

This module provides shared test doubles for the unit tests:
- FakeEngine: in-memory ContainerEngineProtocol implementation recording calls
- FakePublisher: StatePublisherProtocol implementation recording messages
- make_container / make_inspect: builders for engine value objects
- settings: Settings pointing the storage root at a temporary directory
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from dbservices.core.config import Settings
from dbservices.core.exceptions import ContainerNotFoundError
from dbservices.services.engine import (
    ContainerCreateOptions,
    ContainerInfo,
    ContainerInspect,
    EngineEvent,
    EngineInfo,
    PodHandle,
    PortMapping,
    ProviderConnection,
    ProviderEvent,
    ProviderStatus,
)

POSTGRES_IMAGE = "docker.io/library/postgres:16"
PGVECTOR_IMAGE = "docker.io/pgvector/pgvector:pg16"
PGADMIN_IMAGE = "docker.io/dpage/pgadmin4:latest"
ENGINE_ID = "podman.podman"


def make_container(
    container_id: str,
    image: str = POSTGRES_IMAGE,
    *,
    name: str | None = None,
    labels: dict[str, str] | None = None,
    ports: tuple[PortMapping, ...] = (),
    state: str = "running",
    pod_id: str | None = None,
    engine_id: str = ENGINE_ID,
) -> ContainerInfo:
    return ContainerInfo(
        id=container_id,
        engine_id=engine_id,
        names=(f"/{name or container_id}",),
        image=image,
        labels=labels or {},
        ports=ports,
        state=state,
        pod_id=pod_id,
    )


def make_inspect(
    container_id: str,
    *,
    env: dict[str, str] | None = None,
    running: bool = True,
) -> ContainerInspect:
    return ContainerInspect(
        id=container_id,
        env=tuple(f"{k}={v}" for k, v in (env or {}).items()),
        running=running,
    )


class FakeEngine:
    """In-memory container engine.

    ``calls`` records every operation as ``(name, *args)`` in call order.
    Put an exception in ``failures[<operation>]`` to make that operation
    raise it.
    """

    def __init__(self) -> None:
        self.containers: list[ContainerInfo] = []
        self.inspections: dict[str, ContainerInspect] = {}
        self.connections: list[ProviderConnection] = [
            ProviderConnection(
                name="podman",
                type="podman",
                endpoint="unix:///run/podman/podman.sock",
                status=ProviderStatus.STARTED,
            )
        ]
        self.has_engine = True
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.created: dict[str, ContainerCreateOptions] = {}
        self.pods: dict[str, list[PortMapping]] = {}
        self.builds: list[dict[str, Any]] = []
        self._events: asyncio.Queue[EngineEvent] = asyncio.Queue()
        self._provider_events: asyncio.Queue[ProviderEvent] = asyncio.Queue()
        self._next_id = 0

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        if operation in self.failures:
            raise self.failures[operation]

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls]

    # Helpers used by tests
    def add(self, container: ContainerInfo, env: dict[str, str] | None = None) -> None:
        self.containers.append(container)
        self.inspections[container.id] = make_inspect(
            container.id, env=env, running=container.running
        )

    def remove(self, container_id: str) -> None:
        self.containers = [c for c in self.containers if c.id != container_id]
        self.inspections.pop(container_id, None)

    def emit(self, event: EngineEvent) -> None:
        self._events.put_nowait(event)

    def emit_provider(self, event: ProviderEvent) -> None:
        self._provider_events.put_nowait(event)

    # ContainerEngineProtocol
    async def list_containers(self) -> list[ContainerInfo]:
        self._record("list_containers")
        return list(self.containers)

    async def inspect_container(self, engine_id: str, container_id: str) -> ContainerInspect:
        self._record("inspect_container", engine_id, container_id)
        if container_id not in self.inspections:
            raise ContainerNotFoundError(container_id)
        return self.inspections[container_id]

    async def events(self) -> AsyncIterator[EngineEvent]:
        while True:
            yield await self._events.get()

    async def provider_events(self) -> AsyncIterator[ProviderEvent]:
        while True:
            yield await self._provider_events.get()

    def list_provider_connections(self) -> list[ProviderConnection]:
        self._record("list_provider_connections")
        return list(self.connections)

    async def list_engines(self, connection: ProviderConnection) -> list[EngineInfo]:
        self._record("list_engines", connection.name)
        if not self.has_engine:
            return []
        return [EngineInfo(connection.engine_id, connection.name, connection.type)]

    async def pull_image(self, connection: ProviderConnection, image: str) -> None:
        self._record("pull_image", image)

    async def build_image(
        self,
        connection: ProviderConnection,
        context_dir: Path,
        tag: str,
        labels: dict[str, str] | None = None,
    ) -> str:
        self._record("build_image", tag)
        self.builds.append({"context_dir": context_dir, "tag": tag, "labels": labels or {}})
        return self._new_id("image")

    async def create_container(self, engine_id: str, options: ContainerCreateOptions) -> str:
        self._record("create_container", options.name)
        container_id = self._new_id("ctr")
        self.created[container_id] = options
        return container_id

    async def start_container(self, engine_id: str, container_id: str) -> None:
        self._record("start_container", container_id)

    async def create_pod(
        self,
        connection: ProviderConnection,
        name: str,
        port_mappings: list[PortMapping],
    ) -> PodHandle:
        self._record("create_pod", name)
        pod_id = self._new_id("pod")
        self.pods[pod_id] = list(port_mappings)
        return PodHandle(engine_id=connection.engine_id, pod_id=pod_id)

    async def start_pod(self, engine_id: str, pod_id: str) -> None:
        self._record("start_pod", pod_id)


class FakePublisher:
    """Records every published message."""

    def __init__(self, error: Exception | None = None) -> None:
        self.messages: list[dict[str, Any]] = []
        self.error = error

    async def publish(self, message: dict[str, Any]) -> int:
        if self.error is not None:
            raise self.error
        self.messages.append(message)
        return 1


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage_path=str(tmp_path / "storage"),
        log_file_path=str(tmp_path / "logs" / "dbservices.log"),
        _env_file=None,  # type: ignore[call-arg]
    )
