"""Podman implementation of the container engine protocol.

PodmanEngine holds one provider connection per configured engine endpoint.
Each connection pairs a docker-py DockerClient (containers, images, events)
with a LibpodClient (pods, pod-aware container creation) on the same socket.

A monitor task pings every connection on an interval. Status transitions are
published as provider events, and the container event stream of a connection
is followed only while that connection is started.

Usage:
    engine = PodmanEngine(settings.engine_connections, poll_interval=5.0)
    await engine.start()
    containers = await engine.list_containers()
    ...
    await engine.close()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dbservices.core.docker_client import DockerClient
from dbservices.core.exceptions import ContainerEngineError
from dbservices.core.libpod_client import LibpodClient
from dbservices.core.logging import get_logger, sanitize_error
from dbservices.services.engine.enums import ProviderEventKind, ProviderStatus
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

if TYPE_CHECKING:
    from dbservices.core.config import EngineConnectionSettings

logger = get_logger(__name__)

_NANOSECONDS = 1_000_000_000


@dataclass(slots=True)
class _Endpoint:
    connection: ProviderConnection
    docker: DockerClient
    libpod: LibpodClient
    event_task: asyncio.Task[None] | None = None


class _Subscribers:
    """Fan-out of items to every open subscription queue."""

    def __init__(self) -> None:
        self._queues: set[asyncio.Queue[Any]] = set()

    def publish(self, item: Any) -> None:
        for queue in self._queues:
            queue.put_nowait(item)

    async def iterate(self) -> AsyncIterator[Any]:
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)


class PodmanEngine:
    """Container engine adapter for one or more Podman endpoints."""

    def __init__(
        self,
        connections: list[EngineConnectionSettings],
        poll_interval: float = 5.0,
        docker_factory: Callable[[str], DockerClient] = DockerClient,
        libpod_factory: Callable[[str], LibpodClient] = LibpodClient,
    ) -> None:
        """Initialize the adapter.

        Args:
            connections: Configured provider connections
            poll_interval: Seconds between provider status probes
            docker_factory: Builds the docker-py wrapper for an endpoint URL
            libpod_factory: Builds the libpod client for an endpoint URL
        """
        self._poll_interval = poll_interval
        self._endpoints: dict[str, _Endpoint] = {}
        for conf in connections:
            connection = ProviderConnection(name=conf.name, type=conf.type, endpoint=conf.url)
            self._endpoints[connection.engine_id] = _Endpoint(
                connection=connection,
                docker=docker_factory(conf.url),
                libpod=libpod_factory(conf.url),
            )
        self._container_events = _Subscribers()
        self._provider_events = _Subscribers()
        self._monitor_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Register the connections, probe them once and start monitoring."""
        if self._monitor_task is not None:
            logger.warning("PodmanEngine already started")
            return

        for endpoint in self._endpoints.values():
            self._provider_events.publish(
                ProviderEvent(ProviderEventKind.REGISTERED, endpoint.connection.name)
            )
        await self.refresh_provider_status()
        self._monitor_task = asyncio.create_task(self._monitor())
        logger.info(
            "PodmanEngine started",
            extra={"connections": [e.connection.engine_id for e in self._endpoints.values()]},
        )

    async def close(self) -> None:
        """Stop monitoring and release every client."""
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
            self._monitor_task = None

        for endpoint in self._endpoints.values():
            await self._stop_following(endpoint)
            self._provider_events.publish(
                ProviderEvent(ProviderEventKind.UNREGISTERED, endpoint.connection.name)
            )
            await endpoint.docker.close()
            await endpoint.libpod.close()
        logger.info("PodmanEngine closed")

    async def refresh_provider_status(self) -> None:
        """Ping every connection and publish status transitions."""
        for endpoint in self._endpoints.values():
            reachable = await endpoint.docker.connect()
            new_status = ProviderStatus.STARTED if reachable else ProviderStatus.STOPPED
            if new_status == endpoint.connection.status:
                if reachable:
                    # Re-open a stream that ended while the provider stayed up
                    self._follow_events(endpoint)
                continue

            endpoint.connection.status = new_status
            logger.info(
                f"Provider {endpoint.connection.name} is {new_status}",
                extra={"engine_id": endpoint.connection.engine_id},
            )
            if reachable:
                self._follow_events(endpoint)
                kind = ProviderEventKind.STARTED
            else:
                await self._stop_following(endpoint)
                kind = ProviderEventKind.STOPPED
            self._provider_events.publish(ProviderEvent(kind, endpoint.connection.name))

    async def _monitor(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.refresh_provider_status()
            except Exception as e:
                logger.warning(f"Provider status probe failed: {sanitize_error(e)}")

    # =========================================================================
    # Events
    # =========================================================================

    def _follow_events(self, endpoint: _Endpoint) -> None:
        if endpoint.event_task is None or endpoint.event_task.done():
            endpoint.event_task = asyncio.create_task(self._pump_events(endpoint))

    async def _stop_following(self, endpoint: _Endpoint) -> None:
        if endpoint.event_task is not None:
            endpoint.event_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await endpoint.event_task
            endpoint.event_task = None

    async def _pump_events(self, endpoint: _Endpoint) -> None:
        engine_id = endpoint.connection.engine_id
        try:
            async for raw in endpoint.docker.events():
                self._container_events.publish(_to_engine_event(raw, engine_id))
        except ContainerEngineError as e:
            logger.warning(
                f"Event stream for {engine_id} failed: {sanitize_error(e)}",
                extra={"engine_id": engine_id},
            )
        logger.debug(f"Event stream for {engine_id} ended", extra={"engine_id": engine_id})

    async def events(self) -> AsyncIterator[EngineEvent]:
        """Stream container events from every started connection."""
        async for event in self._container_events.iterate():
            yield event

    async def provider_events(self) -> AsyncIterator[ProviderEvent]:
        """Stream provider connection transitions."""
        async for event in self._provider_events.iterate():
            yield event

    # =========================================================================
    # Providers and engines
    # =========================================================================

    def list_provider_connections(self) -> list[ProviderConnection]:
        return [replace(e.connection) for e in self._endpoints.values()]

    async def list_engines(self, connection: ProviderConnection) -> list[EngineInfo]:
        endpoint = self._endpoints.get(connection.engine_id)
        if endpoint is None or not endpoint.connection.started:
            return []
        return [
            EngineInfo(
                engine_id=endpoint.connection.engine_id,
                engine_name=endpoint.connection.name,
                engine_type=endpoint.connection.type,
            )
        ]

    def _endpoint(self, engine_id: str, operation: str) -> _Endpoint:
        endpoint = self._endpoints.get(engine_id)
        if endpoint is None:
            raise ContainerEngineError(
                f"Unknown engine: {engine_id}", operation=operation, engine_id=engine_id
            )
        return endpoint

    # =========================================================================
    # Containers
    # =========================================================================

    async def list_containers(self) -> list[ContainerInfo]:
        containers: list[ContainerInfo] = []
        for engine_id, endpoint in self._endpoints.items():
            if not endpoint.connection.started:
                continue
            raw_containers = await endpoint.docker.list_containers(all=True)
            pods = await endpoint.libpod.list_pods()
            pod_of = {
                member["Id"]: pod["Id"] for pod in pods for member in pod.get("Containers") or []
            }
            containers.extend(_to_container_info(raw, engine_id, pod_of) for raw in raw_containers)
        return containers

    async def inspect_container(self, engine_id: str, container_id: str) -> ContainerInspect:
        endpoint = self._endpoint(engine_id, "inspect_container")
        raw = await endpoint.docker.inspect_container(container_id)
        config = raw.get("Config") or {}
        state = raw.get("State") or {}
        return ContainerInspect(
            id=raw.get("Id", container_id),
            env=tuple(config.get("Env") or ()),
            labels=dict(config.get("Labels") or {}),
            running=bool(state.get("Running", False)),
        )

    async def create_container(self, engine_id: str, options: ContainerCreateOptions) -> str:
        endpoint = self._endpoint(engine_id, "create_container")
        container_id = await endpoint.libpod.create_container(_to_spec(options))
        logger.info(
            f"Created container {options.name}",
            extra={"container_id": container_id, "engine_id": engine_id, **options.to_log_dict()},
        )
        return container_id

    async def start_container(self, engine_id: str, container_id: str) -> None:
        endpoint = self._endpoint(engine_id, "start_container")
        await endpoint.docker.start_container(container_id)

    # =========================================================================
    # Images
    # =========================================================================

    async def pull_image(self, connection: ProviderConnection, image: str) -> None:
        endpoint = self._endpoint(connection.engine_id, "pull_image")
        await endpoint.docker.pull_image(image)

    async def build_image(
        self,
        connection: ProviderConnection,
        context_dir: Path,
        tag: str,
        labels: dict[str, str] | None = None,
    ) -> str:
        endpoint = self._endpoint(connection.engine_id, "build_image")
        return await endpoint.docker.build_image(str(context_dir), tag, labels)

    # =========================================================================
    # Pods
    # =========================================================================

    async def create_pod(
        self,
        connection: ProviderConnection,
        name: str,
        port_mappings: list[PortMapping],
    ) -> PodHandle:
        endpoint = self._endpoint(connection.engine_id, "create_pod")
        pod_id = await endpoint.libpod.create_pod(name, [_to_portmapping(p) for p in port_mappings])
        return PodHandle(engine_id=connection.engine_id, pod_id=pod_id)

    async def start_pod(self, engine_id: str, pod_id: str) -> None:
        endpoint = self._endpoint(engine_id, "start_pod")
        await endpoint.libpod.start_pod(pod_id)


# =============================================================================
# Payload translation
# =============================================================================


def _to_engine_event(raw: dict[str, Any], engine_id: str) -> EngineEvent:
    actor = raw.get("Actor") or {}
    return EngineEvent(
        type=str(raw.get("Type") or raw.get("type") or ""),
        status=str(raw.get("status") or raw.get("Action") or ""),
        container_id=str(raw.get("id") or actor.get("ID") or ""),
        engine_id=engine_id,
    )


def _to_container_info(
    raw: dict[str, Any], engine_id: str, pod_of: dict[str, str]
) -> ContainerInfo:
    container_id = raw["Id"]
    ports = tuple(
        PortMapping(
            container_port=int(port["PrivatePort"]),
            host_port=int(port["PublicPort"]),
            host_ip=port.get("IP") or "",
            protocol=port.get("Type") or "tcp",
        )
        for port in raw.get("Ports") or []
        if port.get("PublicPort")
    )
    return ContainerInfo(
        id=container_id,
        engine_id=engine_id,
        names=tuple(raw.get("Names") or ()),
        image=raw.get("Image") or "",
        labels=dict(raw.get("Labels") or {}),
        ports=ports,
        state=raw.get("State") or "",
        pod_id=pod_of.get(container_id) or raw.get("Pod") or None,
    )


def _to_portmapping(mapping: PortMapping) -> dict[str, Any]:
    return {
        "container_port": mapping.container_port,
        "host_port": mapping.host_port,
        "host_ip": mapping.host_ip,
        "protocol": mapping.protocol,
    }


def _to_spec(options: ContainerCreateOptions) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "image": options.image,
        "name": options.name,
        "env": dict(options.env),
        "labels": dict(options.labels),
    }
    if options.pod_id:
        spec["pod"] = options.pod_id
    elif options.port_mappings:
        spec["portmappings"] = [_to_portmapping(p) for p in options.port_mappings]
    if options.binds:
        spec["mounts"] = [
            {
                "destination": bind.destination,
                "source": bind.source,
                "type": "bind",
                "options": ["rbind", "ro"] if bind.read_only else ["rbind"],
            }
            for bind in options.binds
        ]
    if options.entrypoint is not None:
        spec["entrypoint"] = list(options.entrypoint)
    if options.health_check is not None:
        check = options.health_check
        spec["healthconfig"] = {
            "Test": list(check.test),
            "Interval": check.interval_seconds * _NANOSECONDS,
            "Timeout": check.timeout_seconds * _NANOSECONDS,
            "Retries": check.retries,
            "StartPeriod": check.start_period_seconds * _NANOSECONDS,
        }
    return spec
