"""Value objects exchanged with the container engine adapter.

These dataclasses are the engine-neutral descriptors the classifier,
reconciler and provisioner work on. The Podman adapter translates raw engine
API payloads into them, and tests build them directly.

Classes:
    PortMapping: A published port (container port -> host port)
    ContainerInfo: One entry of a container listing
    ContainerInspect: The subset of a container inspection the manager reads
    EngineEvent: A lifecycle event from the engine's event stream
    ProviderConnection: A configured engine endpoint and its status
    ProviderEvent: A provider connection transition
    EngineInfo: An engine instance reachable through a provider connection
    PodHandle: Identifier of a pod created during provisioning
    BindMount: A host path mounted into a container
    HealthCheck: Container health check definition
    ContainerCreateOptions: Everything needed to create a container
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from dbservices.services.engine.enums import ProviderEventKind, ProviderStatus


@dataclass(frozen=True, slots=True)
class PortMapping:
    """A port published on the host."""

    container_port: int
    host_port: int
    host_ip: str = ""
    protocol: str = "tcp"


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """A container as reported by the engine's listing call.

    Attributes:
        id: Container ID
        engine_id: Engine the container lives in (e.g. "podman.podman")
        names: Container names, possibly prefixed with "/"
        image: Image reference the container was created from
        labels: Container labels (empty when the container has none)
        ports: Published ports
        state: Engine state string ("running", "exited", "created"...)
        pod_id: ID of the pod the container belongs to, if any
    """

    id: str
    engine_id: str
    names: tuple[str, ...] = ()
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    ports: tuple[PortMapping, ...] = ()
    state: str = ""
    pod_id: str | None = None

    @property
    def running(self) -> bool:
        return self.state == "running"


@dataclass(frozen=True, slots=True)
class ContainerInspect:
    """Inspection data for a single container."""

    id: str
    env: tuple[str, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    running: bool = False


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """A lifecycle event delivered by the engine's event stream.

    Attributes:
        type: Event kind ("container", "image", "pod"...)
        status: Event status ("start", "die", "remove", "health_status"...)
        container_id: ID of the container the event is about (empty otherwise)
        engine_id: Engine that emitted the event
    """

    type: str
    status: str
    container_id: str = ""
    engine_id: str = ""


@dataclass(slots=True)
class ProviderConnection:
    """A container engine endpoint known to the adapter."""

    name: str
    type: str
    endpoint: str
    status: ProviderStatus = ProviderStatus.UNKNOWN

    @property
    def engine_id(self) -> str:
        return f"{self.type}.{self.name}"

    @property
    def started(self) -> bool:
        return self.status == ProviderStatus.STARTED


@dataclass(frozen=True, slots=True)
class ProviderEvent:
    """A provider connection transition."""

    kind: ProviderEventKind
    provider: str


@dataclass(frozen=True, slots=True)
class EngineInfo:
    """An engine instance reachable through a provider connection."""

    engine_id: str
    engine_name: str
    engine_type: str


@dataclass(frozen=True, slots=True)
class PodHandle:
    """A pod created while provisioning a service with an admin console."""

    engine_id: str
    pod_id: str


@dataclass(frozen=True, slots=True)
class BindMount:
    """A host directory or file mounted into a container."""

    source: str
    destination: str
    read_only: bool = False


@dataclass(frozen=True, slots=True)
class HealthCheck:
    """Container health check definition.

    ``test`` follows the engine convention, e.g. ``("CMD-SHELL", "pg_isready")``.
    """

    test: tuple[str, ...]
    interval_seconds: int = 10
    timeout_seconds: int = 5
    retries: int = 5
    start_period_seconds: int = 10


@dataclass(frozen=True, slots=True)
class ContainerCreateOptions:
    """Parameters for creating (not starting) a container.

    Attributes:
        image: Image reference to create the container from
        name: Container name
        env: Environment variables
        labels: Container labels
        pod_id: Pod to join; the pod owns port publishing when set
        port_mappings: Ports to publish (ignored by the engine inside a pod)
        binds: Bind mounts
        entrypoint: Entrypoint override
        health_check: Health check definition
    """

    image: str
    name: str
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    pod_id: str | None = None
    port_mappings: tuple[PortMapping, ...] = ()
    binds: tuple[BindMount, ...] = ()
    entrypoint: tuple[str, ...] | None = None
    health_check: HealthCheck | None = None

    def to_log_dict(self) -> dict[str, Any]:
        """Loggable view; environment values are withheld."""
        return {
            "image": self.image,
            "container_name": self.name,
            "env_keys": sorted(self.env),
            "labels": self.labels,
            "pod_id": self.pod_id,
            "ports": [f"{p.host_port}:{p.container_port}" for p in self.port_mappings],
            "binds": [b.destination for b in self.binds],
        }
