"""Container engine adapter package.

Re-exports the engine-neutral value objects and the Podman implementation of
ContainerEngineProtocol.
"""

from dbservices.services.engine.enums import ProviderEventKind, ProviderStatus
from dbservices.services.engine.models import (
    BindMount,
    ContainerCreateOptions,
    ContainerInfo,
    ContainerInspect,
    EngineEvent,
    EngineInfo,
    HealthCheck,
    PodHandle,
    PortMapping,
    ProviderConnection,
    ProviderEvent,
)
from dbservices.services.engine.podman import PodmanEngine

__all__ = [
    "BindMount",
    "ContainerCreateOptions",
    "ContainerInfo",
    "ContainerInspect",
    "EngineEvent",
    "EngineInfo",
    "HealthCheck",
    "PodHandle",
    "PodmanEngine",
    "PortMapping",
    "ProviderConnection",
    "ProviderEvent",
    "ProviderEventKind",
    "ProviderStatus",
]
