"""In-memory registry of tracked database services.

This module provides the TrackedService value and the ServiceRegistry that
holds them. The registry is rebuilt by the reconciler on every pass and is
never persisted: restarting the process re-scans live containers.

Single writer: only the reconciler calls ``replace_all``. Readers get
snapshots, and a pass swaps the whole mapping at once, so a reader never
sees a half-built registry.

Example usage:
    registry = ServiceRegistry()
    registry.replace_all([service_a, service_b])
    registry.get("3f2a...")        # -> TrackedService | None
    registry.get_all()             # -> list[TrackedService]
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any

from dbservices.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TrackedService:
    """A discovered database container.

    Attributes:
        container_id: Container ID (registry key)
        engine_id: Engine the container lives in
        name: Container name without leading "/"
        running: Whether the container is running
        image_name: Catalog label of the image, or its repository name
        image_version: Image tag, "unknown" when untagged
        port: Host port the database is published on (0 if none)
        db_name: Database name
        user: Database user
        password: Database password
        admin_console: Whether an admin console is paired with the service
        admin_console_port: Host port of the admin console (set iff admin_console)
    """

    container_id: str
    engine_id: str
    name: str
    running: bool
    image_name: str
    image_version: str
    port: int
    db_name: str
    user: str
    password: str
    admin_console: bool = False
    admin_console_port: int | None = None

    def __post_init__(self) -> None:
        if self.admin_console != (self.admin_console_port is not None):
            raise ValueError("admin_console_port must be set exactly when admin_console is True")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return asdict(self)


class ServiceRegistry:
    """Registry of tracked services keyed by container ID."""

    def __init__(self) -> None:
        self._services: dict[str, TrackedService] = {}

    def replace_all(self, services: Iterable[TrackedService]) -> None:
        """Replace every entry with the given services.

        IDs absent from ``services`` are dropped.

        Raises:
            ValueError: If two services share a container ID
        """
        rebuilt: dict[str, TrackedService] = {}
        for service in services:
            if service.container_id in rebuilt:
                raise ValueError(f"Duplicate container id: {service.container_id}")
            rebuilt[service.container_id] = service

        dropped = self._services.keys() - rebuilt.keys()
        self._services = rebuilt
        logger.debug(
            "Registry replaced",
            extra={"count": len(rebuilt), "dropped": sorted(dropped)},
        )

    def get(self, container_id: str) -> TrackedService | None:
        return self._services.get(container_id)

    def get_all(self) -> list[TrackedService]:
        return list(self._services.values())

    def __contains__(self, container_id: object) -> bool:
        return container_id in self._services

    def __len__(self) -> int:
        return len(self._services)
