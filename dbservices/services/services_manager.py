"""Facade over discovery, connection info and provisioning of database services.

ServicesManager owns the registry and wires the reconciler, the connection
string formatter and the provisioner together. It is the object the API
layer talks to.

Usage:
    manager = ServicesManager(engine, publisher, settings)
    await manager.start()
    manager.get_services()
    await manager.create_service("mydb", ProvisioningRequest(...))
    await manager.stop()
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from dbservices.core.exceptions import ServiceNotFoundError
from dbservices.core.logging import get_logger, sanitize_error
from dbservices.core.ports import find_available_port
from dbservices.services.classifier import SERVICE_IMAGES, admin_console_repositories
from dbservices.services.connection_info import ConnectionStrings, connection_strings
from dbservices.services.provisioner import ProvisioningRequest, ServiceProvisioner
from dbservices.services.reconciler import ServiceReconciler
from dbservices.services.service_registry import ServiceRegistry, TrackedService

if TYPE_CHECKING:
    from dbservices.core.config import Settings
    from dbservices.core.protocols import ContainerEngineProtocol, StatePublisherProtocol

logger = get_logger(__name__)


class ServicesManager:
    """Tracks database service containers and provisions new ones."""

    def __init__(
        self,
        engine: ContainerEngineProtocol,
        publisher: StatePublisherProtocol,
        settings: Settings,
    ) -> None:
        self._registry = ServiceRegistry()
        self._reconciler = ServiceReconciler(
            engine,
            self._registry,
            publisher,
            console_repositories=admin_console_repositories(settings.admin_console_image),
        )
        self._provisioner = ServiceProvisioner(engine, settings)
        # One provisioning run at a time; nothing reserves ports or names
        self._provision_lock = asyncio.Lock()

    @property
    def reconciler(self) -> ServiceReconciler:
        return self._reconciler

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to engine events, then run an initial reconciliation.

        A failing initial pass is logged; the registry fills in once the engine
        becomes reachable and events arrive.
        """
        await self._reconciler.start()
        try:
            await self._reconciler.reconcile()
        except Exception as e:
            logger.warning(f"Initial reconciliation failed: {sanitize_error(e)}")
        logger.info("ServicesManager started", extra={"count": len(self._registry)})

    async def stop(self) -> None:
        await self._reconciler.stop()
        logger.info("ServicesManager stopped")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_services(self) -> list[TrackedService]:
        return self._registry.get_all()

    def get_service_details(self, container_id: str) -> TrackedService:
        """Get one tracked service.

        Raises:
            ServiceNotFoundError: If the container is not tracked
        """
        service = self._registry.get(container_id)
        if service is None:
            raise ServiceNotFoundError(container_id)
        return service

    def get_connection_strings(self, container_id: str) -> ConnectionStrings:
        return connection_strings(self._registry, container_id)

    def get_service_images(self) -> dict[str, str]:
        """Image-name prefixes offered for new services, mapped to their labels."""
        return dict(SERVICE_IMAGES)

    async def get_free_port(self, port: int) -> int:
        """First free host port at or above ``port``."""
        return await asyncio.to_thread(find_available_port, port)

    # =========================================================================
    # Provisioning
    # =========================================================================

    async def create_service(self, name: str, request: ProvisioningRequest) -> str:
        """Provision a service; concurrent calls run one after the other.

        Returns:
            ID of the database container
        """
        async with self._provision_lock:
            return await self._provisioner.create_service(name, request)
