"""Reconciliation of the service registry with the live containers.

A reconciliation pass lists every container, classifies it as a database
service or an admin console, pairs the two, inspects each service container
and replaces the registry with the freshly built entries before pushing the
full state to the UI.

Passes are driven through a queue: engine and provider events are turned
into triggers, and a single consumer task drains the queue, coalescing
everything that accumulated while the previous pass was running.

Trigger rules:
- container health events ("health_status", "health_status: healthy"...) are ignored
- "remove"/"destroy" events, and every provider transition, force a full pass
- any other container event triggers a pass for that container id, which is
  skipped when the id is neither a service nor an admin console

Usage:
    reconciler = ServiceReconciler(engine, registry, publisher)
    await reconciler.start()        # subscribe to events, start the consumer
    await reconciler.reconcile()    # unconditional pass
    ...
    await reconciler.stop()
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from dbservices.core.exceptions import ContainerNotFoundError
from dbservices.core.logging import get_logger, sanitize_error
from dbservices.services.classifier import (
    ADMIN_CONSOLE_HTTP_PORT,
    ADMIN_CONSOLE_PORT_LABEL,
    BASE_IMAGE_LABEL,
    DATABASE_PORT,
    DEFAULT_USER,
    PAIRING_STRATEGIES,
    PairingStrategy,
    admin_console_repositories,
    find_admin_console,
    friendly_image_name,
    image_version,
    is_admin_console_image,
    is_service_image,
)
from dbservices.services.service_registry import ServiceRegistry, TrackedService

if TYPE_CHECKING:
    from dbservices.core.protocols import ContainerEngineProtocol, StatePublisherProtocol
    from dbservices.services.engine.models import ContainerInfo, ContainerInspect, EngineEvent

logger = get_logger(__name__)

SERVICES_STATE_MESSAGE_ID = "new-services-state"

IGNORED_EVENT_STATUS_PREFIXES = ("health_status",)
REMOVAL_EVENT_STATUSES = frozenset({"remove", "destroy"})

DEFAULT_PASSWORD = "unknown"
UNKNOWN_NAME = "unknown"


def create_services_state_message(services: Iterable[TrackedService]) -> dict[str, Any]:
    """Build the UI message carrying the full list of tracked services."""
    return {
        "id": SERVICES_STATE_MESSAGE_ID,
        "body": [service.to_dict() for service in services],
    }


# =============================================================================
# Entry construction
# =============================================================================


def _env_value(env: Iterable[str], name: str) -> str | None:
    prefix = f"{name}="
    for entry in env:
        if entry.startswith(prefix):
            return entry[len(prefix) :]
    return None


def _display_name(container: ContainerInfo) -> str:
    if not container.names:
        return UNKNOWN_NAME
    return container.names[0].removeprefix("/")


def _published_port(container: ContainerInfo, container_port: int) -> int:
    """Host port published for ``container_port``, else the first one, else 0."""
    for mapping in container.ports:
        if mapping.container_port == container_port:
            return mapping.host_port
    if container.ports:
        return container.ports[0].host_port
    return 0


def _admin_console_port(console: ContainerInfo, service: ContainerInfo) -> int:
    # Standalone consoles carry the label themselves, pod members on the service.
    for labels in (console.labels, service.labels):
        value = labels.get(ADMIN_CONSOLE_PORT_LABEL) if labels else None
        if value and value.isdigit():
            return int(value)
    return _published_port(console, ADMIN_CONSOLE_HTTP_PORT)


def build_tracked_service(
    container: ContainerInfo,
    inspect: ContainerInspect,
    console: ContainerInfo | None,
) -> TrackedService:
    """Derive a TrackedService from a service container and its inspection.

    Args:
        container: Listing entry of the service container
        inspect: Inspection of the same container
        console: Paired admin console, if any

    Returns:
        The registry entry for the container
    """
    user = _env_value(inspect.env, "POSTGRES_USER") or DEFAULT_USER
    base_image = container.labels.get(BASE_IMAGE_LABEL) if container.labels else None
    image = base_image or container.image

    return TrackedService(
        container_id=container.id,
        engine_id=container.engine_id,
        name=_display_name(container),
        running=inspect.running,
        image_name=friendly_image_name(image),
        image_version=image_version(image),
        port=_published_port(container, DATABASE_PORT),
        db_name=_env_value(inspect.env, "POSTGRES_DB") or user,
        user=user,
        password=_env_value(inspect.env, "POSTGRES_PASSWORD") or DEFAULT_PASSWORD,
        admin_console=console is not None,
        admin_console_port=_admin_console_port(console, container) if console else None,
    )


# =============================================================================
# Reconciler
# =============================================================================


class ServiceReconciler:
    """Keeps the ServiceRegistry in line with the containers of the engine.

    The reconciler is the registry's only writer.
    """

    def __init__(
        self,
        engine: ContainerEngineProtocol,
        registry: ServiceRegistry,
        publisher: StatePublisherProtocol,
        strategies: tuple[PairingStrategy, ...] = PAIRING_STRATEGIES,
        console_repositories: frozenset[str] | None = None,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._publisher = publisher
        self._strategies = strategies
        self._console_repositories = console_repositories or admin_console_repositories()
        self._triggers: asyncio.Queue[str | None] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self._pass_count = 0

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    @property
    def pass_count(self) -> int:
        """Number of completed (not skipped) reconciliation passes."""
        return self._pass_count

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile(self, trigger_id: str | None = None) -> bool:
        """Run one reconciliation pass.

        Args:
            trigger_id: Container whose event caused the pass. When given and
                        the container is neither a service nor an admin
                        console, the pass is skipped.

        Returns:
            True if the registry was rebuilt, False if the pass was skipped

        Raises:
            ContainerEngineError: If listing or inspecting containers fails;
                                  the registry is left untouched
        """
        triggers = None if trigger_id is None else frozenset({trigger_id})
        return await self._reconcile(triggers)

    async def _reconcile(self, trigger_ids: frozenset[str] | None) -> bool:
        containers = await self._engine.list_containers()
        services = [c for c in containers if is_service_image(c)]
        consoles = [c for c in containers if is_admin_console_image(c, self._console_repositories)]

        if trigger_ids is not None:
            relevant = {c.id for c in services} | {c.id for c in consoles}
            if relevant.isdisjoint(trigger_ids):
                logger.debug(
                    "Skipping reconciliation for unrelated containers",
                    extra={"trigger": sorted(trigger_ids)},
                )
                return False

        entries: list[TrackedService] = []
        for container in services:
            try:
                inspect = await self._engine.inspect_container(container.engine_id, container.id)
            except ContainerNotFoundError:
                # Removed between listing and inspection
                logger.debug(
                    f"Container {container.id} vanished during reconciliation",
                    extra={"container_id": container.id},
                )
                continue
            console = find_admin_console(container, consoles, self._strategies)
            entries.append(build_tracked_service(container, inspect, console))

        self._registry.replace_all(entries)
        self._pass_count += 1
        logger.info(
            f"Reconciled {len(entries)} services",
            extra={
                "count": len(entries),
                "trigger": sorted(trigger_ids) if trigger_ids else None,
            },
        )
        await self._publish_state()
        return True

    async def _publish_state(self) -> None:
        message = create_services_state_message(self._registry.get_all())
        try:
            receivers = await self._publisher.publish(message)
            logger.debug(f"Published services state to {receivers} clients")
        except Exception as e:
            logger.warning(f"Failed to publish services state: {sanitize_error(e)}")

    # =========================================================================
    # Event subscription
    # =========================================================================

    def notify(self, trigger_id: str | None = None) -> None:
        """Queue a reconciliation pass (None forces a full pass)."""
        self._triggers.put_nowait(trigger_id)

    def handle_engine_event(self, event: EngineEvent) -> None:
        """Turn a container lifecycle event into a trigger."""
        if event.type != "container" or event.status.startswith(IGNORED_EVENT_STATUS_PREFIXES):
            return
        if event.status in REMOVAL_EVENT_STATUSES or not event.container_id:
            self.notify(None)
        else:
            self.notify(event.container_id)

    async def start(self) -> None:
        """Subscribe to engine and provider events and start the consumer."""
        if self._tasks:
            logger.warning("ServiceReconciler already started")
            return
        self._tasks = [
            asyncio.create_task(self._consume(), name="reconcile-consumer"),
            asyncio.create_task(self._follow_engine_events(), name="reconcile-engine-events"),
            asyncio.create_task(self._follow_provider_events(), name="reconcile-provider-events"),
        ]
        # Let the subscriptions register before anything is published
        await asyncio.sleep(0)
        logger.info("ServiceReconciler subscribed to engine events")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Task {task.get_name()} had failed: {sanitize_error(e)}")
        self._tasks = []
        logger.info("ServiceReconciler stopped")

    async def _follow_engine_events(self) -> None:
        try:
            async for event in self._engine.events():
                self.handle_engine_event(event)
        except Exception as e:
            logger.error(f"Engine event subscription failed: {sanitize_error(e)}")

    async def _follow_provider_events(self) -> None:
        try:
            async for event in self._engine.provider_events():
                logger.debug(
                    f"Provider {event.provider} {event.kind}",
                    extra={"provider": event.provider, "kind": str(event.kind)},
                )
                self.notify(None)
        except Exception as e:
            logger.error(f"Provider event subscription failed: {sanitize_error(e)}")

    async def wait_idle(self) -> None:
        """Wait until every queued trigger has been processed."""
        await self._triggers.join()

    def _drain(self, first: str | None) -> list[str | None]:
        pending = [first]
        while not self._triggers.empty():
            pending.append(self._triggers.get_nowait())
        return pending

    async def _consume(self) -> None:
        while True:
            pending = self._drain(await self._triggers.get())
            trigger_ids = (
                None if None in pending else frozenset(t for t in pending if t is not None)
            )
            try:
                await self._reconcile(trigger_ids)
            except Exception as e:
                logger.error(
                    f"Reconciliation failed: {sanitize_error(e)}",
                    extra={"trigger": sorted(trigger_ids) if trigger_ids else None},
                )
            finally:
                for _ in pending:
                    self._triggers.task_done()
