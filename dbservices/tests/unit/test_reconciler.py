"""Unit tests for the service reconciler."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import (
    ENGINE_ID,
    PGADMIN_IMAGE,
    PGVECTOR_IMAGE,
    POSTGRES_IMAGE,
    FakeEngine,
    FakePublisher,
    make_container,
)
from dbservices.core.exceptions import ContainerEngineError, TransportError
from dbservices.services.classifier import (
    ADMIN_CONSOLE_PORT_LABEL,
    BASE_IMAGE_LABEL,
    SERVICE_CONTAINER_LABEL,
)
from dbservices.services.engine import (
    ContainerInfo,
    EngineEvent,
    PortMapping,
    ProviderEvent,
    ProviderEventKind,
)
from dbservices.services.reconciler import SERVICES_STATE_MESSAGE_ID, ServiceReconciler
from dbservices.services.service_registry import ServiceRegistry


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry()


@pytest.fixture
def reconciler(
    engine: FakeEngine, registry: ServiceRegistry, publisher: FakePublisher
) -> ServiceReconciler:
    return ServiceReconciler(engine, registry, publisher)


# =============================================================================
# Entry construction
# =============================================================================


@pytest.mark.asyncio
async def test_reconcile_builds_entry_from_listing_and_inspection(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(
        make_container(
            "c1",
            name="mydb",
            ports=(PortMapping(container_port=5432, host_port=15432),),
        ),
        env={"POSTGRES_USER": "alice", "POSTGRES_DB": "shop", "POSTGRES_PASSWORD": "pw"},
    )

    assert await reconciler.reconcile() is True

    service = registry.get("c1")
    assert service is not None
    assert service.name == "mydb"
    assert service.engine_id == ENGINE_ID
    assert service.running is True
    assert service.image_name == "postgres Docker Official Image"
    assert service.image_version == "16"
    assert service.port == 15432
    assert (service.db_name, service.user, service.password) == ("shop", "alice", "pw")
    assert service.admin_console is False
    assert service.admin_console_port is None


@pytest.mark.asyncio
async def test_reconcile_applies_env_defaults(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))

    await reconciler.reconcile()

    service = registry.get("c1")
    assert service is not None
    assert service.user == "postgres"
    assert service.db_name == "postgres"
    assert service.password == "unknown"
    assert service.port == 0


@pytest.mark.asyncio
async def test_reconcile_db_defaults_to_user(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"), env={"POSTGRES_USER": "bob"})
    await reconciler.reconcile()
    service = registry.get("c1")
    assert service is not None
    assert service.db_name == "bob"


@pytest.mark.asyncio
async def test_reconcile_name_unknown_without_names(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(ContainerInfo(id="c1", engine_id=ENGINE_ID, image=POSTGRES_IMAGE))
    await reconciler.reconcile()
    service = registry.get("c1")
    assert service is not None
    assert service.name == "unknown"


@pytest.mark.asyncio
async def test_reconcile_uses_base_image_label_for_naming(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(
        make_container(
            "c1", "localhost/mydb-initdb:latest", labels={BASE_IMAGE_LABEL: PGVECTOR_IMAGE}
        )
    )
    await reconciler.reconcile()
    service = registry.get("c1")
    assert service is not None
    assert service.image_name == "pgvector/pgvector"
    assert service.image_version == "pg16"


@pytest.mark.asyncio
async def test_reconcile_ignores_unrelated_containers(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.add(make_container("x1", "docker.io/library/redis:7"))

    await reconciler.reconcile()

    assert [s.container_id for s in registry.get_all()] == ["c1"]


# =============================================================================
# Pairing
# =============================================================================


@pytest.mark.asyncio
async def test_reconcile_pairs_pod_admin_console(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1", pod_id="p1", labels={ADMIN_CONSOLE_PORT_LABEL: "8080"}))
    engine.add(make_container("a1", PGADMIN_IMAGE, pod_id="p1"))

    await reconciler.reconcile()

    service = registry.get("c1")
    assert service is not None
    assert service.admin_console is True
    assert service.admin_console_port == 8080
    assert registry.get("a1") is None


@pytest.mark.asyncio
async def test_reconcile_pairs_standalone_admin_console_by_label(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.add(make_container("c2"))
    engine.add(
        make_container(
            "a1",
            PGADMIN_IMAGE,
            labels={SERVICE_CONTAINER_LABEL: "c2", ADMIN_CONSOLE_PORT_LABEL: "5051"},
        )
    )

    await reconciler.reconcile()

    c1, c2 = registry.get("c1"), registry.get("c2")
    assert c1 is not None and c2 is not None
    assert c1.admin_console is False
    assert c2.admin_console is True
    assert c2.admin_console_port == 5051


@pytest.mark.asyncio
async def test_admin_console_port_falls_back_to_published_port(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.add(
        make_container(
            "a1",
            PGADMIN_IMAGE,
            labels={SERVICE_CONTAINER_LABEL: "c1"},
            ports=(PortMapping(container_port=80, host_port=9090),),
        )
    )

    await reconciler.reconcile()

    service = registry.get("c1")
    assert service is not None
    assert service.admin_console_port == 9090


# =============================================================================
# Pass semantics
# =============================================================================


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(
    engine: FakeEngine, publisher: FakePublisher, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"), env={"POSTGRES_PASSWORD": "pw"})
    engine.add(make_container("c2", PGVECTOR_IMAGE))

    await reconciler.reconcile()
    await reconciler.reconcile()

    assert len(publisher.messages) == 2
    assert publisher.messages[0] == publisher.messages[1]
    assert publisher.messages[0]["id"] == SERVICES_STATE_MESSAGE_ID
    assert len(publisher.messages[0]["body"]) == 2


@pytest.mark.asyncio
async def test_reconcile_drops_removed_container(
    engine: FakeEngine,
    registry: ServiceRegistry,
    publisher: FakePublisher,
    reconciler: ServiceReconciler,
) -> None:
    engine.add(make_container("c1"))
    engine.add(make_container("c2"))
    await reconciler.reconcile()

    engine.remove("c1")
    await reconciler.reconcile()

    assert registry.get("c1") is None
    assert [s["container_id"] for s in publisher.messages[-1]["body"]] == ["c2"]


@pytest.mark.asyncio
async def test_reconcile_skips_unrelated_trigger(
    engine: FakeEngine, publisher: FakePublisher, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.add(make_container("x1", "docker.io/library/redis:7"))

    assert await reconciler.reconcile("x1") is False
    assert await reconciler.reconcile("gone") is False

    assert publisher.messages == []
    assert "inspect_container" not in engine.operations()
    assert reconciler.pass_count == 0


@pytest.mark.asyncio
async def test_reconcile_runs_for_admin_console_trigger(
    engine: FakeEngine, publisher: FakePublisher, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.add(make_container("a1", PGADMIN_IMAGE))

    assert await reconciler.reconcile("a1") is True
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_reconcile_skips_container_gone_before_inspection(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    engine.containers.append(make_container("c2"))  # listed, but not inspectable

    await reconciler.reconcile()

    assert [s.container_id for s in registry.get_all()] == ["c1"]


@pytest.mark.asyncio
async def test_failed_pass_keeps_previous_registry(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    await reconciler.reconcile()

    engine.failures["list_containers"] = ContainerEngineError("down", operation="list_containers")
    with pytest.raises(ContainerEngineError):
        await reconciler.reconcile()

    assert registry.get("c1") is not None


@pytest.mark.asyncio
async def test_publish_failure_is_logged_not_raised(
    engine: FakeEngine, registry: ServiceRegistry, caplog: pytest.LogCaptureFixture
) -> None:
    reconciler = ServiceReconciler(engine, registry, FakePublisher(error=TransportError("boom")))
    engine.add(make_container("c1"))

    with caplog.at_level(logging.WARNING):
        assert await reconciler.reconcile() is True

    assert registry.get("c1") is not None
    assert "Failed to publish services state" in caplog.text


# =============================================================================
# Event handling
# =============================================================================


def _queued(reconciler: ServiceReconciler) -> list[str | None]:
    items = []
    while not reconciler._triggers.empty():
        items.append(reconciler._triggers.get_nowait())
        reconciler._triggers.task_done()
    return items


def test_health_status_events_are_ignored(reconciler: ServiceReconciler) -> None:
    reconciler.handle_engine_event(EngineEvent("container", "health_status", "c1"))
    reconciler.handle_engine_event(EngineEvent("container", "health_status: healthy", "c1"))
    reconciler.handle_engine_event(EngineEvent("image", "pull", ""))
    assert _queued(reconciler) == []


def test_container_event_triggers_by_id(reconciler: ServiceReconciler) -> None:
    reconciler.handle_engine_event(EngineEvent("container", "start", "c1"))
    assert _queued(reconciler) == ["c1"]


@pytest.mark.parametrize("status", ["remove", "destroy"])
def test_removal_event_forces_full_pass(reconciler: ServiceReconciler, status: str) -> None:
    reconciler.handle_engine_event(EngineEvent("container", status, "c1"))
    assert _queued(reconciler) == [None]


@pytest.mark.asyncio
async def test_events_drive_reconciliation(
    engine: FakeEngine,
    registry: ServiceRegistry,
    publisher: FakePublisher,
    reconciler: ServiceReconciler,
) -> None:
    await reconciler.start()
    try:
        engine.add(make_container("c1"))
        engine.emit(EngineEvent("container", "start", "c1", ENGINE_ID))
        await asyncio.sleep(0)
        await reconciler.wait_idle()
        assert registry.get("c1") is not None

        engine.remove("c1")
        engine.emit(EngineEvent("container", "remove", "c1", ENGINE_ID))
        await asyncio.sleep(0)
        await reconciler.wait_idle()
        assert registry.get("c1") is None
        assert publisher.messages[-1]["body"] == []
    finally:
        await reconciler.stop()

    assert not reconciler.is_running


@pytest.mark.asyncio
async def test_provider_event_forces_full_pass(
    engine: FakeEngine, registry: ServiceRegistry, reconciler: ServiceReconciler
) -> None:
    await reconciler.start()
    try:
        engine.add(make_container("c1"))
        engine.emit_provider(ProviderEvent(ProviderEventKind.STARTED, "podman"))
        await asyncio.sleep(0)
        await reconciler.wait_idle()
        assert registry.get("c1") is not None
    finally:
        await reconciler.stop()


@pytest.mark.asyncio
async def test_queued_triggers_are_coalesced(
    engine: FakeEngine, reconciler: ServiceReconciler
) -> None:
    engine.add(make_container("c1"))
    reconciler.notify("c1")
    reconciler.notify("c1")
    reconciler.notify(None)

    await reconciler.start()
    try:
        await reconciler.wait_idle()
    finally:
        await reconciler.stop()

    assert engine.operations().count("list_containers") == 1
    assert reconciler.pass_count == 1


@pytest.mark.asyncio
async def test_consumer_survives_failed_pass(
    engine: FakeEngine,
    registry: ServiceRegistry,
    reconciler: ServiceReconciler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine.add(make_container("c1"))
    engine.failures["list_containers"] = ContainerEngineError("down", operation="list_containers")

    await reconciler.start()
    try:
        reconciler.notify(None)
        await reconciler.wait_idle()
        assert "Reconciliation failed" in caplog.text

        del engine.failures["list_containers"]
        reconciler.notify(None)
        await reconciler.wait_idle()
        assert registry.get("c1") is not None
    finally:
        await reconciler.stop()


@pytest.mark.asyncio
async def test_failed_event_subscription_is_logged_and_stop_completes(
    engine: FakeEngine, reconciler: ServiceReconciler, caplog: pytest.LogCaptureFixture
) -> None:
    async def _broken_events():
        raise ContainerEngineError("stream closed", operation="events")
        yield

    engine.events = _broken_events

    with caplog.at_level(logging.ERROR):
        await reconciler.start()
        await asyncio.sleep(0)
        await reconciler.stop()

    assert "Engine event subscription failed" in caplog.text
    assert not reconciler.is_running
