"""Unit tests for ServicesManager."""

from __future__ import annotations

import asyncio
import logging
import threading
from unittest.mock import patch

import pytest
import pytest_asyncio

from conftest import POSTGRES_IMAGE, FakeEngine, FakePublisher, make_container
from dbservices.core.config import Settings
from dbservices.core.exceptions import ContainerEngineError, ServiceNotFoundError
from dbservices.services.classifier import ADMIN_CONSOLE_PORT_LABEL, SERVICE_IMAGES
from dbservices.services.provisioner import ProvisioningRequest
from dbservices.services.services_manager import ServicesManager


@pytest_asyncio.fixture
async def manager(engine: FakeEngine, publisher: FakePublisher, settings: Settings):
    manager = ServicesManager(engine, publisher, settings)
    yield manager
    await manager.stop()


@pytest.mark.asyncio
async def test_start_runs_initial_pass(
    engine: FakeEngine, publisher: FakePublisher, manager: ServicesManager
) -> None:
    engine.add(make_container("c1", name="mydb"), env={"POSTGRES_PASSWORD": "pw"})

    await manager.start()

    assert [s.container_id for s in manager.get_services()] == ["c1"]
    assert manager.reconciler.is_running
    assert len(publisher.messages) == 1


@pytest.mark.asyncio
async def test_start_survives_unreachable_engine(
    engine: FakeEngine, manager: ServicesManager, caplog: pytest.LogCaptureFixture
) -> None:
    engine.failures["list_containers"] = ContainerEngineError("connection refused")

    with caplog.at_level(logging.WARNING):
        await manager.start()

    assert manager.get_services() == []
    assert "Initial reconciliation failed" in caplog.text


@pytest.mark.asyncio
async def test_consoles_from_configured_mirror_image_are_paired(
    engine: FakeEngine, publisher: FakePublisher, settings: Settings
) -> None:
    mirror = "registry.local:5000/mirror/pgadmin4:8.6"
    manager = ServicesManager(
        engine, publisher, settings.model_copy(update={"admin_console_image": mirror})
    )
    engine.add(make_container("c1", pod_id="p1", labels={ADMIN_CONSOLE_PORT_LABEL: "8080"}))
    engine.add(make_container("a1", mirror, pod_id="p1"))

    await manager.start()
    try:
        service = manager.get_service_details("c1")
    finally:
        await manager.stop()

    assert (service.admin_console, service.admin_console_port) == (True, 8080)


@pytest.mark.asyncio
async def test_details_and_connection_strings(
    engine: FakeEngine, manager: ServicesManager
) -> None:
    engine.add(
        make_container("c1", name="mydb"),
        env={"POSTGRES_PASSWORD": "pw", "POSTGRES_USER": "alice", "POSTGRES_DB": "shop"},
    )
    await manager.reconciler.reconcile()

    service = manager.get_service_details("c1")
    assert service.user == "alice"
    assert (
        manager.get_connection_strings("c1").uri_clear
        == f"postgresql://alice:pw@localhost:{service.port}/shop"
    )


@pytest.mark.asyncio
async def test_unknown_service(manager: ServicesManager) -> None:
    with pytest.raises(ServiceNotFoundError):
        manager.get_service_details("missing")
    with pytest.raises(ServiceNotFoundError):
        manager.get_connection_strings("missing")


@pytest.mark.asyncio
async def test_service_images_are_a_copy(manager: ServicesManager) -> None:
    images = manager.get_service_images()
    assert images == SERVICE_IMAGES
    images.clear()
    assert manager.get_service_images() == SERVICE_IMAGES


@pytest.mark.asyncio
async def test_free_port(manager: ServicesManager) -> None:
    probed_from: list[int] = []

    def _available(port: int) -> bool:
        probed_from.append(threading.get_ident())
        return port != 5432

    with patch("dbservices.core.ports.check_port_available", side_effect=_available):
        assert await manager.get_free_port(5432) == 5433

    assert threading.get_ident() not in probed_from


@pytest.mark.asyncio
async def test_create_service_calls_are_serialized(
    engine: FakeEngine, manager: ServicesManager
) -> None:
    in_flight = 0
    peak = 0
    original_pull = engine.pull_image

    async def slow_pull(connection, image):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        await original_pull(connection, image)

    engine.pull_image = slow_pull  # type: ignore[method-assign]
    request = ProvisioningRequest(image=POSTGRES_IMAGE, port=15432, password="pw")

    ids = await asyncio.gather(
        manager.create_service("db1", request),
        manager.create_service("db2", request),
    )

    assert peak == 1
    assert len(set(ids)) == 2
    assert [o.name for o in engine.created.values()] == ["db1", "db2"]
