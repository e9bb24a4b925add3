"""Provisioning of new database services.

ServiceProvisioner.create_service runs the whole creation workflow against
the container engine:

1. Validate the request (an admin console needs its port)
2. Select the first started Podman provider connection
3. Pull the database image
4. Resolve the engine of that provider
5. Create a pod publishing both ports, when an admin console shares a pod
6. Create the database container (not started), staging init scripts
7. Without an admin console, start the database container and stop there
8. Otherwise pull the admin console image, stage its server registration and
   credentials files, create it, and start the pod (or both containers)

Each stage aborts the whole request on failure. Objects already created in
the engine are left in place and reported in the error log; they are never
started, so they do not show up as running services.

Staged files live under ``settings.storage_path``, one freshly created
directory per run.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from dbservices.core.exceptions import InvalidInputError, NoEngineError, NoProviderError
from dbservices.core.logging import get_logger, sanitize_error
from dbservices.core.paths import translate_for_runtime
from dbservices.core.ports import find_available_port
from dbservices.services.classifier import (
    ADMIN_CONSOLE_HTTP_PORT,
    ADMIN_CONSOLE_PORT_LABEL,
    BASE_IMAGE_LABEL,
    DATABASE_PORT,
    DEFAULT_USER,
    SERVICE_CONTAINER_LABEL,
)
from dbservices.services.engine.models import (
    BindMount,
    ContainerCreateOptions,
    HealthCheck,
    PodHandle,
    PortMapping,
    ProviderConnection,
)

if TYPE_CHECKING:
    from dbservices.core.config import Settings
    from dbservices.core.protocols import ContainerEngineProtocol

logger = get_logger(__name__)

SUPPORTED_PROVIDER_TYPE = "podman"

INIT_SCRIPTS_DIR = "/docker-entrypoint-initdb.d"
SERVERS_JSON_PATH = "/pgadmin4/servers.json"
PGPASS_MOUNT_PATH = "/pgpass"
PGPASS_PATH = "/var/lib/pgadmin/pgpass"
# uid/gid the admin console runs as inside its image
ADMIN_CONSOLE_UID = 5050

POD_HOST = "localhost"
STANDALONE_HOST = "host.containers.internal"
ALL_INTERFACES = "0.0.0.0"


@dataclass(frozen=True, slots=True)
class InitScript:
    """A script run by the database on first boot."""

    name: str
    content: str


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """Input to service creation.

    Attributes:
        image: Database image reference, with tag
        port: Host port to publish the database on
        password: Database password
        db_name: Database name (image default when None)
        user: Database user (image default when None)
        admin_console: Whether to create a paired admin console
        admin_console_port: Host port of the admin console (required with
                            ``admin_console``)
        init_scripts: Scripts run on first boot
        bake_init_scripts: Build the scripts into a derived image instead of
                           mounting them
    """

    image: str
    port: int
    password: str
    db_name: str | None = None
    user: str | None = None
    admin_console: bool = False
    admin_console_port: int | None = None
    init_scripts: tuple[InitScript, ...] = field(default_factory=tuple)
    bake_init_scripts: bool = False


def validate_request(name: str, request: ProvisioningRequest) -> None:
    """Reject malformed requests before any engine call.

    Raises:
        InvalidInputError: If the request cannot be provisioned
    """
    if request.admin_console and request.admin_console_port is None:
        raise InvalidInputError(
            "admin console port is required when an admin console is requested",
            field="admin_console_port",
            constraint="required with admin_console",
        )
    if not name.strip():
        raise InvalidInputError("service name must not be empty", field="name")
    if not request.password:
        raise InvalidInputError("password must not be empty", field="password")
    for script in request.init_scripts:
        if not script.name or Path(script.name).name != script.name:
            raise InvalidInputError(
                "init script name must be a plain file name",
                field="init_scripts",
                value=script.name,
            )


def _pgpass_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:")


def render_pgpass(host: str, port: int, db_name: str, user: str, password: str) -> str:
    """One ``host:port:db:user:password`` line with separators escaped."""
    fields = (host, str(port), db_name, user, password)
    return ":".join(_pgpass_escape(f) for f in fields) + "\n"


def render_servers_json(name: str, host: str, port: int, db_name: str, user: str) -> str:
    """Server registration descriptor loaded by the admin console at startup."""
    servers = {
        "Servers": {
            "1": {
                "Name": name,
                "Group": "Servers",
                "Host": host,
                "Port": port,
                "MaintenanceDB": db_name,
                "Username": user,
                "SSLMode": "prefer",
                "PassFile": PGPASS_PATH,
            }
        }
    }
    return json.dumps(servers, indent=2)


def render_containerfile(base_image: str) -> str:
    return (
        f"FROM {base_image}\n"
        f"COPY initdb/ {INIT_SCRIPTS_DIR}/\n"
        f'LABEL {BASE_IMAGE_LABEL}="{base_image}"\n'
    )


def admin_console_entrypoint() -> tuple[str, ...]:
    """Install the credentials file with restricted access, then hand over."""
    owner = f"{ADMIN_CONSOLE_UID}:{ADMIN_CONSOLE_UID}"
    script = (
        f"cp -f {PGPASS_MOUNT_PATH} {PGPASS_PATH} && "
        f"chown {owner} {PGPASS_PATH} && "
        f"chmod 600 {PGPASS_PATH} && "
        "/entrypoint.sh"
    )
    return ("/bin/sh", "-c", script)


ADMIN_CONSOLE_HEALTH_CHECK = HealthCheck(
    test=(
        "CMD-SHELL",
        f"wget -O - http://localhost:{ADMIN_CONSOLE_HTTP_PORT}/misc/ping || exit 1",
    ),
)


# =============================================================================
# Staging
# =============================================================================


def _make_run_dir(storage_root: Path, prefix: str) -> Path:
    storage_root.mkdir(parents=True, exist_ok=True)
    # mkdtemp creates the directory with mode 0700
    return Path(tempfile.mkdtemp(prefix=prefix, dir=storage_root))


def _write_private(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")
    path.chmod(0o600)


def stage_init_scripts(storage_root: Path, scripts: tuple[InitScript, ...]) -> Path:
    """Write init scripts into a new private directory and return it."""
    run_dir = _make_run_dir(storage_root, "init-")
    for script in scripts:
        _write_private(run_dir / script.name, script.content)
    return run_dir


def stage_build_context(
    storage_root: Path, base_image: str, scripts: tuple[InitScript, ...]
) -> Path:
    """Write a Containerfile plus the init scripts into a new build context."""
    run_dir = _make_run_dir(storage_root, "build-")
    scripts_dir = run_dir / "initdb"
    scripts_dir.mkdir(mode=0o700)
    for script in scripts:
        # Readable inside the image by the database user
        (scripts_dir / script.name).write_text(script.content, encoding="utf-8")
    (run_dir / "Containerfile").write_text(render_containerfile(base_image), encoding="utf-8")
    return run_dir


def stage_admin_console_files(
    storage_root: Path,
    *,
    name: str,
    host: str,
    port: int,
    db_name: str,
    user: str,
    password: str,
) -> tuple[Path, Path]:
    """Write servers.json and pgpass into a new private directory.

    Returns:
        Paths of the servers.json and pgpass files
    """
    run_dir = _make_run_dir(storage_root, "pgadmin-")
    servers_file = run_dir / "servers.json"
    pgpass_file = run_dir / "pgpass"
    _write_private(servers_file, render_servers_json(name, host, port, db_name, user))
    _write_private(pgpass_file, render_pgpass(host, port, db_name, user, password))
    return servers_file, pgpass_file


# =============================================================================
# Provisioner
# =============================================================================


class ServiceProvisioner:
    """Creates database services, optionally paired with an admin console."""

    def __init__(self, engine: ContainerEngineProtocol, settings: Settings) -> None:
        self._engine = engine
        self._settings = settings
        self._storage_root = Path(settings.storage_path).expanduser()

    def select_provider(self) -> ProviderConnection:
        """Pick the first started Podman provider connection.

        Raises:
            NoProviderError: If no such connection exists
        """
        for connection in self._engine.list_provider_connections():
            if connection.type == SUPPORTED_PROVIDER_TYPE and connection.started:
                return connection
        raise NoProviderError()

    async def resolve_engine_id(self, provider: ProviderConnection) -> str:
        """First engine reported by the provider.

        Raises:
            NoEngineError: If the provider reports no engine
        """
        engines = await self._engine.list_engines(provider)
        if not engines:
            raise NoEngineError(provider=provider.name)
        return engines[0].engine_id

    async def create_service(self, name: str, request: ProvisioningRequest) -> str:
        """Create and start a database service.

        Args:
            name: Name of the database container
            request: What to provision

        Returns:
            ID of the database container

        Raises:
            InvalidInputError: If the request is malformed
            NoProviderError: If no started Podman provider exists
            NoEngineError: If the provider has no engine
            ContainerEngineError: If an engine call fails
        """
        validate_request(name, request)
        provider = self.select_provider()
        in_pod = request.admin_console and self._settings.use_pods
        logger.info(
            f"Provisioning service {name}",
            extra={
                "service_name": name,
                "image": request.image,
                "provider": provider.name,
                "admin_console": request.admin_console,
                "pod": in_pod,
            },
        )

        await self._engine.pull_image(provider, request.image)
        engine_id = await self.resolve_engine_id(provider)

        admin_port: int | None = None
        if request.admin_console and request.admin_console_port is not None:
            admin_port = (
                request.admin_console_port
                if in_pod
                else await asyncio.to_thread(
                    find_available_port, request.admin_console_port, exclude={request.port}
                )
            )

        created: list[str] = []
        try:
            pod: PodHandle | None = None
            if in_pod and admin_port is not None:
                pod = await self._create_pod(provider, name, request.port, admin_port)
                created.append(f"pod:{pod.pod_id}")

            container_id = await self._create_primary(
                provider, engine_id, name, request, pod, admin_port
            )
            created.append(f"container:{container_id}")

            if admin_port is None:
                await self._engine.start_container(engine_id, container_id)
                logger.info(
                    f"Service {name} started",
                    extra={"service_name": name, "container_id": container_id},
                )
                return container_id

            await self._engine.pull_image(provider, self._settings.admin_console_image)
            console_id = await self._create_admin_console(
                engine_id, name, request, container_id, pod, admin_port
            )
            created.append(f"container:{console_id}")

            if pod is not None:
                await self._engine.start_pod(engine_id, pod.pod_id)
            else:
                await self._engine.start_container(engine_id, container_id)
                await self._engine.start_container(engine_id, console_id)
        except Exception as e:
            if created:
                logger.error(
                    f"Provisioning of {name} failed, leaving unstarted objects behind: "
                    f"{sanitize_error(e)}",
                    extra={
                        "service_name": name,
                        "engine_id": engine_id,
                        "created_objects": created,
                    },
                )
            raise

        logger.info(
            f"Service {name} started with admin console on port {admin_port}",
            extra={
                "service_name": name,
                "container_id": container_id,
                "admin_console_id": console_id,
                "admin_console_port": admin_port,
            },
        )
        return container_id

    # =========================================================================
    # Stages
    # =========================================================================

    async def _create_pod(
        self, provider: ProviderConnection, name: str, port: int, admin_port: int
    ) -> PodHandle:
        mappings = [
            PortMapping(container_port=DATABASE_PORT, host_port=port, host_ip=ALL_INTERFACES),
            PortMapping(
                container_port=ADMIN_CONSOLE_HTTP_PORT, host_port=admin_port, host_ip=ALL_INTERFACES
            ),
        ]
        return await self._engine.create_pod(provider, f"pod-{name}", mappings)

    async def _primary_image(
        self, provider: ProviderConnection, name: str, request: ProvisioningRequest
    ) -> str:
        if not (request.bake_init_scripts and request.init_scripts):
            return request.image
        context_dir = await asyncio.to_thread(
            stage_build_context, self._storage_root, request.image, request.init_scripts
        )
        tag = f"localhost/{name.lower()}-initdb:latest"
        await self._engine.build_image(
            provider, context_dir, tag, labels={BASE_IMAGE_LABEL: request.image}
        )
        return tag

    async def _create_primary(
        self,
        provider: ProviderConnection,
        engine_id: str,
        name: str,
        request: ProvisioningRequest,
        pod: PodHandle | None,
        admin_port: int | None,
    ) -> str:
        env: dict[str, str] = {"POSTGRES_PASSWORD": request.password}
        if request.db_name:
            env["POSTGRES_DB"] = request.db_name
        if request.user:
            env["POSTGRES_USER"] = request.user

        labels = {BASE_IMAGE_LABEL: request.image}
        if admin_port is not None:
            labels[ADMIN_CONSOLE_PORT_LABEL] = str(admin_port)

        binds: tuple[BindMount, ...] = ()
        if request.init_scripts and not request.bake_init_scripts:
            scripts_dir = await asyncio.to_thread(
                stage_init_scripts, self._storage_root, request.init_scripts
            )
            binds = (
                BindMount(
                    source=translate_for_runtime(str(scripts_dir)),
                    destination=INIT_SCRIPTS_DIR,
                    read_only=True,
                ),
            )

        options = ContainerCreateOptions(
            image=await self._primary_image(provider, name, request),
            name=name,
            env=env,
            labels=labels,
            pod_id=pod.pod_id if pod else None,
            port_mappings=()
            if pod
            else (PortMapping(container_port=DATABASE_PORT, host_port=request.port),),
            binds=binds,
        )
        return await self._engine.create_container(engine_id, options)

    async def _create_admin_console(
        self,
        engine_id: str,
        name: str,
        request: ProvisioningRequest,
        container_id: str,
        pod: PodHandle | None,
        admin_port: int,
    ) -> str:
        user = request.user or DEFAULT_USER
        db_name = request.db_name or user
        host, port = (POD_HOST, DATABASE_PORT) if pod else (STANDALONE_HOST, request.port)

        servers_file, pgpass_file = await asyncio.to_thread(
            stage_admin_console_files,
            self._storage_root,
            name=name,
            host=host,
            port=port,
            db_name=db_name,
            user=user,
            password=request.password,
        )

        labels: dict[str, str] = {}
        port_mappings: tuple[PortMapping, ...] = ()
        if pod is None:
            labels = {
                SERVICE_CONTAINER_LABEL: container_id,
                ADMIN_CONSOLE_PORT_LABEL: str(admin_port),
            }
            port_mappings = (
                PortMapping(container_port=ADMIN_CONSOLE_HTTP_PORT, host_port=admin_port),
            )

        options = ContainerCreateOptions(
            image=self._settings.admin_console_image,
            name=f"{name}-pgadmin",
            env={
                "PGADMIN_DEFAULT_EMAIL": self._settings.admin_console_email,
                "PGADMIN_DEFAULT_PASSWORD": self._settings.admin_console_password,
                "PGADMIN_CONFIG_SERVER_MODE": "False",
                "PGADMIN_CONFIG_MASTER_PASSWORD_REQUIRED": "False",
            },
            labels=labels,
            pod_id=pod.pod_id if pod else None,
            port_mappings=port_mappings,
            binds=(
                BindMount(
                    source=translate_for_runtime(str(servers_file)),
                    destination=SERVERS_JSON_PATH,
                    read_only=True,
                ),
                BindMount(
                    source=translate_for_runtime(str(pgpass_file)),
                    destination=PGPASS_MOUNT_PATH,
                    read_only=True,
                ),
            ),
            entrypoint=admin_console_entrypoint(),
            health_check=ADMIN_CONSOLE_HEALTH_CHECK,
        )
        return await self._engine.create_container(engine_id, options)
