"""Container classification for database services and admin consoles.

Pure predicates over ContainerInfo values deciding whether a container is a
database service, whether it is an admin console, and whether an admin
console belongs to a given service.

Key Components:
- SERVICE_IMAGES: ordered catalog of image-name prefixes to display labels
- ADMIN_CONSOLE_IMAGE: default repository name of the admin console image
- Label keys recorded on provisioned containers
- PAIRING_STRATEGIES: ranked admin console pairing rules, first match wins

Usage:
    services = [c for c in containers if is_service_image(c)]
    consoles = [c for c in containers if is_admin_console_image(c)]
    console = find_admin_console(services[0], consoles)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from types import MappingProxyType

from dbservices.services.engine.models import ContainerInfo

# First matching prefix wins, so more specific prefixes go first.
SERVICE_IMAGES: MappingProxyType[str, str] = MappingProxyType(
    {
        "docker.io/library/postgres:": "postgres Docker Official Image",
        "docker.io/pgvector/pgvector:": "pgvector/pgvector",
    }
)

ADMIN_CONSOLE_IMAGE = "docker.io/dpage/pgadmin4"

# Image the container was derived from (set on every provisioned service)
BASE_IMAGE_LABEL = "postgres.baseImage"
# Service container a standalone admin console belongs to
SERVICE_CONTAINER_LABEL = "postgres.containerId"
# Host port of the admin console
ADMIN_CONSOLE_PORT_LABEL = "pgadmin.port"

UNKNOWN_VERSION = "unknown"

DATABASE_PORT = 5432
ADMIN_CONSOLE_HTTP_PORT = 80
DEFAULT_USER = "postgres"


def split_image_reference(image: str) -> tuple[str, str | None]:
    """Split an image reference into repository and tag.

    Only a colon after the last slash separates a tag, so registry ports
    (``localhost:5000/db``) are kept in the repository.
    """
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon], image[colon + 1 :]
    return image, None


def match_catalog_prefix(image: str) -> str | None:
    """Return the first catalog prefix the image reference starts with."""
    return next((prefix for prefix in SERVICE_IMAGES if image.startswith(prefix)), None)


def is_service_image(container: ContainerInfo) -> bool:
    """Check whether a container runs a known database image.

    The base-image label is checked as well as the container's own image so
    that containers built from a derived image are still recognized.
    """
    base_image = container.labels.get(BASE_IMAGE_LABEL) if container.labels else None
    if base_image and match_catalog_prefix(base_image) is not None:
        return True
    return match_catalog_prefix(container.image) is not None


def admin_console_repositories(configured_image: str | None = None) -> frozenset[str]:
    """Repositories recognized as admin consoles.

    The default repository always counts, so consoles created before the
    image was reconfigured (for a mirror, say) stay paired.
    """
    repositories = {ADMIN_CONSOLE_IMAGE}
    if configured_image:
        repositories.add(split_image_reference(configured_image)[0])
    return frozenset(repositories)


def is_admin_console_image(
    container: ContainerInfo,
    repositories: frozenset[str] = frozenset({ADMIN_CONSOLE_IMAGE}),
) -> bool:
    repository, _tag = split_image_reference(container.image)
    return repository in repositories


def is_admin_console_for_service(admin: ContainerInfo, service: ContainerInfo) -> bool:
    """Check whether an admin console's label points at the service container."""
    if not admin.labels:
        return False
    return admin.labels.get(SERVICE_CONTAINER_LABEL) == service.id


def shares_pod(admin: ContainerInfo, service: ContainerInfo) -> bool:
    return admin.pod_id is not None and admin.pod_id == service.pod_id


PairingStrategy = Callable[[ContainerInfo, ContainerInfo], bool]

# Evaluated in order; pod membership outranks the label cross-reference.
PAIRING_STRATEGIES: tuple[PairingStrategy, ...] = (
    shares_pod,
    is_admin_console_for_service,
)


def find_admin_console(
    service: ContainerInfo,
    candidates: Iterable[ContainerInfo],
    strategies: tuple[PairingStrategy, ...] = PAIRING_STRATEGIES,
) -> ContainerInfo | None:
    """Find the admin console paired with a service container.

    Args:
        service: Service container
        candidates: Admin console containers
        strategies: Pairing rules, tried in order

    Returns:
        The first candidate matched by the highest-ranked strategy, or None
    """
    consoles = list(candidates)
    for strategy in strategies:
        for console in consoles:
            if strategy(console, service):
                return console
    return None


def friendly_image_name(image: str) -> str:
    """Display name for an image reference.

    Catalog images get their catalog label; anything else is shown as its
    repository name without the tag.
    """
    prefix = match_catalog_prefix(image)
    if prefix is not None:
        return SERVICE_IMAGES[prefix]
    repository, _tag = split_image_reference(image)
    return repository


def image_version(image: str) -> str:
    """Tag of an image reference, or "unknown" when it has none."""
    _repository, tag = split_image_reference(image)
    return tag if tag else UNKNOWN_VERSION
