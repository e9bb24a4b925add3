"""REST API endpoints for database services.

Provides endpoints for listing tracked services, reading their connection
strings, browsing the image catalog, finding a free port and creating new
services.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from dbservices.api.schemas.services import (
    ConnectionStringsResponse,
    CreateServiceRequest,
    CreateServiceResponse,
    FreePortResponse,
    ServiceImage,
    ServiceImagesResponse,
    ServiceInfo,
    ServicesResponse,
)

router = APIRouter(prefix="/api/services", tags=["services"])


async def get_services_manager(request: Request) -> Any:
    """Get the services manager from app state.

    Raises:
        HTTPException: 503 if the manager is not available
    """
    manager = getattr(request.app.state, "services_manager", None)
    if manager is None:
        raise HTTPException(503, "Services manager not available")
    return manager


@router.get(
    "",
    response_model=ServicesResponse,
    responses={503: {"description": "Services manager not available"}},
)
async def list_services(manager: Any = Depends(get_services_manager)) -> ServicesResponse:
    """List tracked database services."""
    return ServicesResponse(
        services=[ServiceInfo.model_validate(s) for s in manager.get_services()]
    )


@router.get("/images", response_model=ServiceImagesResponse)
async def list_service_images(
    manager: Any = Depends(get_services_manager),
) -> ServiceImagesResponse:
    """Image-name prefixes a new service can be created from, in match order."""
    images = manager.get_service_images()
    return ServiceImagesResponse(
        images=[ServiceImage(prefix=prefix, label=label) for prefix, label in images.items()]
    )


@router.get(
    "/free-port",
    response_model=FreePortResponse,
    responses={400: {"description": "No free port at or above the hint"}},
)
async def get_free_port(
    port: int = Query(..., ge=1, le=65535, description="Port to start searching from"),
    manager: Any = Depends(get_services_manager),
) -> FreePortResponse:
    """First free host port at or above ``port``."""
    return FreePortResponse(port=await manager.get_free_port(port))


@router.get(
    "/{container_id}",
    response_model=ServiceInfo,
    responses={404: {"description": "Service not found"}},
)
async def get_service(
    container_id: str,
    manager: Any = Depends(get_services_manager),
) -> ServiceInfo:
    """Full details of one tracked service."""
    return ServiceInfo.model_validate(manager.get_service_details(container_id))


@router.get(
    "/{container_id}/connection-strings",
    response_model=ConnectionStringsResponse,
    responses={404: {"description": "Service not found"}},
)
async def get_connection_strings(
    container_id: str,
    manager: Any = Depends(get_services_manager),
) -> ConnectionStringsResponse:
    """Connection strings of a tracked service."""
    return ConnectionStringsResponse.model_validate(manager.get_connection_strings(container_id))


@router.post(
    "",
    response_model=CreateServiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid request"},
        412: {"description": "No started provider or engine"},
        503: {"description": "Container engine call failed"},
    },
)
async def create_service(
    body: CreateServiceRequest,
    manager: Any = Depends(get_services_manager),
) -> CreateServiceResponse:
    """Create a database service, optionally with an admin console.

    The new container shows up in the service list on the next
    reconciliation pass.
    """
    container_id = await manager.create_service(body.name, body.to_provisioning_request())
    return CreateServiceResponse(container_id=container_id)
