"""Pydantic schemas for the database services API."""

from pydantic import BaseModel, ConfigDict, Field

from dbservices.services.provisioner import InitScript, ProvisioningRequest


class ServiceInfo(BaseModel):
    """A tracked database service."""

    model_config = ConfigDict(from_attributes=True)

    container_id: str = Field(..., description="Container ID")
    engine_id: str = Field(..., description="Engine the container lives in")
    name: str = Field(..., description="Container name")
    running: bool = Field(..., description="Whether the container is running")
    image_name: str = Field(
        ...,
        description="Catalog label of the image (e.g. 'pgvector/pgvector') or its repository",
    )
    image_version: str = Field(..., description="Image tag, 'unknown' when untagged")
    port: int = Field(..., description="Host port of the database (0 when not published)", ge=0)
    db_name: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    admin_console: bool = Field(False, description="Whether an admin console is paired")
    admin_console_port: int | None = Field(None, description="Host port of the admin console")


class ServicesResponse(BaseModel):
    services: list[ServiceInfo]


class ConnectionStringsResponse(BaseModel):
    """Connection strings of a service, with the password masked and in clear."""

    model_config = ConfigDict(from_attributes=True)

    uri: str = Field(..., description="postgresql:// URI with the password masked")
    uri_clear: str = Field(..., description="postgresql:// URI with the password")
    kv: str = Field(..., description="Key-value connection string with the password masked")
    kv_clear: str = Field(..., description="Key-value connection string with the password")


class ServiceImage(BaseModel):
    prefix: str = Field(..., description="Image-name prefix (e.g. 'docker.io/library/postgres:')")
    label: str = Field(..., description="Display label")


class ServiceImagesResponse(BaseModel):
    images: list[ServiceImage]


class FreePortResponse(BaseModel):
    port: int = Field(..., ge=1, le=65535)


class InitScriptRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Script file name")
    content: str = Field(..., description="Script body")


class CreateServiceRequest(BaseModel):
    """Request body for creating a database service."""

    name: str = Field(..., min_length=1, max_length=128, description="Container name")
    image: str = Field(
        ...,
        min_length=1,
        description="Image reference with tag (e.g. 'docker.io/library/postgres:16')",
    )
    port: int = Field(..., ge=1, le=65535, description="Host port for the database")
    password: str = Field(..., min_length=1, description="Database password")
    db_name: str | None = Field(None, description="Database name")
    user: str | None = Field(None, description="Database user")
    admin_console: bool = Field(False, description="Create a paired admin console")
    admin_console_port: int | None = Field(
        None, ge=1, le=65535, description="Host port for the admin console"
    )
    init_scripts: list[InitScriptRequest] = Field(
        default_factory=list, description="Scripts run by the database on first boot"
    )
    bake_init_scripts: bool = Field(
        False, description="Build the init scripts into a derived image instead of mounting them"
    )

    def to_provisioning_request(self) -> ProvisioningRequest:
        return ProvisioningRequest(
            image=self.image,
            port=self.port,
            password=self.password,
            db_name=self.db_name or None,
            user=self.user or None,
            admin_console=self.admin_console,
            admin_console_port=self.admin_console_port,
            init_scripts=tuple(InitScript(s.name, s.content) for s in self.init_scripts),
            bake_init_scripts=self.bake_init_scripts,
        )


class CreateServiceResponse(BaseModel):
    container_id: str = Field(..., description="ID of the database container")
