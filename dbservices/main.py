"""FastAPI application entry point for the database services manager."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dbservices.api.exception_handlers import register_exception_handlers
from dbservices.api.middleware import RequestIDMiddleware
from dbservices.api.routes import services, websocket
from dbservices.core import get_logger, get_settings, setup_logging
from dbservices.services.engine import PodmanEngine
from dbservices.services.services_manager import ServicesManager
from dbservices.services.state_publisher import WebSocketStatePublisher

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle - startup and shutdown events."""
    setup_logging()
    settings = get_settings()

    engine = PodmanEngine(
        settings.engine_connections,
        poll_interval=settings.provider_poll_interval_seconds,
    )
    publisher = WebSocketStatePublisher()
    manager = ServicesManager(engine, publisher, settings)

    # Probe connections so the initial pass sees live containers, then
    # subscribe before the engine announces its providers
    await engine.refresh_provider_status()
    await manager.start()
    await engine.start()
    app.state.state_publisher = publisher
    app.state.services_manager = manager
    logger.info(
        f"{settings.app_name} started",
        extra={"connections": [c.name for c in settings.engine_connections]},
    )

    yield

    app.state.services_manager = None
    await manager.stop()
    await publisher.close()
    await engine.close()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title="Database Services API",
    description="Discovers, tracks and provisions database service containers",
    version=get_settings().app_version,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(services.router)
app.include_router(websocket.router)


@app.get("/")
async def root() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "message": "Database Services API"}


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
