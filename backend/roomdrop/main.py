"""Roomdrop Backend Application.

This is the main entry point for the roomdrop relay service. Roomdrop lets
two peers on the same local network exchange files and whole folders
through a room-scoped WebSocket relay that never stores the payload.

Modules:
    - relay: Room registry and WebSocket frame relay
    - protocol: Event catalogue and frame codec
    - transfer: Chunked sender, reception assembler, folder aggregator
    - client: WebSocket peer client built on the transfer layer
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from roomdrop.config import AppSettings, get_config
from roomdrop.relay.router import file_share_endpoint, router as relay_router
from roomdrop.relay.service import RelayService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# websockets logs every frame at DEBUG, uvicorn.access logs every request.
for _noisy in (
    "websockets",
    "websockets.client",
    "websockets.server",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppSettings = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in roomdrop.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    relay: RelayService = app.state.relay
    await relay.start()
    logger.info(
        f"Relay listening on ws://{config.server.host}:{config.server.port}{config.relay.path}"
    )

    yield  # Application runs here

    # Shutdown
    await relay.stop()
    logger.info("Application shutdown complete")


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application with its own RelayService.

    Args:
        settings: Settings to use; loaded from roomdrop.settings.yaml if omitted.

    Returns:
        The configured application. The relay is started by the lifespan.
    """
    config = settings or get_config()

    application = FastAPI(
        title="Roomdrop API",
        description="Room-scoped relay for LAN file and folder transfers",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.config = config
    application.state.relay = RelayService(config.relay)

    application.include_router(relay_router)
    application.add_api_websocket_route(config.relay.path, file_share_endpoint)

    @application.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return application


# Application served by `uvicorn roomdrop.main:app`
app = create_app()


def serve(settings: Optional[AppSettings] = None) -> None:
    """Run the relay under uvicorn with the configured message-size ceiling."""
    import uvicorn

    config = settings or get_config()
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        ws_max_size=config.relay.max_message_size,
    )


if __name__ == "__main__":
    serve()
