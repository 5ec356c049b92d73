"""
WebSocket Gateway application.

create_app() binds a GatewayServer to a FastAPI app; the lifespan handler
starts and stops it. There is no module-level server: `uvicorn --factory
ws_gateway.main:create_default_app` builds one from settings.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from shared.config.logging import setup_logging, ws_gateway_logger as logger
from shared.config.settings import get_settings
from ws_gateway import __version__
from ws_gateway.components.core.constants import allowed_origins_list
from ws_gateway.components.endpoints.base import GatewayEndpoint
from ws_gateway.server import GatewayServer


def create_app(server: GatewayServer, configure_logging: bool = False) -> FastAPI:
    """
    Build the FastAPI application for a server.

    Args:
        server: The gateway server to expose.
        configure_logging: Install the application log handlers on startup.
    """
    settings = server.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(settings)
        errors = settings.validate_production_secrets()
        for error in errors:
            logger.warning("Configuration problem", error=error)

        logger.info(
            "Starting WebSocket Gateway",
            port=settings.ws_gateway_port,
            env=settings.environment,
        )
        await server.start()

        yield

        logger.info("Shutting down WebSocket Gateway")
        await server.stop()

    app = FastAPI(
        title="Restaurant Realtime Gateway",
        description="Real-time order and table events for restaurant staff",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.server = server

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins_list(settings),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health")
    def health_check():
        """Liveness and uptime for external monitoring. Unauthenticated."""
        return server.health()

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/ws")
    async def gateway_websocket(websocket: WebSocket):
        """
        Staff connection. Credential via `?token=` or `Authorization: Bearer`.
        """
        endpoint = GatewayEndpoint(websocket, server)
        await endpoint.run()

    return app


def create_default_app() -> FastAPI:
    """App factory for uvicorn: SQLAlchemy-backed server from settings."""
    from shared.infrastructure.status_store import SqlAlchemyStatusStore

    settings = get_settings()
    server = GatewayServer(store=SqlAlchemyStatusStore.from_url(settings.database_url), settings=settings)
    return create_app(server, configure_logging=True)


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ws_gateway.main:create_default_app",
        factory=True,
        host=settings.ws_gateway_host,
        port=settings.ws_gateway_port,
        reload=settings.debug,
    )
