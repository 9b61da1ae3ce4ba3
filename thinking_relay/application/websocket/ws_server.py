from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
from contextlib import asynccontextmanager
import asyncio
from datetime import datetime, timezone
import structlog

from .connection_manager import ConnectionManager
from thinking_relay.application.api.route.thinking import router as thinking_router
from thinking_relay.application.updater_registry import UpdaterRegistry
from thinking_relay.infrastructure.config.settings import RelaySettings, load_settings
from thinking_relay.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[RelaySettings] = None) -> FastAPI:
    """Build the relay service"""

    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    connection_manager = ConnectionManager()
    registry = UpdaterRegistry(
        connection_manager,
        thinking_config=settings.thinking,
        tool_display=settings.tool_display
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the stale connection sweep; stop updaters and close connections on shutdown"""
        health_task = asyncio.create_task(connection_manager.health_check())
        logger.info("Thinking relay started")

        yield

        health_task.cancel()
        await registry.stop_all()

        for session_id in list(connection_manager.active_connections.keys()):
            await connection_manager.disconnect(session_id)

        logger.info("Thinking relay shutdown")

    app = FastAPI(title="Thinking Relay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.connection_manager = connection_manager
    app.state.registry = registry
    app.include_router(thinking_router)

    @app.websocket("/ws/thinking/{session_id}")
    async def thinking_websocket(websocket: WebSocket, session_id: str):
        """Display clients receive message create/edit/delete events here"""

        await connection_manager.connect(websocket, session_id)

        try:
            # Inbound frames are only used to keep the connection alive
            while True:
                await websocket.receive_text()

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=session_id)
        finally:
            await registry.release(session_id)
            await connection_manager.disconnect(session_id)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_connections": len(connection_manager.active_connections),
            "active_updaters": len(registry.updaters),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/metrics")
    async def metrics_summary():
        """Delivery metrics"""
        return metrics.get_metrics_summary()

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
