from typing import Dict, Set, Optional
from fastapi import WebSocket
import asyncio
from datetime import datetime, timezone
import structlog

from thinking_relay.domain.models.delivery_state import MessageOptions
from thinking_relay.domain.streaming.message_sink import MessageTransport, TransportError
from .schema.events import (
    BaseEvent, ConnectionEvent, ErrorEvent,
    MessageCreatedEvent, MessageDeletedEvent, MessageEditedEvent
)

logger = structlog.get_logger(__name__)

STALE_AFTER_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionManager(MessageTransport):
    """Manages display WebSocket connections and serves as their message transport.

    The transport target is the session id. Message ids are integers
    increasing per session.
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.session_metadata: Dict[str, Dict] = {}
        self._message_counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections[session_id] = websocket
            self.session_metadata[session_id] = {
                "connected_at": _utcnow(),
                "last_activity": _utcnow()
            }

        await self.send_event(
            session_id,
            ConnectionEvent(
                status="connected",
                session_id=session_id
            )
        )

        logger.info("WebSocket connected", session_id=session_id)

    async def disconnect(self, session_id: str):
        """Disconnect a WebSocket connection"""
        async with self._lock:
            if session_id in self.active_connections:
                ws = self.active_connections.pop(session_id)
                self.session_metadata.pop(session_id, None)

                try:
                    await ws.close()
                except Exception as e:
                    logger.error("Error closing WebSocket", session_id=session_id, error=str(e))

        logger.info("WebSocket disconnected", session_id=session_id)

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Send an event to a specific session"""
        if session_id not in self.active_connections:
            logger.warning("Attempted to send to disconnected session", session_id=session_id)
            return False

        websocket = self.active_connections[session_id]

        try:
            await websocket.send_json(event.model_dump(mode="json"))

            if session_id in self.session_metadata:
                self.session_metadata[session_id]["last_activity"] = _utcnow()

            return True

        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            await self.disconnect(session_id)
            return False

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        """Send an error event to a session"""
        error_event = ErrorEvent(
            payload={"message": error_message},
            error_code=error_code,
            session_id=session_id
        )
        await self.send_event(session_id, error_event)

    async def create(self, target: str, text: str, options: MessageOptions) -> int:
        """Post a new display message to the session"""
        message_id = self._message_counters.get(target, 0) + 1

        sent = await self.send_event(
            target,
            MessageCreatedEvent(
                session_id=target,
                message_id=message_id,
                text=text,
                parse_mode=options.parse_mode,
                thread_id=options.thread_id
            )
        )
        if not sent:
            raise TransportError(f"session {target} is not connected")

        self._message_counters[target] = message_id
        return message_id

    async def edit(self, target: str, message_id: int, text: str, options: MessageOptions) -> bool:
        """Replace the text of a display message"""
        return await self.send_event(
            target,
            MessageEditedEvent(
                session_id=target,
                message_id=message_id,
                text=text,
                parse_mode=options.parse_mode
            )
        )

    async def remove(self, target: str, message_id: int) -> bool:
        """Remove a display message"""
        return await self.send_event(
            target,
            MessageDeletedEvent(session_id=target, message_id=message_id)
        )

    def get_session_metadata(self, session_id: str) -> Optional[Dict]:
        """Get metadata for a session"""
        return self.session_metadata.get(session_id)

    def get_active_sessions(self) -> Set[str]:
        """Get active session IDs"""
        return set(self.active_connections.keys())

    async def disconnect_stale(self, now: Optional[datetime] = None) -> Set[str]:
        """Disconnect sessions without activity for the stale period"""
        current_time = now or _utcnow()
        stale_sessions = {
            session_id
            for session_id, metadata in list(self.session_metadata.items())
            if metadata.get("last_activity")
            and (current_time - metadata["last_activity"]).total_seconds() > STALE_AFTER_SECONDS
        }

        for session_id in stale_sessions:
            logger.warning("Disconnecting stale session", session_id=session_id)
            await self.disconnect(session_id)

        return stale_sessions

    async def health_check(self, period: float = 60):
        """Periodic health check to clean up stale connections"""
        while True:
            try:
                await self.disconnect_stale()
            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(period)
