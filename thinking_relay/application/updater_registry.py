from typing import Dict, Optional
import asyncio
import structlog

from thinking_relay.domain.models.display_config import ThinkingConfig, ToolDisplayConfig
from thinking_relay.domain.streaming.message_sink import MessageTransport
from thinking_relay.domain.streaming.thinking_updater import (
    ThinkingUpdater, create_thinking_updater
)

logger = structlog.get_logger(__name__)


class ThinkingDisabledError(Exception):
    """Raised when an updater is requested while thinking display is off"""


class UpdaterRegistry:
    """Holds the live thinking updater of each session"""

    def __init__(
        self,
        transport: MessageTransport,
        thinking_config: Optional[ThinkingConfig] = None,
        tool_display: Optional[ToolDisplayConfig] = None
    ):
        self.transport = transport
        self.thinking_config = thinking_config or ThinkingConfig()
        self.tool_display = tool_display or ToolDisplayConfig()
        self.updaters: Dict[str, ThinkingUpdater] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.thinking_config.is_streaming

    async def get_or_create(self, session_id: str, thread_id: Optional[int] = None) -> ThinkingUpdater:
        """Get the session's updater, starting a fresh one if none is live"""

        if not self.enabled:
            raise ThinkingDisabledError("thinking display is disabled")

        async with self._lock:
            updater = self.updaters.get(session_id)
            if updater is None or updater.is_terminal:
                updater = create_thinking_updater(
                    self.transport,
                    session_id,
                    thinking_config=self.thinking_config,
                    tool_display=self.tool_display,
                    thread_id=thread_id
                )
                self.updaters[session_id] = updater
                logger.info("Thinking updater created", session_id=session_id)
            return updater

    def get(self, session_id: str) -> Optional[ThinkingUpdater]:
        return self.updaters.get(session_id)

    async def release(self, session_id: str):
        """Forget a session's updater, stopping it if still active"""

        async with self._lock:
            updater = self.updaters.pop(session_id, None)

        if updater is not None:
            updater.stop()
            logger.info("Thinking updater released", session_id=session_id)

    async def stop_all(self):
        """Stop every live updater"""

        async with self._lock:
            updaters = list(self.updaters.values())
            self.updaters.clear()

        for updater in updaters:
            updater.stop()
