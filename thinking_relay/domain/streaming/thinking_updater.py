from typing import Dict, Any, Callable, Optional
from datetime import datetime
from enum import Enum
import structlog

from thinking_relay.domain.models.delivery_state import MessageOptions
from thinking_relay.domain.models.display_config import (
    CompletionMode, ThinkingConfig, ToolDisplayConfig
)
from thinking_relay.domain.models.thinking_state import ThinkingState, utcnow
from thinking_relay.domain.rendering.message_renderer import (
    render_collapse_summary, render_message
)
from thinking_relay.infrastructure.observability.logging import (
    DiagnosticsRecorder, StructlogDiagnostics
)
from .dispatcher import CoalescingDispatcher, DispatchState
from .message_sink import MessageSink, MessageTransport

logger = structlog.get_logger(__name__)


class LifecycleState(str, Enum):
    """Lifecycle of a thinking updater"""
    ACTIVE = "active"
    STOPPED = "stopped"
    DELETED = "deleted"
    COLLAPSED = "collapsed"


class ThinkingUpdater:
    """Keeps one remote message in sync with an agent's thinking and tool use.

    Mutating calls (update, tool_start, tool_end) are synchronous and cheap;
    the dispatcher decides when the message is actually edited. Once stop,
    delete or collapse has been called the updater is terminal and ignores
    everything else.
    """

    def __init__(
        self,
        sink: MessageSink,
        thinking_config: Optional[ThinkingConfig] = None,
        tool_display: Optional[ToolDisplayConfig] = None,
        loop: Optional[Any] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.sink = sink
        self.thinking_config = thinking_config or ThinkingConfig()
        self.tool_display = tool_display or ToolDisplayConfig()
        self.diagnostics = diagnostics or sink.diagnostics
        self.clock = clock
        self.state = ThinkingState()
        self.lifecycle = LifecycleState.ACTIVE
        self.dispatcher = CoalescingDispatcher(
            render=self.render,
            sink=sink,
            interval=self.thinking_config.update_interval,
            loop=loop
        )

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle != LifecycleState.ACTIVE

    @property
    def dispatch_state(self) -> DispatchState:
        return self.dispatcher.state

    def render(self) -> str:
        """Render the current state"""
        return render_message(
            self.state.thinking_text,
            self.state.active_tools,
            self.state.completed_tools,
            self.tool_display,
            self.thinking_config.max_length
        )

    def start(self):
        """Show the placeholder message as soon as the interval allows"""
        if self.is_terminal:
            return
        self.dispatcher.trigger_update()

    def update(self, text: str):
        """Replace the thinking text"""
        if self.is_terminal:
            return
        self.state.set_thinking(text)
        self.dispatcher.trigger_update()

    def tool_start(self, tool_id: str, name: str, args: Optional[Dict[str, Any]] = None):
        """Record a tool that started running"""
        if self.is_terminal:
            return
        self.state.start_tool(tool_id, name, args, now=self.clock())
        self.dispatcher.trigger_update()

    def tool_end(self, tool_id: str, failed: bool = False):
        """Record a tool that finished"""
        if self.is_terminal:
            return
        self.state.end_tool(tool_id, failed, now=self.clock())
        self.dispatcher.trigger_update()

    async def flush(self):
        """Push the current state out now"""
        if self.is_terminal:
            return
        await self.dispatcher.flush()

    def stop(self):
        """Freeze the updater, leaving the message as last delivered"""
        if self._enter_terminal(LifecycleState.STOPPED):
            self.dispatcher.stop()

    async def delete(self):
        """Freeze the updater and remove the message"""
        if not self._enter_terminal(LifecycleState.DELETED):
            return

        self.dispatcher.stop()
        # A delivery already running may still create the message
        await self.dispatcher.wait_idle()
        await self.sink.remove()

    async def collapse(self, summary: Optional[str] = None):
        """Freeze the updater after replacing the message with a summary"""
        if not self._enter_terminal(LifecycleState.COLLAPSED):
            return

        self.dispatcher.stop()
        await self.dispatcher.wait_idle()

        text = summary or render_collapse_summary(len(self.state.completed_tools))
        await self.sink.replace(text)

    async def finalize(self):
        """Apply the configured completion mode"""
        mode = self.thinking_config.completion_mode

        if mode == CompletionMode.DELETE:
            await self.delete()
        elif mode == CompletionMode.SUMMARY:
            await self.collapse()
        else:
            # flush only coalesces while a delivery runs, so let it finish first
            await self.dispatcher.wait_idle()
            await self.flush()
            await self.dispatcher.wait_idle()
            self.stop()

    def _enter_terminal(self, lifecycle: LifecycleState) -> bool:
        if self.is_terminal:
            return False

        self.lifecycle = lifecycle
        self.diagnostics.record(
            "updater_terminated",
            lifecycle=lifecycle.value,
            message_id=self.sink.message_id,
            **self.state.get_state_summary()
        )
        return True


def create_thinking_updater(
    transport: MessageTransport,
    target: str,
    thinking_config: Optional[ThinkingConfig] = None,
    tool_display: Optional[ToolDisplayConfig] = None,
    thread_id: Optional[int] = None,
    loop: Optional[Any] = None,
    diagnostics: Optional[DiagnosticsRecorder] = None
) -> ThinkingUpdater:
    """Create an updater bound to a new message in the given target"""

    diagnostics = diagnostics or StructlogDiagnostics("thinking_relay.updater", target=target)
    sink = MessageSink(
        transport,
        target,
        options=MessageOptions(thread_id=thread_id),
        diagnostics=diagnostics
    )

    logger.debug("Creating thinking updater", target=target, thread_id=thread_id)

    return ThinkingUpdater(
        sink,
        thinking_config=thinking_config,
        tool_display=tool_display,
        loop=loop,
        diagnostics=diagnostics
    )
