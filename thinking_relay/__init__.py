"""Rate-limited, coalescing thinking/tool status messages."""

from thinking_relay.domain.models.delivery_state import DeliveryOutcome, MessageOptions
from thinking_relay.domain.models.display_config import (
    CompletionMode, ThinkingConfig, ThinkingMode, ToolDisplayConfig, ToolDisplayMode
)
from thinking_relay.domain.rendering.message_renderer import render_message
from thinking_relay.domain.streaming.dispatcher import CoalescingDispatcher, DispatchState
from thinking_relay.domain.streaming.message_sink import (
    MessageSink, MessageTransport, TransportError
)
from thinking_relay.domain.streaming.thinking_updater import (
    LifecycleState, ThinkingUpdater, create_thinking_updater
)

__all__ = [
    "CoalescingDispatcher",
    "CompletionMode",
    "DeliveryOutcome",
    "DispatchState",
    "LifecycleState",
    "MessageOptions",
    "MessageSink",
    "MessageTransport",
    "ThinkingConfig",
    "ThinkingMode",
    "ThinkingUpdater",
    "ToolDisplayConfig",
    "ToolDisplayMode",
    "TransportError",
    "create_thinking_updater",
    "render_message",
]
