from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from thinking_relay.application.updater_registry import ThinkingDisabledError, UpdaterRegistry
from thinking_relay.application.websocket.connection_manager import ConnectionManager
from thinking_relay.application.websocket.schema.events import (
    ThinkingEventRequest, ThinkingEventResponse
)
from thinking_relay.domain.streaming.thinking_updater import ThinkingUpdater

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/thinking", tags=["thinking"])

TERMINAL_EVENTS = {"stop", "delete", "collapse", "finalize"}


def get_registry(request: Request) -> UpdaterRegistry:
    return request.app.state.registry


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager


def validate_event(event: ThinkingEventRequest) -> Optional[str]:
    """Describe what is missing from an event, if anything"""

    if event.type in ("tool_start", "tool_end") and not event.tool_id:
        return "tool_id is required for tool events"
    if event.type == "tool_start" and not event.name:
        return "name is required for tool_start"
    if event.type == "update" and event.text is None:
        return "text is required for update events"
    return None


async def apply_event(updater: ThinkingUpdater, event: ThinkingEventRequest):
    """Apply one inbound event to an updater"""

    if event.type == "start":
        updater.start()
    elif event.type == "update":
        updater.update(event.text)
    elif event.type == "tool_start":
        updater.tool_start(event.tool_id, event.name, event.args)
    elif event.type == "tool_end":
        updater.tool_end(event.tool_id, event.failed)
    elif event.type == "flush":
        await updater.flush()
    elif event.type == "stop":
        updater.stop()
    elif event.type == "delete":
        await updater.delete()
    elif event.type == "collapse":
        await updater.collapse(event.summary)
    elif event.type == "finalize":
        await updater.finalize()


@router.post("/{session_id}/events", response_model=ThinkingEventResponse)
async def post_thinking_event(
    session_id: str,
    event: ThinkingEventRequest,
    registry: UpdaterRegistry = Depends(get_registry),
    connections: ConnectionManager = Depends(get_connection_manager)
):
    """Drive the session's thinking message"""

    problem = validate_event(event)
    if problem:
        logger.warning("Rejected thinking event", session_id=session_id, event_type=event.type, reason=problem)
        if session_id in connections.get_active_sessions():
            await connections.send_error(session_id, problem, error_code="invalid_event")
        raise HTTPException(status_code=422, detail=problem)

    if event.type in TERMINAL_EVENTS:
        updater = registry.get(session_id)
        if updater is None:
            raise HTTPException(status_code=404, detail="No active thinking message")
    else:
        try:
            updater = await registry.get_or_create(session_id, thread_id=event.thread_id)
        except ThinkingDisabledError:
            raise HTTPException(status_code=409, detail="Thinking display is disabled")

    await apply_event(updater, event)

    if updater.is_terminal:
        await registry.release(session_id)

    logger.debug("Thinking event applied", session_id=session_id, event_type=event.type)

    return ThinkingEventResponse(
        session_id=session_id,
        lifecycle=updater.lifecycle.value,
        dispatch_state=updater.dispatch_state.value,
        message_id=updater.sink.message_id
    )
