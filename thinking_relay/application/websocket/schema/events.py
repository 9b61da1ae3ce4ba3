from typing import Dict, Any, Optional, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """WebSocket event types"""
    MESSAGE_CREATED = "message_created"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    ERROR = "error"
    CONNECTION = "connection"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=_utcnow)
    session_id: Optional[str] = None


class MessageCreatedEvent(BaseEvent):
    """A new display message"""
    type: Literal[EventType.MESSAGE_CREATED] = EventType.MESSAGE_CREATED
    message_id: int
    text: str
    parse_mode: str = "HTML"
    thread_id: Optional[int] = None


class MessageEditedEvent(BaseEvent):
    """Replacement text for an existing display message"""
    type: Literal[EventType.MESSAGE_EDITED] = EventType.MESSAGE_EDITED
    message_id: int
    text: str
    parse_mode: str = "HTML"


class MessageDeletedEvent(BaseEvent):
    """Removal of a display message"""
    type: Literal[EventType.MESSAGE_DELETED] = EventType.MESSAGE_DELETED
    message_id: int


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]


class ThinkingEventRequest(BaseModel):
    """Inbound event driving a session's thinking updater"""
    type: Literal[
        "start", "update", "tool_start", "tool_end", "flush",
        "stop", "delete", "collapse", "finalize"
    ]
    text: Optional[str] = Field(None, description="Thinking text for update events")
    tool_id: Optional[str] = None
    name: Optional[str] = Field(None, description="Tool name for tool_start events")
    args: Optional[Dict[str, Any]] = None
    failed: bool = False
    summary: Optional[str] = Field(None, description="Summary text for collapse events")
    thread_id: Optional[int] = Field(None, description="Thread for the message, used when the updater is created")


class ThinkingEventResponse(BaseModel):
    """Updater state after an event was applied"""
    session_id: str
    lifecycle: str
    dispatch_state: str
    message_id: Optional[Union[int, str]] = None
