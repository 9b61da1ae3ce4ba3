from typing import Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


MessageId = Union[int, str]


class DeliveryOutcome(str, Enum):
    """Result of handing content to the message sink"""
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


class MessageOptions(BaseModel):
    """Formatting options passed through to the transport"""
    parse_mode: str = "HTML"
    thread_id: Optional[int] = Field(None, description="Thread to post the message in, applied on creation")


class DeliveryState(BaseModel):
    """Bookkeeping for the remote message"""
    message_id: Optional[MessageId] = None
    last_sent_content: Optional[str] = None
    last_sent_at: Optional[datetime] = None
