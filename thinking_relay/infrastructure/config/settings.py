"""
Environment-driven settings for the relay service.
"""

from typing import Any, Dict, Mapping, Optional
from pydantic import BaseModel, Field
import os

from thinking_relay.domain.models.display_config import ThinkingConfig, ToolDisplayConfig


THINKING_ENV = {
    "THINKING_ENABLED": "enabled",
    "THINKING_MODE": "mode",
    "THINKING_UPDATE_INTERVAL_MS": "update_interval_ms",
    "THINKING_MAX_LENGTH": "max_length",
    "THINKING_COMPLETION_MODE": "completion_mode",
}

TOOL_DISPLAY_ENV = {
    "TOOL_DISPLAY_ENABLED": "enabled",
    "TOOL_DISPLAY_MODE": "mode",
    "TOOL_DISPLAY_SHOW_ARGS": "show_args",
    "TOOL_DISPLAY_MAX_ARGS_LENGTH": "max_args_length",
}


class RelaySettings(BaseModel):
    """Service-wide settings"""
    thinking: ThinkingConfig = Field(default_factory=ThinkingConfig)
    tool_display: ToolDisplayConfig = Field(default_factory=ToolDisplayConfig)
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "thinking-relay"


def _pick(environ: Mapping[str, str], names: Dict[str, str]) -> Dict[str, Any]:
    return {
        field: environ[var].strip()
        for var, field in names.items()
        if environ.get(var, "").strip()
    }


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RelaySettings:
    """Build settings from environment variables.

    Unset variables keep their defaults. Invalid values raise pydantic's
    ValidationError.
    """
    if environ is None:
        environ = os.environ

    values: Dict[str, Any] = {
        "thinking": ThinkingConfig(**_pick(environ, THINKING_ENV)),
        "tool_display": ToolDisplayConfig(**_pick(environ, TOOL_DISPLAY_ENV)),
    }

    for var, field in (("LOG_LEVEL", "log_level"), ("LOG_FORMAT", "log_format"), ("SERVICE_NAME", "service_name")):
        if environ.get(var):
            values[field] = environ[var]

    return RelaySettings(**values)
