from typing import Dict, List
from pydantic import BaseModel, Field
from enum import Enum


class ThinkingMode(str, Enum):
    """How thinking text is shown"""
    STREAM = "stream"
    OFF = "off"


class CompletionMode(str, Enum):
    """What happens to the thinking message once the turn is over"""
    DELETE = "delete"
    SUMMARY = "summary"
    KEEP = "keep"


class ToolDisplayMode(str, Enum):
    """Where tool activity is shown"""
    INLINE = "inline"
    SEPARATE = "separate"


# Ordered candidate argument keys per tool name
DEFAULT_TOOL_ARG_KEYS: Dict[str, List[str]] = {
    "read": ["path"],
    "write": ["path"],
    "edit": ["file_path"],
    "exec": ["command"],
    "bash": ["command"],
    "search": ["pattern", "query"],
    "grep": ["pattern"],
    "glob": ["pattern"],
    "web_search": ["query"],
    "web_fetch": ["url"],
    "list_directory": ["path"],
}


class ThinkingConfig(BaseModel):
    """Thinking message display settings"""
    enabled: bool = True
    mode: ThinkingMode = Field(default=ThinkingMode.STREAM)
    update_interval_ms: int = Field(default=800, ge=0, description="Minimum spacing between message updates")
    max_length: int = Field(default=3800, gt=0, description="Maximum rendered length of the thinking block")
    completion_mode: CompletionMode = Field(default=CompletionMode.DELETE)

    @property
    def is_streaming(self) -> bool:
        return self.enabled and self.mode == ThinkingMode.STREAM

    @property
    def update_interval(self) -> float:
        """Update interval in seconds"""
        return self.update_interval_ms / 1000


class ToolDisplayConfig(BaseModel):
    """Tool activity display settings"""
    enabled: bool = True
    mode: ToolDisplayMode = Field(default=ToolDisplayMode.INLINE)
    show_args: bool = True
    max_args_length: int = Field(default=150, ge=0)
    arg_keys: Dict[str, List[str]] = Field(
        default_factory=lambda: {name: list(keys) for name, keys in DEFAULT_TOOL_ARG_KEYS.items()}
    )
