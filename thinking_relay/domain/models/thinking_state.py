from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ToolEntry(BaseModel):
    """A tool invocation that is still running"""
    id: str = Field(description="Caller-assigned identifier, unique while active")
    name: str = Field(description="Tool name")
    args: Optional[Dict[str, Any]] = Field(None, description="Tool arguments")
    started_at: datetime = Field(default_factory=utcnow)


class CompletedToolEntry(ToolEntry):
    """A finished tool invocation"""
    model_config = ConfigDict(frozen=True)

    failed: bool = False
    duration: timedelta = Field(default_factory=timedelta)


class ThinkingState(BaseModel):
    """Accumulated thinking text and tool activity for one displayed message"""
    thinking_text: Optional[str] = None
    active_tools: Dict[str, ToolEntry] = Field(default_factory=dict)
    completed_tools: List[CompletedToolEntry] = Field(default_factory=list)

    def set_thinking(self, text: str):
        """Replace the thinking text"""
        self.thinking_text = text

    def start_tool(
        self,
        tool_id: str,
        name: str,
        args: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ):
        """Register a running tool; a reused id overwrites the previous entry"""
        self.active_tools[tool_id] = ToolEntry(
            id=tool_id,
            name=name,
            args=args,
            started_at=now or utcnow()
        )

    def end_tool(self, tool_id: str, failed: bool = False, now: Optional[datetime] = None) -> Optional[CompletedToolEntry]:
        """Move a running tool to the completed list.

        Unknown or already completed ids are ignored.
        """
        entry = self.active_tools.pop(tool_id, None)
        if entry is None:
            return None

        completed = CompletedToolEntry(
            **entry.model_dump(),
            failed=failed,
            duration=(now or utcnow()) - entry.started_at
        )
        self.completed_tools.append(completed)
        return completed

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "has_thinking": bool(self.thinking_text),
            "active_tools": list(self.active_tools.keys()),
            "completed_tools": len(self.completed_tools),
            "failed_tools": len([t for t in self.completed_tools if t.failed])
        }
