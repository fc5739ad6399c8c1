from __future__ import annotations

"""Chat messages, turn results and stream events."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Role = Literal["user", "assistant"]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ChatMessage:
    """Single message in a session's history."""
    role: Role
    content: str
    timestamp: str = field(default_factory=utc_timestamp)
    sources: list[dict[str, Any]] | None = None
    partial: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.sources is not None:
            data["sources"] = self.sources
        if self.partial:
            data["partial"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            role=data.get("role", "user"),
            content=str(data.get("content", "")),
            timestamp=str(data.get("timestamp") or utc_timestamp()),
            sources=data.get("sources"),
            partial=bool(data.get("partial", False)),
        )


@dataclass(frozen=True)
class ChatTurn:
    """Assistant reply for one processed message."""
    message: ChatMessage
    cached: bool = False


@dataclass(frozen=True)
class StreamEvent:
    """Event emitted while streaming a reply."""
    type: Literal["start", "sources", "chunk", "end", "error"]
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}
