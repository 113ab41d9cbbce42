"""Core data models for aichat-client.

Persisted and wire representations use camelCase keys (``createdAt``,
``toolInvocations``...) so stored blobs stay readable by the browser client
that shares the same layout.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

ROLES = ("user", "assistant", "system")

# Tool invocation lifecycle states
PARTIAL_CALL = "partial-call"
CALL = "call"
RESULT = "result"
UNKNOWN = "unknown"
TOOL_STATES = (PARTIAL_CALL, CALL, RESULT, UNKNOWN)


def generate_id() -> str:
    """Return a fresh unique identifier."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def parse_iso(value: object) -> datetime | None:
    """Parse an ISO 8601 datetime string; anything else yields None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ToolInvocationResult:
    """Canonical record of one tool call."""

    id: str
    tool_name: str
    state: str  # "partial-call" | "call" | "result" | "unknown"
    args: Optional[dict] = None
    result: Any = None
    is_error: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "toolName": self.tool_name,
            "state": self.state,
            "args": self.args,
            "result": self.result,
            "isError": self.is_error,
        }


@dataclass
class Message:
    """A single chat turn."""

    id: str
    role: str  # "user" | "assistant" | "system"
    content: str
    reasoning: Optional[str] = None
    tool_invocations: Optional[list[ToolInvocationResult]] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self, include_timestamps: bool = True) -> dict:
        data = {"id": self.id, "role": self.role, "content": self.content}
        if self.reasoning is not None:
            data["reasoning"] = self.reasoning
        if self.tool_invocations:
            data["toolInvocations"] = [t.to_dict() for t in self.tool_invocations]
        if include_timestamps:
            data["createdAt"] = format_iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        # Local import: tools depends on this module.
        from .tools import normalize_tool_invocations

        reasoning = data.get("reasoning")
        return cls(
            id=str(data.get("id") or generate_id()),
            role=data.get("role") if data.get("role") in ROLES else "user",
            content=data.get("content") if isinstance(data.get("content"), str) else "",
            reasoning=reasoning if isinstance(reasoning, str) else None,
            tool_invocations=normalize_tool_invocations(data.get("toolInvocations")),
            created_at=parse_iso(data.get("createdAt")) or utc_now(),
        )


@dataclass
class Conversation:
    """A stored chat conversation."""

    id: str
    title: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": format_iso(self.created_at),
            "updatedAt": format_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        messages = data.get("messages") or []
        created = parse_iso(data.get("createdAt")) or utc_now()
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            messages=[Message.from_dict(m) for m in messages if isinstance(m, dict)],
            created_at=created,
            updated_at=parse_iso(data.get("updatedAt")) or created,
        )


@dataclass
class ModelConfig:
    """An LLM model descriptor from the registry."""

    id: str
    name: str
    description: str
    capabilities: list[str] = field(default_factory=list)
    max_tokens: int = 4096
    default: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "capabilities": list(self.capabilities),
            "maxTokens": self.max_tokens,
            "default": self.default,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModelConfig":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data["description"],
            capabilities=list(data["capabilities"]),
            max_tokens=data["maxTokens"],
            default=data["default"],
        )


@dataclass
class ModelPreference:
    """The device's selected model (single record, replaced on change)."""

    selected_model_id: str
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "selectedModelId": self.selected_model_id,
            "lastUpdated": format_iso(self.last_updated),
        }
