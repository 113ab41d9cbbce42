"""Stream reconciliation engine.

Folds the ordered event stream of one exchange into canonical
:class:`Message` objects. Events are plain dicts tagged by ``type``:

- ``start``                                  open an assistant message
- ``text-start`` / ``text-delta``            answer text
- ``reasoning-start`` / ``reasoning-delta``  model reasoning
- ``tool-input-start`` / ``tool-input-delta`` / ``tool-input-available``
- ``tool-result`` / ``tool-output-available`` / ``tool-output-error``
- ``error`` / ``finish``                     informational

Each event may carry a ``messageId``; without one it applies to the latest
assistant message of the current exchange. Listeners registered with
:meth:`StreamReconciliationEngine.subscribe` receive a fresh snapshot and
the exchange status after every change.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .core import CALL, PARTIAL_CALL, RESULT, Message, generate_id, utc_now
from .tools import advance_state, dedupe_tool_invocations, normalize_tool_invocations

logger = logging.getLogger(__name__)

IDLE = "idle"
STREAMING = "streaming"

Listener = Callable[[list[Message], str], None]

_TEXT = "text"
_REASONING = "reasoning"
_TOOL = "tool-invocation"


@dataclass
class LiveMessage:
    """A message under construction, kept as an ordered list of parts."""

    id: str
    role: str
    parts: list[dict] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    def append_text(self, kind: str, delta: str) -> None:
        if self.parts and self.parts[-1]["type"] == kind:
            self.parts[-1]["text"] += delta
        else:
            self.parts.append({"type": kind, "text": delta})

    def open_part(self, kind: str) -> None:
        self.parts.append({"type": kind, "text": ""})

    def tool_record(self, call_id: str) -> dict | None:
        for part in self.parts:
            if part["type"] == _TOOL and part["record"].get("toolCallId") == call_id:
                return part["record"]
        return None

    def display_parts(self) -> list[dict]:
        """Parts for rendering; an empty text part stands in until content arrives."""
        if any(p["type"] in (_TEXT, _REASONING) for p in self.parts):
            return list(self.parts)
        return [{"type": _TEXT, "text": ""}, *self.parts]

    def to_message(self) -> Message:
        text = [p["text"] for p in self.parts if p["type"] == _TEXT]
        reasoning = [p["text"] for p in self.parts if p["type"] == _REASONING]
        tool_invocations = normalize_tool_invocations(
            [p["record"] for p in self.parts if p["type"] == _TOOL]
        )
        if tool_invocations:
            tool_invocations = dedupe_tool_invocations(tool_invocations)
        return Message(
            id=self.id,
            role=self.role,
            content="".join(text),
            reasoning="\n".join(reasoning) if reasoning else None,
            tool_invocations=tool_invocations,
            created_at=self.created_at,
        )

    @classmethod
    def from_message(cls, message: Message) -> "LiveMessage":
        parts = []
        if message.reasoning:
            parts.append({"type": _REASONING, "text": message.reasoning})
        if message.content:
            parts.append({"type": _TEXT, "text": message.content})
        for invocation in message.tool_invocations or []:
            record = invocation.to_dict()
            record["toolCallId"] = record.pop("id")
            parts.append({"type": _TOOL, "record": record})
        return cls(id=message.id, role=message.role, parts=parts, created_at=message.created_at)


class StreamReconciliationEngine:
    """Authoritative in-memory transcript for one conversation.

    At most one exchange streams at a time. :meth:`finish` and :meth:`stop`
    are the commit points; partial content is kept in both cases.
    """

    def __init__(self, initial_messages: list[Message] | None = None):
        self._messages = [LiveMessage.from_message(m) for m in initial_messages or []]
        self._exchange_start = len(self._messages)
        self._listeners: list[Listener] = []
        self._aliases: dict[str, str] = {}
        self.status = IDLE
        self.last_error: str | None = None

    # ── Subscription ─────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot, self.status)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)

    # ── Exchange lifecycle ───────────────────────────────────────────

    @property
    def is_streaming(self) -> bool:
        return self.status == STREAMING

    def begin_exchange(self, user_message: Message) -> None:
        """Append the outgoing message and enter the streaming state."""
        if self.is_streaming:
            raise RuntimeError("An exchange is already streaming; stop it first")

        self._messages.append(LiveMessage.from_message(user_message))
        self._exchange_start = len(self._messages)
        self.last_error = None
        self._aliases = {}
        self.status = STREAMING
        self._notify()

    def finish(self) -> None:
        """Close the current exchange normally."""
        if not self.is_streaming:
            return
        self.status = IDLE
        self._notify()

    def stop(self) -> None:
        """Close the current exchange early, keeping partial output."""
        if not self.is_streaming:
            return
        logger.info("Exchange stopped with %d message(s) in flight", len(self._messages) - self._exchange_start)
        self.status = IDLE
        self._notify()

    # ── Event folding ────────────────────────────────────────────────

    def apply(self, event: Any) -> None:
        """Fold one stream event into the transcript."""
        if not self.is_streaming:
            logger.debug("Ignoring event received while idle: %r", event)
            return
        if not isinstance(event, dict):
            logger.debug("Ignoring non-record stream event: %r", event)
            return

        if self._fold(event):
            self._notify()

    def apply_all(self, events) -> None:
        for event in events:
            self.apply(event)

    def _fold(self, event: dict) -> bool:
        """Apply ``event``; returns True if the transcript changed."""
        event_type = event.get("type")

        if event_type == "start":
            self._target(event)
            return True

        if event_type in ("text-delta", "reasoning-delta"):
            delta = event.get("delta", event.get("text"))
            if not isinstance(delta, str):
                return False
            kind = _TEXT if event_type == "text-delta" else _REASONING
            self._target(event).append_text(kind, delta)
            return True

        if event_type in ("text-start", "reasoning-start"):
            kind = _TEXT if event_type == "text-start" else _REASONING
            self._target(event).open_part(kind)
            return True

        if event_type == "tool-input-start":
            self._upsert_tool(event, state=PARTIAL_CALL)
            return True

        if event_type == "tool-input-delta":
            record = self._upsert_tool(event, state=PARTIAL_CALL)
            delta = event.get("inputTextDelta")
            if isinstance(delta, str):
                record["argsText"] = record.get("argsText", "") + delta
            return True

        if event_type == "tool-input-available":
            self._upsert_tool(event, state=CALL, args=event.get("input"))
            return True

        if event_type in ("tool-result", "tool-output-available"):
            output = event.get("output", event.get("result"))
            self._upsert_tool(event, state=RESULT, result=output, isError=bool(event.get("isError")))
            return True

        if event_type in ("tool-output-error", "tool-input-error"):
            error_text = event.get("errorText") or "Tool execution failed"
            self._upsert_tool(event, state=RESULT, result={"error": error_text}, isError=True)
            return True

        if event_type == "error":
            self.last_error = event.get("errorText") or "Stream error"
            logger.warning("Stream reported an error: %s", self.last_error)
            return False

        if event_type in ("finish", "start-step", "finish-step", "text-end", "reasoning-end"):
            return False

        logger.debug("Ignoring unknown stream event type %r", event_type)
        return False

    def _target(self, event: dict) -> LiveMessage:
        """Return the message an event applies to, creating it on first sight."""
        message_id = event.get("messageId")
        if isinstance(message_id, str) and message_id:
            message_id = self._aliases.get(message_id, message_id)
            for message in self._messages[self._exchange_start:]:
                if message.id == message_id:
                    return message
            if any(m.id == message_id for m in self._messages[:self._exchange_start]):
                # Ids are unique across the transcript; earlier turns are never reopened.
                fresh_id = generate_id()
                logger.debug("Message id %s belongs to an earlier turn; using %s", message_id, fresh_id)
                self._aliases[message_id] = fresh_id
                message_id = fresh_id
        else:
            for message in reversed(self._messages[self._exchange_start:]):
                if message.role == "assistant":
                    return message
            message_id = generate_id()

        message = LiveMessage(id=message_id, role="assistant")
        self._messages.append(message)
        return message

    def _upsert_tool(self, event: dict, state: str, **fields) -> dict:
        """Create or update the tool record for ``event``'s call id."""
        message = self._target(event)
        call_id = event.get("toolCallId")
        if not (isinstance(call_id, str) and call_id):
            call_id = generate_id()

        record = message.tool_record(call_id)
        if record is None:
            record = {"toolCallId": call_id, "state": state}
            message.parts.append({"type": _TOOL, "record": record})
        else:
            state = advance_state(record["state"], state)
        was_error = bool(record.get("isError"))

        tool_name = event.get("toolName")
        if isinstance(tool_name, str) and tool_name:
            record["toolName"] = tool_name
        for name, value in fields.items():
            if value is not None:
                record[name] = value
        record["state"] = state
        record["isError"] = was_error or bool(fields.get("isError"))
        return record

    # ── Snapshots ────────────────────────────────────────────────────

    def snapshot(self) -> list[Message]:
        """Return the current canonical transcript (also valid mid-stream)."""
        return [m.to_message() for m in self._messages]

    def live_messages(self) -> list[dict]:
        """Return the transcript as role/parts dicts for a renderer."""
        return [
            {"id": m.id, "role": m.role, "parts": m.display_parts()}
            for m in self._messages
        ]
