"""Conversation store: CRUD over one persisted JSON blob.

Every operation reads the whole ``{"conversations": [...]}`` document,
mutates it in memory, and writes it back whole. Storage and decoding
failures are logged and absorbed here; nothing raises to the caller.
"""

import json
import logging

from .config import CONVERSATIONS_KEY, SENTINEL_TITLE
from .core import Conversation, Message, generate_id, utc_now
from .storage import StorageError, StoragePort
from .titles import generate_title

logger = logging.getLogger(__name__)

# Fields that update() may change; id and created_at are fixed at creation.
_UPDATABLE_FIELDS = ("title", "messages")
_MESSAGE_UPDATABLE_FIELDS = ("role", "content", "reasoning", "tool_invocations")


class ConversationStore:
    """Durable, single-device conversation history."""

    def __init__(self, storage: StoragePort):
        self.storage = storage

    def get_all(self) -> list[Conversation]:
        """Return all conversations, newest first; empty on missing or corrupt data."""
        try:
            raw = self.storage.get(CONVERSATIONS_KEY)
        except StorageError as e:
            logger.error("Failed to load conversations: %s", e)
            return []
        if not raw:
            return []

        try:
            data = json.loads(raw)
            entries = data.get("conversations") or []
            return [Conversation.from_dict(c) for c in entries]
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error("Failed to parse conversations: %s", e)
            return []

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self.get_all():
            if conversation.id == conversation_id:
                return conversation
        return None

    def create(self, first_message: str | None = None) -> Conversation:
        """Create and persist an empty conversation."""
        now = utc_now()
        conversation = Conversation(
            id=generate_id(),
            title=generate_title(first_message) if first_message else SENTINEL_TITLE,
            messages=[],
            created_at=now,
            updated_at=now,
        )

        conversations = self.get_all()
        conversations.insert(0, conversation)
        self._save_all(conversations)
        logger.info("Created conversation %s", conversation.id)
        return conversation

    def update(self, conversation_id: str, **fields) -> Conversation | None:
        """Merge ``fields`` (``title``, ``messages``) into a conversation.

        ``updated_at`` is refreshed on every call. Returns None if the
        conversation does not exist.
        """
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update conversation fields: {sorted(unknown)}")

        conversations = self.get_all()
        conversation = _find(conversations, conversation_id)
        if conversation is None:
            return None

        if "title" in fields:
            conversation.title = fields["title"]
        if "messages" in fields:
            conversation.messages = list(fields["messages"])
        conversation.updated_at = _after(conversation.updated_at)

        self._save_all(conversations)
        return conversation

    def rename(self, conversation_id: str, title: str) -> Conversation | None:
        return self.update(conversation_id, title=title)

    def delete(self, conversation_id: str) -> bool:
        """Remove a conversation. Returns True iff one was removed."""
        conversations = self.get_all()
        remaining = [c for c in conversations if c.id != conversation_id]
        if len(remaining) == len(conversations):
            return False

        self._save_all(remaining)
        logger.info("Deleted conversation %s", conversation_id)
        return True

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        reasoning: str | None = None,
    ) -> Conversation | None:
        """Append a new message with a fresh id and timestamp."""
        conversations = self.get_all()
        conversation = _find(conversations, conversation_id)
        if conversation is None:
            return None

        conversation.messages.append(Message(
            id=generate_id(),
            role=role,
            content=content,
            reasoning=reasoning,
        ))
        conversation.updated_at = _after(conversation.updated_at)

        self._save_all(conversations)
        return conversation

    def update_message(self, conversation_id: str, message_id: str, **fields) -> Conversation | None:
        """Merge ``fields`` into one message; its id and created_at never change."""
        unknown = set(fields) - set(_MESSAGE_UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update message fields: {sorted(unknown)}")

        conversations = self.get_all()
        conversation = _find(conversations, conversation_id)
        if conversation is None:
            return None

        message = next((m for m in conversation.messages if m.id == message_id), None)
        if message is None:
            return None

        for name, value in fields.items():
            setattr(message, name, value)
        conversation.updated_at = _after(conversation.updated_at)

        self._save_all(conversations)
        return conversation

    def clear_all(self) -> None:
        try:
            self.storage.remove(CONVERSATIONS_KEY)
        except StorageError as e:
            logger.error("Failed to clear conversations: %s", e)

    # ── Private helpers ──────────────────────────────────────────────

    def _save_all(self, conversations: list[Conversation]) -> bool:
        """Write the whole collection. Failures are logged, never raised."""
        try:
            payload = json.dumps(
                {"conversations": [c.to_dict() for c in conversations]},
                ensure_ascii=False,
                default=str,
            )
            self.storage.set(CONVERSATIONS_KEY, payload)
        except (StorageError, TypeError, ValueError) as e:
            logger.error("Failed to save conversations: %s", e)
            return False
        return True


def _find(conversations: list[Conversation], conversation_id: str) -> Conversation | None:
    return next((c for c in conversations if c.id == conversation_id), None)


def _after(previous):
    """Return the current time, never earlier than ``previous``."""
    now = utc_now()
    return now if now >= previous else previous
