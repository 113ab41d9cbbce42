"""Persistence change gate.

Subscribed to a :class:`~aichat_client.stream.StreamReconciliationEngine`,
the gate writes the transcript to the conversation store once per settled
change: never while an exchange is streaming, and never twice for the same
content.
"""

import hashlib
import json
import logging

from .config import SENTINEL_TITLE
from .conversations import ConversationStore
from .core import Message
from .stream import STREAMING
from .titles import generate_title

logger = logging.getLogger(__name__)


def fingerprint(messages: list[Message]) -> str:
    """Hash the content-bearing fields of ``messages`` (timestamps excluded)."""
    payload = json.dumps(
        [m.to_dict(include_timestamps=False) for m in messages],
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def derive_title(messages: list[Message], current_title: str) -> str | None:
    """Return a new title once the first user/assistant pair exists.

    Only conversations still carrying the sentinel title are retitled.
    """
    if current_title != SENTINEL_TITLE:
        return None
    first_user = next((m for m in messages if m.role == "user"), None)
    first_assistant = next((m for m in messages if m.role == "assistant"), None)
    if first_user is None or first_assistant is None:
        return None
    return generate_title(first_user.content)


class PersistenceChangeGate:
    """Decides when a transcript snapshot is written to the store."""

    def __init__(
        self,
        store: ConversationStore,
        conversation_id: str,
        initial_messages: list[Message] | None = None,
        title: str = SENTINEL_TITLE,
    ):
        self.store = store
        self.conversation_id = conversation_id
        self.title = title
        self.last_fingerprint = fingerprint(initial_messages or [])
        self.writes = 0

    def __call__(self, messages: list[Message], status: str) -> None:
        self.evaluate(messages, status)

    def evaluate(self, messages: list[Message], status: str) -> bool:
        """Persist ``messages`` if settled and changed. Returns True if written."""
        if status == STREAMING:
            return False

        current = fingerprint(messages)
        if current == self.last_fingerprint:
            return False

        fields = {"messages": messages}
        new_title = derive_title(messages, self.title)
        if new_title is not None:
            fields["title"] = new_title

        updated = self.store.update(self.conversation_id, **fields)
        if updated is None:
            logger.warning("Conversation %s no longer exists; transcript not saved", self.conversation_id)
        elif new_title is not None:
            self.title = new_title

        self.last_fingerprint = current
        self.writes += 1
        return True
