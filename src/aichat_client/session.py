"""Chat session controller.

Wires one conversation together: the model selection, the transport, the
reconciliation engine and the persistence gate that saves its snapshots.
"""

import asyncio
import logging

from .config import get_max_duration
from .conversations import ConversationStore
from .core import Conversation, Message, ModelConfig, generate_id
from .errors import EmptyMessagesError
from .gate import PersistenceChangeGate
from .models import FALLBACK_MODELS, resolve_model_id
from .preferences import PreferenceStore
from .stream import StreamReconciliationEngine
from .transport import ChatTransport, iterate_with_deadline

logger = logging.getLogger(__name__)


class ChatSession:
    """Drives exchanges for a single conversation.

    Only one exchange streams at a time: :meth:`send` stops an in-flight
    exchange before starting the next one.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: ChatTransport,
        conversation: Conversation,
        models: list[ModelConfig] | None = None,
        preferences: PreferenceStore | None = None,
        max_duration: float | None = None,
    ):
        self.store = store
        self.transport = transport
        self.conversation_id = conversation.id
        self.models = models or list(FALLBACK_MODELS)
        self.preferences = preferences
        self.max_duration = max_duration or get_max_duration()

        if preferences is not None:
            self.selected_model_id = preferences.get_model_preference(self.models)
        else:
            self.selected_model_id = resolve_model_id(self.models)

        self.engine = StreamReconciliationEngine(conversation.messages)
        self.gate = PersistenceChangeGate(
            store, conversation.id, conversation.messages, title=conversation.title
        )
        self._unsubscribe = self.engine.subscribe(self.gate)
        self._task: asyncio.Task | None = None
        self._stopped_task: asyncio.Task | None = None

    @classmethod
    def open(
        cls,
        store: ConversationStore,
        transport: ChatTransport,
        conversation_id: str | None = None,
        **kwargs,
    ) -> "ChatSession":
        """Resume ``conversation_id``, or start a new conversation if None.

        Raises KeyError if ``conversation_id`` is unknown.
        """
        if conversation_id is None:
            conversation = store.create()
        else:
            conversation = store.get(conversation_id)
            if conversation is None:
                raise KeyError(conversation_id)
        return cls(store, transport, conversation, **kwargs)

    @property
    def title(self) -> str:
        return self.gate.title

    @property
    def messages(self) -> list[Message]:
        return self.engine.snapshot()

    @property
    def is_streaming(self) -> bool:
        return self.engine.is_streaming

    def select_model(self, model_id: str) -> str:
        """Select ``model_id`` (or the default if unknown) and remember it."""
        self.selected_model_id = resolve_model_id(self.models, model_id)
        if self.preferences is not None:
            self.preferences.save_model_preference(self.selected_model_id)
        return self.selected_model_id

    async def send(self, text: str) -> list[Message]:
        """Send a user message and stream the reply into the transcript.

        Returns the transcript once the exchange settles. Transport failures
        propagate after the partial reply has been committed.
        """
        text = text.strip()
        if not text:
            raise EmptyMessagesError("Message text is empty")

        if self._task is not None and not self._task.done():
            previous = self._task
            self.stop()
            await asyncio.gather(previous, return_exceptions=True)

        self.engine.begin_exchange(Message(id=generate_id(), role="user", content=text))
        outgoing = self.engine.snapshot()
        model_id = resolve_model_id(self.models, self.selected_model_id)

        task = asyncio.ensure_future(self._consume(outgoing, model_id))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if task is not self._stopped_task:
                task.cancel()
                self.engine.stop()
                raise
        finally:
            if self._task is task:
                self.engine.finish()

        return self.engine.snapshot()

    def stop(self) -> None:
        """Cancel the in-flight exchange; accumulated output is kept."""
        if self._task is not None and not self._task.done():
            self._stopped_task = self._task
            self._task.cancel()
        self.engine.stop()

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    async def _consume(self, messages: list[Message], model_id: str) -> None:
        events = self.transport.stream(messages, model_id)
        async for event in iterate_with_deadline(events, self.max_duration):
            self.engine.apply(event)
