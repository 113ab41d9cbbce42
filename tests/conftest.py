"""Shared test fixtures for aichat-client."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from aichat_client.backends import MemoryStorage
from aichat_client.conversations import ConversationStore
from aichat_client.core import Message, ToolInvocationResult
from aichat_client.storage import StorageError
from aichat_client.transport import ChatTransport


class CountingStorage(MemoryStorage):
    """Memory storage that records every write."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.writes = 0

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)


class FailingStorage(MemoryStorage):
    """Storage whose medium is unavailable."""

    def get(self, key):
        raise StorageError("disk unavailable")

    def set(self, key, value):
        raise StorageError("quota exceeded")

    def remove(self, key):
        raise StorageError("disk unavailable")


class ScriptedTransport(ChatTransport):
    """Replays canned event scripts, one per call to ``stream``.

    ``hold`` blocks the first call after its events until the event is set;
    ``error`` is raised at the end of every call.
    """

    def __init__(self, *scripts, hold=None, error=None):
        self.scripts = list(scripts) or [[]]
        self.hold = hold
        self.error = error
        self.calls = []

    async def stream(self, messages, model_id):
        call = len(self.calls)
        self.calls.append((list(messages), model_id))
        for event in self.scripts[min(call, len(self.scripts) - 1)]:
            await asyncio.sleep(0)
            yield event
        if self.hold is not None and call == 0:
            await self.hold.wait()
        if self.error is not None:
            raise self.error


async def wait_for_condition(predicate, attempts=500):
    """Yield to the loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def store(storage):
    return ConversationStore(storage)


@pytest.fixture
def sample_messages():
    return [
        Message(
            id="msg-user-1",
            role="user",
            content="What is the capital of France?",
            created_at=datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        ),
        Message(
            id="msg-asst-1",
            role="assistant",
            content="The capital of France is Paris.",
            reasoning="Simple geography question.",
            tool_invocations=[
                ToolInvocationResult(
                    id="call-1",
                    tool_name="brave-web-search",
                    state="result",
                    args={"query": "capital of France"},
                    result={"query": "capital of France", "results": [], "totalResults": 0},
                    is_error=False,
                ),
            ],
            created_at=datetime(2025, 1, 15, 10, 0, 5, tzinfo=timezone.utc),
        ),
    ]


@pytest.fixture
def models_file(tmp_path):
    """Write a registry document and return a function producing its path."""

    def write(payload):
        path = tmp_path / "models.json"
        text = payload if isinstance(payload, str) else json.dumps(payload)
        path.write_text(text, encoding="utf-8")
        return str(path)

    return write


@pytest.fixture
def valid_models_payload():
    return {
        "models": [
            {
                "id": "vendor/small",
                "name": "Small",
                "description": "Fast model",
                "capabilities": ["chat"],
                "maxTokens": 8192,
                "default": False,
            },
            {
                "id": "vendor/large",
                "name": "Large",
                "description": "Capable model",
                "capabilities": ["chat", "reasoning", "tools"],
                "maxTokens": 65536,
                "default": True,
            },
        ]
    }
