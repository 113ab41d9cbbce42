"""Tests for the conversation store, preference store and storage backends."""

import json
import os

import pytest

from aichat_client.backends import FileStorage, MemoryStorage
from aichat_client.config import CONVERSATIONS_KEY, MODEL_PREFERENCE_KEY, SENTINEL_TITLE
from aichat_client.conversations import ConversationStore
from aichat_client.core import ModelConfig
from aichat_client.preferences import PreferenceStore
from aichat_client.storage import StorageError

from conftest import FailingStorage


class TestConversationStore:
    def test_get_all_empty_when_missing(self, store):
        assert store.get_all() == []

    def test_create_uses_sentinel_title(self, store):
        conversation = store.create()
        assert conversation.title == SENTINEL_TITLE
        assert conversation.messages == []
        assert conversation.created_at == conversation.updated_at
        assert store.get(conversation.id) == conversation

    def test_create_with_first_message_derives_title(self, store):
        conversation = store.create("**Deploy** the app to staging. Then notify the team.")
        assert conversation.title == "Deploy the app to staging."

    def test_create_inserts_newest_first(self, store):
        first = store.create()
        second = store.create()
        assert [c.id for c in store.get_all()] == [second.id, first.id]

    def test_update_round_trip(self, store, sample_messages):
        conversation = store.create()
        store.update(conversation.id, messages=sample_messages)

        loaded = store.get(conversation.id)
        assert loaded.messages == sample_messages
        assert loaded.updated_at >= conversation.updated_at
        assert loaded.created_at == conversation.created_at

    def test_update_missing_conversation(self, store):
        assert store.update("missing", title="x") is None

    def test_rename(self, store):
        conversation = store.create()
        renamed = store.rename(conversation.id, "Trip planning")
        assert renamed.title == "Trip planning"
        assert store.get(conversation.id).title == "Trip planning"

    def test_delete(self, store):
        conversation = store.create()
        assert store.delete(conversation.id) is True
        assert store.get(conversation.id) is None
        assert store.delete(conversation.id) is False

    def test_add_message(self, store):
        conversation = store.create()
        updated = store.add_message(conversation.id, "user", "Hello")
        assert len(updated.messages) == 1
        message = store.get(conversation.id).messages[0]
        assert message.role == "user"
        assert message.content == "Hello"
        assert message.id

    def test_update_message_keeps_identity(self, store):
        conversation = store.create()
        store.add_message(conversation.id, "assistant", "Draft")
        original = store.get(conversation.id).messages[0]

        store.update_message(conversation.id, original.id, content="Final", reasoning="Checked")

        message = store.get(conversation.id).messages[0]
        assert message.id == original.id
        assert message.created_at == original.created_at
        assert message.content == "Final"
        assert message.reasoning == "Checked"

    def test_update_message_missing(self, store):
        conversation = store.create()
        assert store.update_message(conversation.id, "nope", content="x") is None

    def test_clear_all(self, store):
        store.create()
        store.clear_all()
        assert store.get_all() == []

    def test_writes_whole_blob(self, store, storage):
        store.create()
        store.create()
        data = json.loads(storage.get(CONVERSATIONS_KEY))
        assert len(data["conversations"]) == 2
        assert set(data["conversations"][0]) == {"id", "title", "messages", "createdAt", "updatedAt"}

    def test_corrupt_blob_reads_as_empty(self):
        store = ConversationStore(MemoryStorage({CONVERSATIONS_KEY: "{broken"}))
        assert store.get_all() == []

    def test_wrong_shape_reads_as_empty(self):
        store = ConversationStore(MemoryStorage({CONVERSATIONS_KEY: json.dumps({"conversations": [{"title": "no id"}]})}))
        assert store.get_all() == []

    def test_non_string_timestamps_are_tolerated(self):
        blob = {"conversations": [{
            "id": "c1",
            "title": "Imported",
            "createdAt": 1736935200000,
            "updatedAt": None,
            "messages": [{"id": "m1", "role": "user", "content": "Hi", "createdAt": 123}],
        }]}
        store = ConversationStore(MemoryStorage({CONVERSATIONS_KEY: json.dumps(blob)}))

        conversations = store.get_all()

        assert [c.id for c in conversations] == ["c1"]
        assert conversations[0].messages[0].content == "Hi"
        assert conversations[0].messages[0].created_at.tzinfo is not None

    def test_storage_failures_are_swallowed(self):
        store = ConversationStore(FailingStorage())
        assert store.get_all() == []
        conversation = store.create()
        assert conversation.title == SENTINEL_TITLE
        assert store.delete(conversation.id) is False
        store.clear_all()

    def test_tool_invocations_absent_when_none(self, store):
        conversation = store.create()
        store.add_message(conversation.id, "assistant", "Plain answer")
        raw = json.loads(store.storage.get(CONVERSATIONS_KEY))
        assert "toolInvocations" not in raw["conversations"][0]["messages"][0]


class TestFileStorage:
    def test_round_trip(self, tmp_path):
        storage = FileStorage(tmp_path / "data")
        assert storage.get("key") is None
        storage.set("key", '{"a": 1}')
        assert storage.get("key") == '{"a": 1}'
        storage.remove("key")
        assert storage.get("key") is None

    def test_remove_missing_key(self, tmp_path):
        FileStorage(tmp_path).remove("absent")

    def test_undecodable_blob_reads_as_empty(self, tmp_path):
        (tmp_path / f"{CONVERSATIONS_KEY}.json").write_bytes(b'{"conversations": [\xff\xfe]}')
        storage = FileStorage(tmp_path)

        with pytest.raises(StorageError):
            storage.get(CONVERSATIONS_KEY)
        store = ConversationStore(storage)
        assert store.get_all() == []
        assert store.get("anything") is None

    def test_failed_write_leaves_no_temp_file(self, tmp_path, monkeypatch):
        def refuse(src, dst):
            raise PermissionError("read-only target")

        monkeypatch.setattr(os, "replace", refuse)
        storage = FileStorage(tmp_path)

        with pytest.raises(StorageError):
            storage.set("key", "{}")
        assert list(tmp_path.iterdir()) == []

    def test_store_persists_across_instances(self, tmp_path, sample_messages):
        first = ConversationStore(FileStorage(tmp_path))
        conversation = first.create()
        first.update(conversation.id, messages=sample_messages)

        second = ConversationStore(FileStorage(tmp_path))
        assert second.get(conversation.id).messages == sample_messages


class TestPreferenceStore:
    MODELS = [
        ModelConfig(id="vendor/a", name="A", description="", capabilities=[], max_tokens=1, default=False),
        ModelConfig(id="vendor/b", name="B", description="", capabilities=[], max_tokens=1, default=True),
    ]

    def test_default_when_nothing_saved(self):
        prefs = PreferenceStore(MemoryStorage())
        assert prefs.load() is None
        assert prefs.get_model_preference(self.MODELS) == "vendor/b"

    def test_save_and_load(self):
        storage = MemoryStorage()
        prefs = PreferenceStore(storage)
        prefs.save_model_preference("vendor/a")

        assert prefs.get_model_preference(self.MODELS) == "vendor/a"
        record = json.loads(storage.get(MODEL_PREFERENCE_KEY))
        assert set(record) == {"selectedModelId", "lastUpdated"}

    def test_unknown_saved_model_resolves_to_default(self):
        prefs = PreferenceStore(MemoryStorage())
        prefs.save_model_preference("vendor/retired")
        assert prefs.get_model_preference(self.MODELS) == "vendor/b"

    def test_clear(self):
        prefs = PreferenceStore(MemoryStorage())
        prefs.save_model_preference("vendor/a")
        prefs.clear_model_preference()
        assert prefs.load() is None

    def test_corrupt_and_failing_storage(self):
        assert PreferenceStore(MemoryStorage({MODEL_PREFERENCE_KEY: "[]"})).load() is None
        failing = PreferenceStore(FailingStorage())
        failing.save_model_preference("vendor/a")
        failing.clear_model_preference()
        assert failing.get_model_preference(self.MODELS) == "vendor/b"
